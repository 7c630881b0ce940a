#!/usr/bin/env python3
"""Tests for speech capability detection and the dictation state machine."""

import sys
import types
import unittest
from pathlib import Path

_project = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_project / "bin"))

from speech_state import (
    RecognitionSegment,
    SpeechCapture,
    SpeechChatSession,
    SpeechSupported,
    SpeechUnsupported,
    detect_speech_support,
    load_backend,
)


class FakeRecognizer:
    """Stands in for a platform recognizer; tests fire its callbacks by hand."""

    def __init__(self):
        self.started = 0
        self.stopped = 0
        self.on_result = None
        self.on_error = None
        self.on_end = None

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1


class FakeClient:
    def __init__(self):
        self.calls = []

    def complete(self, messages, model):
        self.calls.append(list(messages))
        return {"choices": [{"message": {"content": "ok"}}]}


def _final(text):
    return RecognitionSegment(text, is_final=True)


def _interim(text):
    return RecognitionSegment(text, is_final=False)


class TestDetection(unittest.TestCase):

    def test_no_backend_is_unsupported(self):
        self.assertIsInstance(detect_speech_support(None), SpeechUnsupported)
        self.assertIsInstance(detect_speech_support(""), SpeechUnsupported)

    def test_factory_failure_is_unsupported(self):
        def broken():
            raise OSError("no microphone")
        support = detect_speech_support(broken)
        self.assertIsInstance(support, SpeechUnsupported)
        self.assertIn("no microphone", support.reason)

    def test_unimportable_backend_is_unsupported(self):
        support = detect_speech_support("no_such_speech_module_xyz:make")
        self.assertIsInstance(support, SpeechUnsupported)

    def test_backend_target_is_imported(self):
        module = types.ModuleType("fake_speech_backend")
        module.make = FakeRecognizer
        sys.modules["fake_speech_backend"] = module
        try:
            self.assertIs(load_backend("fake_speech_backend:make"), FakeRecognizer)
            support = detect_speech_support("fake_speech_backend:make")
            self.assertIsInstance(support, SpeechSupported)
            self.assertIsInstance(support.recognizer, FakeRecognizer)
        finally:
            del sys.modules["fake_speech_backend"]

    def test_bad_target_rejected(self):
        with self.assertRaises(ValueError):
            load_backend("missing_colon")

    def test_recognizer_configured_once(self):
        rec = FakeRecognizer()
        capture = SpeechCapture(SpeechSupported(rec), commit=lambda text: None)
        self.assertTrue(rec.continuous)
        self.assertTrue(rec.interim_results)
        self.assertEqual(rec.lang, "en-US")
        self.assertEqual(rec.on_result, capture.handle_result)


class SpeechSessionBase(unittest.TestCase):

    def setUp(self):
        self.rec = FakeRecognizer()
        self.client = FakeClient()
        self.session = SpeechChatSession(self.client, SpeechSupported(self.rec))


class TestToggle(SpeechSessionBase):

    def test_toggle_starts_and_stops(self):
        self.session.speech.transcript = "stale"
        self.session.toggle_listening()
        self.assertTrue(self.session.listening)
        self.assertEqual(self.session.speech.transcript, "")
        self.assertEqual(self.rec.started, 1)

        self.session.toggle_listening()
        self.assertFalse(self.session.listening)
        self.assertEqual(self.rec.stopped, 1)

    def test_recognizer_is_reused_across_cycles(self):
        for _ in range(3):
            self.session.toggle_listening()
            self.session.toggle_listening()
        self.assertEqual(self.rec.started, 3)
        self.assertEqual(self.rec.stopped, 3)

    def test_toggle_ignored_while_loading(self):
        self.session.loading = True
        self.session.toggle_listening()
        self.assertFalse(self.session.listening)
        self.assertEqual(self.rec.started, 0)

    def test_unsupported_toggle_is_noop(self):
        session = SpeechChatSession(self.client, SpeechUnsupported("none"))
        session.toggle_listening()
        self.assertFalse(session.listening)
        self.assertFalse(session.speech.supported)


class TestResults(SpeechSessionBase):

    def setUp(self):
        super().setUp()
        self.session.toggle_listening()

    def test_final_segment_committed_once(self):
        results = [_final("hello world")]
        self.rec.on_result(0, results)
        self.assertEqual(self.session.speech.transcript, "hello world ")
        self.assertEqual(self.session.input_buffer, "hello world ")

        self.rec.on_result(0, results)
        self.assertEqual(self.session.input_buffer, "hello world ")

    def test_interim_shown_not_committed(self):
        self.rec.on_result(0, [_interim("hel")])
        self.assertEqual(self.session.speech.transcript, "hel")
        self.assertEqual(self.session.input_buffer, "")

        self.rec.on_result(0, [_final("hello")])
        self.assertEqual(self.session.speech.transcript, "hello ")
        self.assertEqual(self.session.input_buffer, "hello ")

    def test_final_preferred_over_interim_in_transcript(self):
        self.rec.on_result(0, [_final("one"), _interim("tw")])
        self.assertEqual(self.session.speech.transcript, "one ")
        self.assertEqual(self.session.input_buffer, "one ")

    def test_only_segments_from_result_index(self):
        results = [_final("one")]
        self.rec.on_result(0, results)
        results.append(_final("two"))
        self.rec.on_result(1, results)
        self.assertEqual(self.session.speech.transcript, "two ")
        self.assertEqual(self.session.input_buffer, "one two ")

    def test_repeated_phrase_is_still_committed(self):
        self.rec.on_result(0, [_final("yes")])
        self.rec.on_result(1, [_final("yes"), _final("yes")])
        self.assertEqual(self.session.input_buffer, "yes yes ")

    def test_final_behind_interim_waits_for_gap(self):
        self.rec.on_result(0, [_interim("a"), _final("b")])
        self.assertEqual(self.session.input_buffer, "")

        self.rec.on_result(0, [_final("a"), _final("b")])
        self.assertEqual(self.session.input_buffer, "a b ")

    def test_user_stop_flushes_final_behind_interim(self):
        self.rec.on_result(0, [_interim("a"), _final("b")])
        self.session.toggle_listening()
        self.assertEqual(self.session.input_buffer, "a b ")

        self.rec.on_result(0, [_final("a"), _final("b")])
        self.assertEqual(self.session.input_buffer, "a b ")

    def test_appends_to_typed_text(self):
        self.session.input_buffer = "Note: "
        self.rec.on_result(0, [_final("buy milk")])
        self.assertEqual(self.session.input_buffer, "Note: buy milk ")

    def test_user_stop_commits_pending_interim(self):
        self.rec.on_result(0, [_final("one"), _interim("two")])
        self.session.toggle_listening()
        self.assertEqual(self.session.input_buffer, "one two ")
        self.assertFalse(self.session.listening)

    def test_error_and_end_clear_listening(self):
        self.rec.on_error("no-speech")
        self.assertFalse(self.session.listening)
        self.session.toggle_listening()
        self.assertTrue(self.session.listening)
        self.rec.on_end()
        self.assertFalse(self.session.listening)

    def test_on_change_notified(self):
        seen = []
        self.session.speech.on_change = lambda: seen.append(self.session.speech.visible_transcript())
        self.rec.on_result(0, [_interim("hi")])
        self.assertEqual(seen, ["hi"])

    def test_transcript_hidden_when_stopped(self):
        self.rec.on_result(0, [_final("hi")])
        self.rec.on_end()
        self.assertEqual(self.session.speech.visible_transcript(), "")


class TestSendAndTeardown(SpeechSessionBase):

    def test_send_while_listening_stops_first(self):
        self.session.toggle_listening()
        self.rec.on_result(0, [_final("hello")])
        self.session.send()
        self.assertFalse(self.session.listening)
        self.assertEqual(self.rec.stopped, 1)
        self.assertEqual(self.client.calls[0][-1].content, "hello ")
        self.assertEqual(self.session.speech.transcript, "")
        self.assertEqual(self.session.input_buffer, "")

    def test_reset_clears_transcript(self):
        self.session.toggle_listening()
        self.rec.on_result(0, [_interim("draft")])
        self.session.reset()
        self.assertEqual(self.session.speech.transcript, "")
        self.assertEqual(self.session.input_buffer, "")
        self.assertEqual(len(self.session.messages), 1)

    def test_close_stops_unconditionally(self):
        self.session.close()
        self.session.close()
        self.assertEqual(self.rec.stopped, 2)
        self.assertFalse(self.session.listening)

    def test_text_only_send_without_speech(self):
        client = FakeClient()
        session = SpeechChatSession(client, SpeechUnsupported("none"))
        session.input_buffer = "typed"
        session.send()
        self.assertEqual(client.calls[0][-1].content, "typed")
        session.close()


if __name__ == "__main__":
    unittest.main()
