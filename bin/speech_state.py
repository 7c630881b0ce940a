"""QwenChat speech-to-text capture: microphone state layered on a chat session.

Recognition itself is done by a pluggable backend.  A backend is any
zero-argument factory (named as ``module:callable``) returning an object
with this shape::

    recognizer.continuous = True        # keep listening across pauses
    recognizer.interim_results = True   # report unsettled text as well
    recognizer.lang = "en-US"
    recognizer.on_result = fn(result_index, results)
    recognizer.on_error = fn(error)
    recognizer.on_end = fn()
    recognizer.start(); recognizer.stop()

``results`` is the full list of ``RecognitionSegment`` for the current
listening run; ``result_index`` is the first entry that changed.  Without
a backend the session is text-only and the microphone stays disabled.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union

from chat_state import ChatSession


SPEECH_LANG = "en-US"
UNSUPPORTED_WARNING = (
    "Speech recognition is not available. Configure a speech backend "
    "(--speech-backend module:callable) for voice input."
)


@dataclass(frozen=True)
class RecognitionSegment:
    """One recognized stretch of speech, settled (final) or still changing."""

    transcript: str
    is_final: bool = False


# ---------------------------------------------------------------------------
# Capability detection
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SpeechSupported:
    recognizer: Any


@dataclass(frozen=True)
class SpeechUnsupported:
    reason: str


SpeechSupport = Union[SpeechSupported, SpeechUnsupported]


def load_backend(target: str) -> Callable[[], Any]:
    """Import a ``module:callable`` recognizer factory."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"speech backend must look like module:callable, got {target!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    if not callable(factory):
        raise TypeError(f"speech backend {target!r} is not callable")
    return factory


def detect_speech_support(backend: Union[str, Callable[[], Any], None]) -> SpeechSupport:
    """Resolve speech capability once; the recognizer is built only when available."""
    if not backend:
        return SpeechUnsupported("no speech backend configured")
    try:
        factory = load_backend(backend) if isinstance(backend, str) else backend
        recognizer = factory()
    except Exception as exc:
        print(f"[QwenChat] Speech backend unavailable: {exc!r}")
        return SpeechUnsupported(str(exc) or type(exc).__name__)
    if recognizer is None:
        return SpeechUnsupported("speech backend returned no recognizer")
    return SpeechSupported(recognizer)


# ---------------------------------------------------------------------------
# Capture state machine
# ---------------------------------------------------------------------------
class SpeechCapture:
    """Listening flag and transcript buffer around one reusable recognizer.

    Final text is handed to *commit* exactly once per result index and in
    spoken order: a watermark marks the first index not yet committed and
    only advances across a contiguous run of final segments.  A final
    segment behind a still-interim one waits until the gap settles, and a
    callback that repeats already-settled segments adds nothing.
    """

    def __init__(self, support: SpeechSupport, commit: Callable[[str], None], lang: str = SPEECH_LANG):
        self.support = support
        self.listening = False
        self.transcript = ""
        self.on_change: Optional[Callable[[], None]] = None
        self._commit = commit
        self._watermark = 0
        self._results: Sequence[RecognitionSegment] = ()

        recognizer = self.recognizer
        if recognizer is not None:
            recognizer.continuous = True
            recognizer.interim_results = True
            recognizer.lang = lang
            recognizer.on_result = self.handle_result
            recognizer.on_error = self.handle_error
            recognizer.on_end = self.handle_end

    @property
    def supported(self) -> bool:
        return isinstance(self.support, SpeechSupported)

    @property
    def recognizer(self) -> Any:
        return self.support.recognizer if isinstance(self.support, SpeechSupported) else None

    def visible_transcript(self) -> str:
        """Transcript line to display; empty unless actively listening."""
        return self.transcript if self.listening else ""

    def toggle(self) -> None:
        recognizer = self.recognizer
        if recognizer is None:
            return
        if self.listening:
            self.stop()
            return
        self.transcript = ""
        self._watermark = 0
        self._results = ()
        recognizer.start()
        self.listening = True

    def stop(self) -> None:
        """User-initiated stop: halt recognition and keep any unsettled text."""
        recognizer = self.recognizer
        if recognizer is None:
            return
        recognizer.stop()
        self.listening = False
        pending = [segment.transcript for segment in self._results[self._watermark:]]
        self._watermark = max(self._watermark, len(self._results))
        text = " ".join(t for t in pending if t.strip())
        if text:
            self._commit(text + " ")

    def clear_transcript(self) -> None:
        self.transcript = ""

    def close(self) -> None:
        """Teardown: stop the recognizer whether or not it is running."""
        recognizer = self.recognizer
        if recognizer is not None:
            recognizer.stop()
        self.listening = False
        self._results = ()

    # -- recognizer callbacks ------------------------------------------------
    def handle_result(self, result_index: int, results: Sequence[RecognitionSegment]) -> None:
        final_text = ""
        interim_text = ""
        for i in range(result_index, len(results)):
            segment = results[i]
            if segment.is_final:
                final_text += segment.transcript + " "
            else:
                interim_text += segment.transcript

        new_final = ""
        while self._watermark < len(results) and results[self._watermark].is_final:
            new_final += results[self._watermark].transcript + " "
            self._watermark += 1

        self._results = list(results)
        self.transcript = final_text or interim_text
        if new_final:
            self._commit(new_final)
        self._changed()

    def handle_error(self, error: Any) -> None:
        print(f"[QwenChat] Speech recognition error: {error}")
        self.listening = False
        self._changed()

    def handle_end(self) -> None:
        self.listening = False
        self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()


# ---------------------------------------------------------------------------
# Chat session with dictation
# ---------------------------------------------------------------------------
class SpeechChatSession(ChatSession):
    """ChatSession whose input buffer can also be filled by dictation."""

    def __init__(self, client: Any, support: SpeechSupport, **kwargs):
        super().__init__(client, **kwargs)
        self.speech = SpeechCapture(support, commit=self._append_dictation)

    def _append_dictation(self, text: str) -> None:
        self.input_buffer += text

    @property
    def listening(self) -> bool:
        return self.speech.listening

    def toggle_listening(self) -> None:
        # The microphone control is disabled while a request is in flight.
        if self.loading:
            return
        self.speech.toggle()

    def _before_send(self) -> None:
        if self.speech.listening:
            self.speech.stop()
        self.speech.clear_transcript()

    def reset(self) -> None:
        super().reset()
        self.speech.clear_transcript()

    def close(self) -> None:
        self.speech.close()
