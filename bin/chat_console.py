"""QwenChat terminal client: prompt_toolkit REPL over a SpeechChatSession."""

from __future__ import annotations

from typing import Callable, List, Tuple

from prompt_toolkit import PromptSession
from prompt_toolkit.key_binding import KeyBindings, KeyPressEvent
from prompt_toolkit.keys import Keys
from prompt_toolkit.patch_stdout import patch_stdout

from chat_state import Message, ProxyClient
from qwen_config import Config
from speech_state import UNSUPPORTED_WARNING, SpeechChatSession, detect_speech_support


SLASH_COMMANDS: List[Tuple[str, str]] = [
    ("/mic", "Start or stop voice input"),
    ("/model <name>", "Switch the model"),
    ("/models", "List available models"),
    ("/clear", "Clear the conversation"),
    ("/help", "Show this help"),
    ("/exit (quit)", "Exit the chat"),
]


def get_key_bindings() -> KeyBindings:
    """Enter submits; Shift+Enter (Ctrl+J in most terminals) and Alt+Enter add a newline."""
    kb = KeyBindings()

    @kb.add("c-j", eager=True)
    def _(event: KeyPressEvent) -> None:
        """Insert newline on Ctrl+J (Shift+Enter mapping in the terminal)."""
        event.current_buffer.insert_text("\n")

    @kb.add(Keys.Escape, Keys.Enter, eager=True)
    def _(event: KeyPressEvent) -> None:
        """Insert newline on Alt+Enter."""
        event.current_buffer.insert_text("\n")

    @kb.add(Keys.Enter, eager=True)
    def _(event: KeyPressEvent) -> None:
        """Submit input on Enter"""
        event.current_buffer.validate_and_handle()

    return kb


def format_message(message: Message) -> str:
    label = "You" if message.role == "user" else "Qwen"
    return f"{label}: {message.content}"


class ChatConsole:
    """Slash commands, transcript rendering and the prompt loop."""

    def __init__(self, session: SpeechChatSession, printer: Callable[[str], None] = print):
        self.session = session
        self._print = printer
        self.session.speech.on_change = self._show_transcript

    def _show_transcript(self) -> None:
        transcript = self.session.speech.visible_transcript()
        if transcript:
            self._print(f"Listening: {transcript}")

    def print_help(self) -> None:
        for name, description in SLASH_COMMANDS:
            self._print(f"  {name:<16} {description}")

    def print_models(self) -> None:
        for model_id in self.session.model_ids:
            marker = "*" if model_id == self.session.model else " "
            self._print(f" {marker} {model_id}")

    def handle_command(self, text: str) -> bool:
        """Run a slash command; returns False when the console should exit."""
        name, _, arg = text.strip().partition(" ")
        arg = arg.strip()
        if name in ("/exit", "/quit"):
            return False
        if name == "/help":
            self.print_help()
        elif name == "/models":
            self.print_models()
        elif name == "/model":
            try:
                self.session.select_model(arg)
                self._print(f"Model: {self.session.model}")
            except ValueError as exc:
                self._print(str(exc))
        elif name == "/clear":
            self.session.reset()
            self._print("Chat cleared.")
        elif name == "/mic":
            self.toggle_mic()
        else:
            self._print(f"Unknown command {name}; type /help")
        return True

    def toggle_mic(self) -> None:
        if not self.session.speech.supported:
            self._print(UNSUPPORTED_WARNING)
            return
        self.session.toggle_listening()
        if self.session.listening:
            self._print("Listening... (/mic to stop)")
        else:
            self._print("Stopped listening.")

    def submit(self, text: str) -> None:
        self.session.input_buffer = text
        if not self.session.can_send():
            return
        self._print(format_message(Message("user", text)))
        self._print("Qwen is thinking...")
        reply = self.session.send()
        if reply is not None:
            self._print(format_message(reply))

    def dispatch(self, text: str, dictated: str = "") -> bool:
        """Route one submitted prompt; returns False to stop the loop."""
        if text.strip().startswith("/"):
            return self.handle_command(text)
        self.submit(text + dictated)
        return True

    def run(self) -> int:
        self._print("QwenChat: Enter sends, Shift+Enter or Alt+Enter adds a line, /help lists commands.")
        if not self.session.speech.supported:
            self._print(UNSUPPORTED_WARNING)
        prompt_session: PromptSession = PromptSession(key_bindings=get_key_bindings(), multiline=True)
        try:
            with patch_stdout():
                while True:
                    before = self.session.input_buffer
                    try:
                        text = prompt_session.prompt(f"[{self.session.model}] > ", default=before)
                    except (KeyboardInterrupt, EOFError):
                        break
                    # Dictation that landed while the prompt was open.
                    after = self.session.input_buffer
                    dictated = after[len(before):] if after.startswith(before) else ""
                    if not self.dispatch(text, dictated):
                        break
        finally:
            self.session.close()
        return 0


def run_console(cfg: Config, model: str) -> int:
    """Build a session against the configured proxy and run the prompt loop."""
    support = detect_speech_support(cfg.speech_backend)
    try:
        session = SpeechChatSession(
            ProxyClient(cfg.proxy_url),
            support,
            model=model,
            system_prompt=cfg.system_prompt,
            model_ids=cfg.model_ids,
        )
    except ValueError as exc:
        print(f"[QwenChat] {exc}")
        return 2
    return ChatConsole(session).run()
