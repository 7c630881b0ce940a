"""QwenChat session state: message history, input buffer, single-flight send.

A ``ChatSession`` is plain per-session instance state.  It talks to the
proxy through a ``ProxyClient`` (or any object with the same
``complete(messages, model)`` method) and turns every failure into an
``Error: ...`` assistant message so errors stay part of the transcript.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

from qwen_config import DEFAULT_MODEL, DEFAULT_MODEL_IDS, DEFAULT_PROXY_URL, DEFAULT_SYSTEM_PROMPT


ROLES = ("system", "user", "assistant")
FALLBACK_PROXY_ERROR = "Failed to get response"
FALLBACK_SEND_ERROR = "Failed to get response from Qwen API"


@dataclass(frozen=True)
class Message:
    """One chat turn as sent upstream."""

    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"unknown message role: {self.role!r}")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ProxyError(Exception):
    """The proxy answered with a non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


# ---------------------------------------------------------------------------
# Proxy client
# ---------------------------------------------------------------------------
class ProxyClient:
    """Blocking HTTP client for ``POST /api/qwen``."""

    def __init__(self, url: str = DEFAULT_PROXY_URL, http: Optional[requests.Session] = None):
        self.url = url
        self.http = http or requests.Session()

    def complete(self, messages: Sequence[Message], model: str) -> Dict[str, Any]:
        """Send the history and return the decoded chat-completion envelope."""
        resp = self.http.post(
            self.url,
            json={"messages": [m.to_dict() for m in messages], "model": model},
            headers={"Content-Type": "application/json"},
        )
        if not 200 <= resp.status_code < 300:
            try:
                error = resp.json().get("error")
            except (ValueError, AttributeError):
                error = None
            raise ProxyError(error or FALLBACK_PROXY_ERROR, status=resp.status_code)
        return resp.json()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------
class ChatSession:
    """History, input buffer, loading flag and selected model for one user."""

    def __init__(
        self,
        client: Any,
        model: str = DEFAULT_MODEL,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        model_ids: Sequence[str] = DEFAULT_MODEL_IDS,
    ):
        self.client = client
        self.system_prompt = system_prompt
        self.model_ids = tuple(model_ids)
        self.messages: List[Message] = [self._system_message()]
        self.input_buffer = ""
        self.loading = False
        self.model = DEFAULT_MODEL
        self.select_model(model)

    def _system_message(self) -> Message:
        return Message("system", self.system_prompt)

    def select_model(self, model: str) -> None:
        if model not in self.model_ids:
            raise ValueError(f"unknown model {model!r}; choose one of {', '.join(self.model_ids)}")
        self.model = model

    def visible_messages(self) -> List[Message]:
        """Messages shown in the transcript (system context is never rendered)."""
        return [m for m in self.messages if m.role != "system"]

    def can_send(self) -> bool:
        return bool(self.input_buffer.strip()) and not self.loading

    def send(self) -> Optional[Message]:
        """Submit the input buffer and append the reply (or an error) to history.

        Returns the appended assistant message, or None when the guard
        turned the call into a no-op.
        """
        if not self.can_send():
            return None
        self._before_send()

        self.messages.append(Message("user", self.input_buffer))
        self.input_buffer = ""
        self.loading = True
        try:
            data = self.client.complete(list(self.messages), self.model)
            reply = Message("assistant", data["choices"][0]["message"]["content"])
        except Exception as exc:
            print(f"[QwenChat] Error: {exc!r}")
            reply = Message("assistant", f"Error: {str(exc) or FALLBACK_SEND_ERROR}")
        finally:
            self.loading = False
        self.messages.append(reply)
        return reply

    def _before_send(self) -> None:
        """Hook run after the guard passes and before the user turn is recorded."""

    def reset(self) -> None:
        self.messages = [self._system_message()]
        self.input_buffer = ""
