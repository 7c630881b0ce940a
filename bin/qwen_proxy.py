"""QwenChat proxy: forward one chat turn to the Qwen OpenAI-compatible endpoint.

The proxy attaches the server-held credential and relays the upstream
reply.  It never retries, never streams and never rewrites a successful
completion: the upstream bytes go back to the caller untouched.  Every
failure comes back as a small JSON envelope::

    {"error": "<summary>", "details": "<upstream body or exception text>"}
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

import qwen_config as config_mod
from qwen_config import API_KEY_ENV, Config


@dataclass
class ProxyReply:
    """Status plus either a JSON error envelope or raw upstream bytes."""

    status: int
    payload: Optional[Dict[str, Any]] = None
    raw: Optional[bytes] = None


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------
def _unpack_body(body: Any, default_model: str) -> Tuple[Any, Any]:
    """Pull ``messages`` and ``model`` out of a decoded request body.

    A JSON ``null`` body cannot be unpacked and raises; any other non-object
    body (array, string, number) carries neither field.
    """
    if body is None:
        raise TypeError("request body must not be null")
    if not isinstance(body, dict):
        return None, default_model
    model = body.get("model")
    if model is None:
        model = default_model
    return body.get("messages"), model


def _debug_messages(url: str, model: Any, messages: Any) -> None:
    print(f"[DEBUG] Qwen → {url} (model={model})")
    if not isinstance(messages, list):
        print(f"[DEBUG] Qwen messages: {messages!r}")
        return
    print(f"[DEBUG] Qwen messages ({len(messages)}):")
    for i, m in enumerate(messages):
        if not isinstance(m, dict):
            print(f"  [{i}] {m!r}")
            continue
        content = str(m.get("content", ""))
        print(f"  [{i}] {m.get('role')}: {content[:200]}{'...' if len(content) > 200 else ''}")


# ---------------------------------------------------------------------------
# Upstream call
# ---------------------------------------------------------------------------
def call_qwen(cfg: Config, api_key: str, messages: List[Dict] | Any, model: str) -> ProxyReply:
    """POST ``{model, messages}`` upstream once and wrap the result.

    Network errors and malformed JSON are raised to the caller.
    """
    if config_mod.DEBUG_MODE:
        _debug_messages(cfg.api_url, model, messages)
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    resp = requests.post(
        cfg.api_url,
        json={"model": model, "messages": messages},
        headers=headers,
        timeout=cfg.timeout_s,
    )
    if not 200 <= resp.status_code < 300:
        error_text = resp.text
        print(f"[QwenChat] Qwen API error: {error_text}")
        return ProxyReply(
            status=resp.status_code,
            payload={"error": f"Qwen API error: {resp.status_code}", "details": error_text},
        )

    # Parse only to reject malformed bodies; the caller gets the original bytes.
    resp.json()
    if config_mod.DEBUG_MODE:
        print(f"[DEBUG] ← Qwen response ({len(resp.content)} bytes)")
    return ProxyReply(status=200, raw=resp.content)


def handle_chat_request(cfg: Config, raw_body: bytes) -> ProxyReply:
    """Run one proxy invocation for the raw JSON request body."""
    try:
        body = json.loads(raw_body or b"")
        messages, model = _unpack_body(body, cfg.default_model)

        api_key = os.environ.get(API_KEY_ENV)
        if not api_key:
            return ProxyReply(
                status=500,
                payload={"error": f"{API_KEY_ENV} environment variable is not set"},
            )

        return call_qwen(cfg, api_key, messages, model)
    except Exception as exc:
        print(f"[QwenChat] Error calling Qwen API: {exc!r}")
        return ProxyReply(
            status=500,
            payload={"error": "Failed to call Qwen API", "details": str(exc)},
        )
