"""QwenChat configuration: environment settings, config.yaml overrides, model choices, CLI args."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


# ---------------------------------------------------------------------------
# Upstream constants
# ---------------------------------------------------------------------------
QWEN_API_URL = "https://dashscope-intl.aliyuncs.com/compatible-mode/v1/chat/completions"
API_KEY_ENV = "QWEN_API_KEY"  # Server-side credential; read per request, never cached.
DEFAULT_MODEL = "qwen-plus"
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_PROXY_URL = "http://127.0.0.1:3000/api/qwen"


# ---------------------------------------------------------------------------
# config.yaml loader
# ---------------------------------------------------------------------------
_CONFIG_YAML_STATUS = ""  # human-readable load status for startup banner


def _load_config_yaml(project_root: Path | None = None) -> Dict[str, Any]:
    """Load config.yaml from the project directory.

    *project_root* defaults to the parent of the bin/ directory (i.e. the
    repo root).  A missing or broken file yields an empty dict; the reason
    is kept in ``_CONFIG_YAML_STATUS`` for the startup banner.
    """
    global _CONFIG_YAML_STATUS
    if project_root is None:
        project_root = Path(__file__).resolve().parent.parent
    cfg_path = project_root / "config.yaml"
    if not cfg_path.exists():
        _CONFIG_YAML_STATUS = f"not found at {cfg_path}"
        return {}
    try:
        with open(cfg_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        _CONFIG_YAML_STATUS = f"parse error: {exc}"
        return {}
    if not isinstance(data, dict):
        _CONFIG_YAML_STATUS = f"not a mapping at {cfg_path}"
        return {}
    _CONFIG_YAML_STATUS = f"loaded ({len(data)} keys) from {cfg_path}"
    return data


# ---------------------------------------------------------------------------
# Model choices
# ---------------------------------------------------------------------------
_DEFAULT_MODEL_CHOICES: List[Dict[str, str]] = [
    {"id": "qwen-plus", "label": "Qwen Plus"},
    {"id": "qwen-max", "label": "Qwen Max"},
    {"id": "qwen-turbo", "label": "Qwen Turbo"},
]
DEFAULT_MODEL_IDS = tuple(m["id"] for m in _DEFAULT_MODEL_CHOICES)


def _build_model_choices(cfg_yaml: Dict[str, Any]) -> List[Dict[str, str]]:
    """Construct the model selector list from defaults + config.yaml ``qwen.models``."""
    qwen = cfg_yaml.get("qwen", {}) if isinstance(cfg_yaml, dict) else {}
    raw = qwen.get("models") if isinstance(qwen, dict) else None
    if not isinstance(raw, list) or not raw:
        return [dict(m) for m in _DEFAULT_MODEL_CHOICES]

    choices: List[Dict[str, str]] = []
    for entry in raw:
        if isinstance(entry, str) and entry.strip():
            choices.append({"id": entry.strip(), "label": entry.strip()})
        elif isinstance(entry, dict) and entry.get("id"):
            model_id = str(entry["id"]).strip()
            choices.append({"id": model_id, "label": str(entry.get("label") or model_id)})
    return choices or [dict(m) for m in _DEFAULT_MODEL_CHOICES]


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------
@dataclass
class Config:
    """Runtime configuration for the proxy server and the terminal client."""

    api_url: str = QWEN_API_URL  # Upstream OpenAI-compatible chat/completions URL.
    default_model: str = DEFAULT_MODEL  # Model used when a request omits one.
    bind_host: str = "127.0.0.1"
    bind_port: int = 3000
    timeout_s: Optional[float] = None  # None: wait for the upstream as long as it takes.
    proxy_url: str = DEFAULT_PROXY_URL  # Where the terminal client sends chat turns.
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    speech_backend: str = ""  # "module:callable" recognizer factory, empty = none.
    models: List[Dict[str, str]] = field(default_factory=lambda: [dict(m) for m in _DEFAULT_MODEL_CHOICES])
    allowed_origins: set = field(default_factory=lambda: {
        "http://127.0.0.1:3000", "http://localhost:3000"
    })

    @property
    def model_ids(self) -> List[str]:
        return [m["id"] for m in self.models]


def _env_timeout(name: str, fallback: Optional[float]) -> Optional[float]:
    """Read an optional positive timeout; empty, zero or negative disables it."""
    raw = os.environ.get(name)
    if raw is None:
        return fallback
    raw = raw.strip()
    if not raw:
        return None
    value = float(raw)
    return value if value > 0 else None


def load_config(cfg_yaml: Dict[str, Any] | None = None) -> Config:
    """Build Config from config.yaml (``qwen:`` section) and environment variables.

    Environment variables win over YAML values, which win over defaults.
    """
    if cfg_yaml is None:
        cfg_yaml = _load_config_yaml()
    qwen = cfg_yaml.get("qwen", {}) if isinstance(cfg_yaml, dict) else {}
    if not isinstance(qwen, dict):
        qwen = {}

    port = int(os.environ.get("QWENCHAT_BIND_PORT", str(qwen.get("bind_port", 3000))))
    allowed_origins_raw = os.environ.get(
        "QWENCHAT_ALLOWED_ORIGINS",
        f"http://127.0.0.1:{port},http://localhost:{port}",
    )
    allowed_origins = {v.strip() for v in allowed_origins_raw.split(",") if v.strip()}

    yaml_timeout = qwen.get("timeout_s")
    models = _build_model_choices(cfg_yaml)

    return Config(
        api_url=os.environ.get("QWENCHAT_API_URL", qwen.get("api_url", QWEN_API_URL)),
        default_model=os.environ.get(
            "QWENCHAT_DEFAULT_MODEL", qwen.get("default_model", DEFAULT_MODEL)
        ).strip() or DEFAULT_MODEL,
        bind_host=os.environ.get("QWENCHAT_BIND_HOST", qwen.get("bind_host", "127.0.0.1")),
        bind_port=port,
        timeout_s=_env_timeout(
            "QWENCHAT_TIMEOUT_S",
            float(yaml_timeout) if isinstance(yaml_timeout, (int, float)) and yaml_timeout > 0 else None,
        ),
        proxy_url=os.environ.get("QWENCHAT_PROXY_URL", qwen.get("proxy_url", f"http://127.0.0.1:{port}/api/qwen")),
        system_prompt=qwen.get("system_prompt", DEFAULT_SYSTEM_PROMPT),
        speech_backend=os.environ.get("QWENCHAT_SPEECH_BACKEND", qwen.get("speech_backend", "")).strip(),
        models=models,
        allowed_origins=allowed_origins,
    )


# ---------------------------------------------------------------------------
# Module-level mode flags (set by main() at startup)
# ---------------------------------------------------------------------------
DEBUG_MODE: bool = False


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------
def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for serve/chat execution modes."""
    parser = argparse.ArgumentParser(description="QwenChat proxy server and terminal client")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug logging")
    sub = parser.add_subparsers(dest="cmd")
    sub.add_parser("serve", help="Run the Flask proxy server (default)")
    chat_parser = sub.add_parser("chat", help="Chat with Qwen through a running proxy")
    chat_parser.add_argument("--proxy-url", default=None, help="Proxy endpoint URL")
    chat_parser.add_argument("--model", default=None, help="Initial model identifier")
    chat_parser.add_argument("--speech-backend", default=None,
                             help="Speech recognizer factory as module:callable")
    return parser.parse_args(argv)
