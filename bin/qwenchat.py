#!/usr/bin/env python3
"""QwenChat proxy server and terminal client.

Flask server that holds the Qwen API credential and forwards chat turns to
the DashScope OpenAI-compatible endpoint, plus a terminal chat client that
talks to it.

Usage:
    # Server mode (default)
    export QWEN_API_KEY="sk-..."
    python bin/qwenchat.py

    # Terminal client against a running server
    python bin/qwenchat.py chat --model qwen-max

Then POST {"messages": [...], "model": "qwen-plus"} to http://127.0.0.1:3000/api/qwen
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from flask import Flask, Response, request as flask_request, jsonify

# Ensure bin/ is on the path so sibling modules are importable
sys.path.insert(0, str(Path(__file__).resolve().parent))

import qwen_config as config_mod
from qwen_config import API_KEY_ENV, Config, load_config, parse_args
from qwen_proxy import handle_chat_request


# ---------------------------------------------------------------------------
# Flask app factory
# ---------------------------------------------------------------------------
def create_app(cfg: Config) -> Flask:
    """Create and configure the QwenChat Flask application instance."""
    app = Flask(__name__, static_folder=None)

    @app.after_request
    def add_cors_headers(response):
        """Allow configured browser origins to call the proxy."""
        origin = flask_request.headers.get("Origin", "")
        if origin and origin in cfg.allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        return response

    @app.route("/health", methods=["GET"])
    def health():
        """Simple liveness endpoint for local health checks."""
        return jsonify({"ok": True})

    @app.route("/models", methods=["GET"])
    def models():
        """Model choices for client model selectors."""
        return jsonify({"default": cfg.default_model, "models": cfg.models})

    @app.route("/api/qwen", methods=["POST", "OPTIONS"])
    def qwen_proxy():
        """Forward {messages, model} to Qwen and relay the reply or a JSON error."""
        if flask_request.method == "OPTIONS":
            return ("", 204)

        reply = handle_chat_request(cfg, flask_request.get_data())
        if reply.raw is not None:
            return Response(reply.raw, status=reply.status, mimetype="application/json")
        return jsonify(reply.payload), reply.status

    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main(argv=None) -> int:
    """Entrypoint for server startup and the terminal chat client."""
    args = parse_args(argv)
    config_mod.DEBUG_MODE = args.debug
    cfg = load_config()

    if args.cmd == "chat":
        from chat_console import run_console

        if args.proxy_url:
            cfg.proxy_url = args.proxy_url
        if args.speech_backend is not None:
            cfg.speech_backend = args.speech_backend
        return run_console(cfg, model=args.model or cfg.default_model)

    # Default: serve
    print(f"\n{'='*60}")
    print(f"  QwenChat Proxy")
    print(f"{'='*60}")
    print(f"  Bind       : {cfg.bind_host}:{cfg.bind_port}")
    print(f"  Upstream   : {cfg.api_url}")
    print(f"  Credential : {API_KEY_ENV} {'set' if os.environ.get(API_KEY_ENV) else 'NOT SET'}")
    print(f"  Models     : {', '.join(cfg.model_ids)} (default {cfg.default_model})")
    print(f"  Timeout    : {cfg.timeout_s if cfg.timeout_s else 'none'}")
    print(f"  Config YAML: {config_mod._CONFIG_YAML_STATUS}")
    print(f"  Debug      : {'ON' if config_mod.DEBUG_MODE else 'off'}")
    print(f"  Endpoint   : http://{cfg.bind_host}:{cfg.bind_port}/api/qwen")
    print(f"{'='*60}\n")

    app = create_app(cfg)
    app.run(host=cfg.bind_host, port=cfg.bind_port, debug=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
