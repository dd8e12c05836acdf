"""Application entrypoint — start the API server or inspect settings."""

from __future__ import annotations

import argparse
import json
import sys

import uvicorn

from garden_watch.config import get_settings
from garden_watch.logger import setup_logging


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="garden-watch",
        description="Behavioural baseline and anomaly detection for garden activity.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── serve ─────────────────────────────────────────────────
    serve_parser = sub.add_parser("serve", help="Start the API server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # ── settings ──────────────────────────────────────────────
    sub.add_parser("settings", help="Print the effective settings as JSON.")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        uvicorn.run(
            "garden_watch.api.server:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
        )
    elif args.command == "settings":
        print(json.dumps(settings.model_dump(mode="json", exclude={"api_secret_key"}), indent=2))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
