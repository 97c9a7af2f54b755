from __future__ import annotations

import argparse
import os

import uvicorn

from subsync.apps.api.main import create_app
from subsync.core.config import get_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the subsync API server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "3001")), help="Bind port")
    return parser


def main() -> None:
    # Settings come from env/.env; a store connection failure at startup exits non-zero.
    args = _build_parser().parse_args()
    settings = get_settings()
    app = create_app(settings=settings)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
