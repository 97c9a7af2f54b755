from __future__ import annotations

import argparse
import asyncio
import sys

from subsync.core.config import get_settings
from subsync.core.logging import configure_logging
from subsync.persistence.db import create_store
from subsync.persistence.schema import is_initialized, setup_tables


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create subsync tables in the configured store")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report whether the schema exists; exit 1 when it does not",
    )
    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = create_store(settings)
    await store.connect()
    try:
        initialized = await is_initialized(store)
        if args.check:
            print(f"backend={store.backend} initialized={initialized}")
            return 0 if initialized else 1
        # DDL is idempotent (IF NOT EXISTS), so re-running against a live database is safe.
        await setup_tables(store)
        print(f"backend={store.backend} schema ready")
        return 0
    finally:
        await store.close()


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"setup_db failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
