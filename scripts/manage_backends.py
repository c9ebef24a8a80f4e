"""
Operator commands: show which storage backend would be selected, reset it to
seed data, or serve the API.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from itembase.config import get_settings
from itembase.dependencies import build_context

logger = logging.getLogger(__name__)


async def _probe() -> dict:
    context = build_context(get_settings())
    try:
        await context.start()
        return await context.selector.status()
    finally:
        await context.close()


async def _reset() -> str:
    context = build_context(get_settings())
    try:
        backend = await context.selector.probe()
        await backend.reset()
        return backend.kind.value
    finally:
        await context.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Itembase backend management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("probe", help="Run backend selection and print the result")
    subparsers.add_parser("reset", help="Clear the selected backend and seed it again")
    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default="0.0.0.0", help="Bind address")
    serve.add_argument("--port", type=int, default=3001, help="Port to listen on")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if args.command == "probe":
        print(json.dumps(asyncio.run(_probe()), indent=2))
        return 0
    if args.command == "reset":
        kind = asyncio.run(_reset())
        logger.info("Reset %s backend to seed data", kind)
        return 0

    import uvicorn

    uvicorn.run(
        "itembase.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
