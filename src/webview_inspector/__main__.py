"""Run a standalone bridge with no webview attached.

Useful for trying the HTTP surface and the MCP server: every script is
logged and answered with an error, resize requests are accepted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from .bridge import serve_bridge
from .config import settings
from .context import BridgeContext
from .executor import run_executor
from .relay import open_relay

logger = logging.getLogger("webview_inspector")


def _no_webview(script: str) -> str:
    logger.info("Script received (%d chars), no webview attached", len(script))
    raise RuntimeError("No webview attached to this bridge")


def _log_resize(width: int, height: int) -> None:
    logger.info("Resize requested: %dx%d", width, height)


async def _main(port: int, app_name: str) -> None:
    relay, receiver = open_relay(settings.queue_capacity)
    context = BridgeContext(
        app_name=app_name,
        relay=relay,
        eval_timeout=settings.eval_timeout,
        screenshot_path=settings.screenshot_path,
    )
    executor = asyncio.create_task(run_executor(receiver, _no_webview, _log_resize))
    try:
        await serve_bridge(context, settings.host, port, settings.log_level)
    finally:
        executor.cancel()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--app-name", default=settings.app_name)
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(_main(args.port, args.app_name))


if __name__ == "__main__":
    main()
