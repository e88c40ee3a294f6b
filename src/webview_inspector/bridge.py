"""Bridge bootstrap: build the FastAPI app and serve it next to the UI."""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .config import Settings, settings as default_settings
from .context import BridgeContext
from .handlers import router
from .relay import CommandReceiver, open_relay

logger = logging.getLogger(__name__)


def create_app(context: BridgeContext) -> FastAPI:
    """Build the HTTP app around an explicitly constructed context."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context.relay.bind(asyncio.get_running_loop())
        logger.info("Inspector bridge ready for %s (pid %d)", context.app_name, context.pid)
        yield
        context.relay.close()
        logger.info("Inspector bridge shutting down")

    app = FastAPI(
        title="Webview Inspector Bridge",
        description="HTTP bridge for inspecting and debugging desktop webview apps",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.bridge = context
    app.include_router(router)
    return app


async def serve_bridge(
    context: BridgeContext,
    host: str = "127.0.0.1",
    port: int = 9999,
    log_level: str = "info",
) -> None:
    """Serve the bridge on the running loop until cancelled.

    Raises:
        OSError: the address could not be bound. The relay is closed first so
            the UI executor stops waiting.
    """
    try:
        sock = socket.create_server((host, port))
    except OSError as e:
        logger.error("Failed to bind inspector bridge on %s:%d: %s", host, port, e)
        context.relay.close()
        raise

    config = uvicorn.Config(
        create_app(context),
        log_level=log_level.lower(),
        log_config=None,
    )
    server = uvicorn.Server(config)
    logger.info("Inspector bridge listening on http://%s:%d", host, port)
    try:
        await server.serve(sockets=[sock])
    finally:
        context.relay.close()
        sock.close()


def start_bridge(
    port: Optional[int] = None,
    app_name: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> CommandReceiver:
    """Start the bridge on a background thread.

    Returns the receiver the application's UI loop must poll, e.g.::

        receiver = start_bridge(9999, "my-app")
        while (command := receiver.recv_blocking()) is not None:
            command.reply(execute(command, evaluate))
    """
    settings = settings or default_settings
    relay, receiver = open_relay(settings.queue_capacity)
    context = BridgeContext(
        app_name=app_name or settings.app_name,
        relay=relay,
        eval_timeout=settings.eval_timeout,
        screenshot_path=settings.screenshot_path,
    )
    host = settings.host
    port = port if port is not None else settings.port

    def _run() -> None:
        try:
            asyncio.run(serve_bridge(context, host, port, settings.log_level))
        except OSError:
            # Already logged; the receiver sees a closed relay.
            return

    thread = threading.Thread(target=_run, name="webview-inspector-bridge", daemon=True)
    thread.start()
    return receiver
