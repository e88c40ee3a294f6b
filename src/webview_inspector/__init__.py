"""Webview Inspector: HTTP bridge for inspecting and debugging desktop webview apps.

Embed the bridge in your app and poll the returned receiver from the UI
thread::

    from webview_inspector import as_expression, execute, start_bridge

    receiver = start_bridge(9999, "my-app")

    def on_ui_tick():
        while (command := receiver.try_recv()) is not None:
            command.reply(execute(command, lambda s: window.evaluate_js(as_expression(s))))

Architecture::

    MCP client <--stdio--> webview-inspector-mcp <--HTTP--> bridge <--relay--> UI thread
"""

from .bridge import create_app, serve_bridge, start_bridge
from .context import BridgeContext, format_uptime
from .executor import as_expression, drain, execute, run_executor
from .relay import (
    CommandReceiver,
    CommandRelay,
    EvalCommand,
    RelayError,
    RelayState,
    RelayTimeout,
    RelayUnavailable,
    ReplyDropped,
    ReplySlot,
    open_relay,
)
from .types import EvalResponse

__all__ = [
    "BridgeContext",
    "CommandReceiver",
    "CommandRelay",
    "EvalCommand",
    "EvalResponse",
    "RelayError",
    "RelayState",
    "RelayTimeout",
    "RelayUnavailable",
    "ReplyDropped",
    "ReplySlot",
    "as_expression",
    "create_app",
    "drain",
    "execute",
    "format_uptime",
    "open_relay",
    "run_executor",
    "serve_bridge",
    "start_bridge",
]
