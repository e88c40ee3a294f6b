"""Helpers for the UI side of the relay.

The host application supplies ``evaluate(script)``, which runs a script in
its webview and returns the script's value, and optionally
``on_resize(width, height)``. These helpers turn commands into replies.
"""

from __future__ import annotations

import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from .relay import CommandReceiver, EvalCommand
from .scripts import parse_resize_sentinel, resize_sentinel
from .types import EvalResponse

logger = logging.getLogger(__name__)

Evaluate = Callable[[str], Any]
ResizeHandler = Callable[[int, int], Any]


def as_expression(script: str) -> str:
    """Wrap a ``return``-style function body so it can be evaluated as an
    expression (e.g. by pywebview's ``evaluate_js``)."""
    return f"(() => {{\n{script}\n}})()"


def stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def execute(
    command: EvalCommand,
    evaluate: Evaluate,
    on_resize: Optional[ResizeHandler] = None,
) -> EvalResponse:
    """Run one command and build its outcome. Does not reply."""
    size = parse_resize_sentinel(command.script)
    if size is not None:
        if on_resize is None:
            return EvalResponse.fail("Window resize is not supported by this app")
        try:
            on_resize(*size)
        except Exception as e:
            logger.warning("Resize to %dx%d failed: %s", size[0], size[1], e)
            return EvalResponse.fail(str(e))
        return EvalResponse.ok(resize_sentinel(*size))

    try:
        value = evaluate(command.script)
    except Exception as e:
        return EvalResponse.fail(str(e) or type(e).__name__)
    return EvalResponse.ok(stringify(value))


def drain(
    receiver: CommandReceiver,
    evaluate: Evaluate,
    on_resize: Optional[ResizeHandler] = None,
    limit: Optional[int] = None,
) -> int:
    """Handle whatever is queued without blocking; for UI timer callbacks.

    Returns the number of commands handled.
    """
    handled = 0
    while limit is None or handled < limit:
        command = receiver.try_recv()
        if command is None:
            break
        command.reply(execute(command, evaluate, on_resize))
        handled += 1
    return handled


async def run_executor(
    receiver: CommandReceiver,
    evaluate: Callable[[str], Union[Any, Awaitable[Any]]],
    on_resize: Optional[ResizeHandler] = None,
) -> None:
    """Serve commands one at a time until the relay closes.

    ``evaluate`` may be a coroutine function.
    """
    async for command in receiver:
        size = parse_resize_sentinel(command.script)
        if size is None:
            try:
                value = evaluate(command.script)
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                command.reply(EvalResponse.fail(str(e) or type(e).__name__))
                continue
            command.reply(EvalResponse.ok(stringify(value)))
        else:
            command.reply(execute(command, evaluate, on_resize))
    logger.debug("Relay closed, executor stopping")
