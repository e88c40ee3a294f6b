"""Process-wide bridge state, created once and handed to the HTTP app."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Optional

from .config import DEFAULT_SCREENSHOT_PATH
from .relay import CommandRelay


def format_uptime(secs: int) -> str:
    if secs < 60:
        return f"{secs}s"
    if secs < 3600:
        return f"{secs // 60}m {secs % 60}s"
    return f"{secs // 3600}h {(secs % 3600) // 60}m"


@dataclass(frozen=True)
class BridgeContext:
    """Shared state for the HTTP handlers.

    Attributes:
        app_name: Application name, reported by /status and used to find the
            window for screenshots.
        relay: Producer end of the command relay.
        started_at: ``time.monotonic()`` at bridge start, for uptime.
        pid: Process ID of the running application.
        eval_timeout: Seconds to wait for a reply; None waits forever.
        screenshot_path: Default output path for /screenshot.
    """

    app_name: str
    relay: CommandRelay
    started_at: float = field(default_factory=time.monotonic)
    pid: int = field(default_factory=os.getpid)
    eval_timeout: Optional[float] = None
    screenshot_path: str = DEFAULT_SCREENSHOT_PATH

    def uptime_secs(self) -> int:
        return int(time.monotonic() - self.started_at)
