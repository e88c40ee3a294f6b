"""Window screenshot capture (macOS only).

The window is located through Quartz by owner name, then captured with the
``screencapture`` tool.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from typing import Any, Optional

logger = logging.getLogger(__name__)

SCREENCAPTURE_TIMEOUT = 10.0


def _normalize(name: str) -> str:
    return "".join(c for c in name.lower() if c.isalnum())


def match_window(app_name: str, windows: list[dict[str, Any]]) -> Optional[int]:
    """Pick the first named window whose owner matches ``app_name``.

    Owner and app names are compared lowercase with non-alphanumerics removed,
    in either containment direction.
    """
    app_clean = _normalize(app_name)
    for info in windows:
        owner = info.get("kCGWindowOwnerName")
        if not owner:
            continue
        owner_clean = _normalize(str(owner))
        if app_clean not in owner_clean and owner_clean not in app_clean:
            continue
        if not info.get("kCGWindowName"):
            continue
        window_id = info.get("kCGWindowNumber")
        if window_id is not None:
            return int(window_id)
    return None


def _list_windows() -> list[dict[str, Any]]:
    from Quartz import (
        CGWindowListCopyWindowInfo,
        kCGNullWindowID,
        kCGWindowListOptionOnScreenOnly,
    )

    windows = CGWindowListCopyWindowInfo(kCGWindowListOptionOnScreenOnly, kCGNullWindowID)
    return [dict(w) for w in windows or []]


def capture_screenshot(app_name: str, output_path: str) -> Optional[str]:
    """Capture the app's window to a PNG.

    Returns:
        None on success, otherwise a description of what went wrong.
    """
    if sys.platform != "darwin":
        return "Screenshot capture only supported on macOS"

    try:
        window_id = match_window(app_name, _list_windows())
    except ImportError:
        return "Screenshot capture requires pyobjc-framework-Quartz"
    if window_id is None:
        return f"No on-screen window found for '{app_name}'"

    logger.info("Capturing window %d of %s to %s", window_id, app_name, output_path)
    try:
        result = subprocess.run(
            ["screencapture", "-x", "-o", "-t", "png", "-l", str(window_id), output_path],
            capture_output=True,
            text=True,
            timeout=SCREENCAPTURE_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        return f"screencapture timed out after {SCREENCAPTURE_TIMEOUT:g}s"
    except OSError as e:
        return f"Failed to run screencapture: {e}"

    if result.returncode != 0:
        return f"Failed to capture window image: {result.stderr.strip() or 'unknown error'}"
    return None
