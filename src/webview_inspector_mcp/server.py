"""MCP Server for the webview inspector - lets AI inspect and drive a running app.

This server provides tools for:
- Checking that the app's inspector bridge is up
- Reading the DOM, element text/markup and visibility diagnostics
- Interacting with elements (click, type) and running arbitrary scripts
- Capturing and resizing the app window
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from pathlib import Path
from typing import Any

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from webview_inspector.scripts import (
    build_click_script,
    build_query_all_script,
    build_type_text_script,
)

from .client import BridgeResponse, InspectorClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# MCP Server instance
server = Server("webview-inspector-mcp")
client: InspectorClient | None = None


def get_client() -> InspectorClient:
    """Get or create the inspector client."""
    global client
    if client is None:
        client = InspectorClient()
    return client


class ToolError(Exception):
    """A tool call that reached the bridge but did not succeed."""


# =============================================================================
# Content Boundary Markers
# =============================================================================

CONTENT_START = "<<CONTENT>>"
CONTENT_END = "<</CONTENT>>"


def wrap_content(text: str) -> str:
    """Wrap page-derived content in boundary markers."""
    if not text or text == "null":
        return text
    return f"{CONTENT_START}{text}{CONTENT_END}"


# =============================================================================
# Output Helpers
# =============================================================================


def truncate_field(text: str | None, max_len: int) -> str | None:
    """Truncate a text field to max_len chars."""
    if not text or len(text) <= max_len:
        return text
    return f"{text[:max_len]}... [{len(text)} chars total]"


def extract_result(response: BridgeResponse) -> str:
    """Pull the script result out of an eval envelope, or raise its error."""
    if not response.success:
        raise ToolError(response.error or "Unknown error")
    result = (response.data or {}).get("result")
    return "null" if result is None else str(result)


def decode_json_result(raw: str) -> Any:
    """Decode a script result that may be JSON-encoded more than once."""
    value: Any = raw
    for _ in range(2):
        if not isinstance(value, str):
            break
        try:
            value = json.loads(value)
        except ValueError:
            break
    return value


def pretty_json(raw: str) -> str:
    value = decode_json_result(raw)
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2)


def get_string_arg(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str):
        raise ToolError(f"Missing '{key}' argument")
    return value


def get_int_arg(arguments: dict[str, Any], key: str) -> int:
    if arguments.get(key) is None:
        raise ToolError(f"Missing '{key}' argument")
    value = arguments[key]
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ToolError(f"'{key}' must be a non-negative integer, got {value!r}")
    return value


def format_visibility(raw: str) -> str:
    """Render an inspect result as a short report."""
    report = decode_json_result(raw)
    if not isinstance(report, dict):
        return raw
    if not report.get("found", False):
        return f"Element not found: {report.get('selector', '?')}"

    element = report.get("element", {})
    rect = element.get("boundingRect", {})
    lines = [
        f"{report.get('selector', '?')} <{element.get('tag', '?')}>"
        f" visible={'yes' if report.get('visible') else 'no'}",
        f"Bounds: ({rect.get('left', 0):.0f}, {rect.get('top', 0):.0f}, "
        f"{rect.get('width', 0):.0f}x{rect.get('height', 0):.0f})",
    ]
    issues = report.get("issues", [])
    if issues:
        lines.append(f"Issues ({len(issues)}):")
        for issue in issues:
            lines.append(f"  - [{issue.get('type', '?')}] {issue.get('message', '')}")
    else:
        lines.append("No issues detected.")
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Tool Definitions
# -----------------------------------------------------------------------------

_SELECTOR_SCHEMA = {"type": "string", "description": "CSS selector"}

TOOLS = [
    types.Tool(
        name="status",
        description="Check if the app is running with the inspector bridge enabled.",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="get_dom",
        description="""Get a simplified DOM tree (tags, ids, classes, text).

Use selector to start from a subtree. depth and max_nodes are hard limits;
the result reports whether it was truncated.""",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": {
                    "type": "string",
                    "description": "Root element selector (defaults to body)",
                },
                "depth": {"type": "integer", "description": "Max depth (default 10)"},
                "max_nodes": {
                    "type": "integer",
                    "description": "Max nodes to serialize (default 500)",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="query_text",
        description="Get element text content by CSS selector.",
        inputSchema={
            "type": "object",
            "properties": {"selector": _SELECTOR_SCHEMA},
            "required": ["selector"],
        },
    ),
    types.Tool(
        name="query_html",
        description="Get element innerHTML by CSS selector.",
        inputSchema={
            "type": "object",
            "properties": {"selector": _SELECTOR_SCHEMA},
            "required": ["selector"],
        },
    ),
    types.Tool(
        name="query_property",
        description="""Read a property of the first matching element.

property is one of text, html, outerHTML, value, or any attribute name
(e.g. href, data-id). Returns null when nothing matches.""",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": _SELECTOR_SCHEMA,
                "property": {"type": "string", "description": "Property or attribute name"},
            },
            "required": ["selector", "property"],
        },
    ),
    types.Tool(
        name="query_all",
        description="List all elements matching a selector (tag, id, class, text).",
        inputSchema={
            "type": "object",
            "properties": {"selector": _SELECTOR_SCHEMA},
            "required": ["selector"],
        },
    ),
    types.Tool(
        name="click",
        description="Click the first element matching a CSS selector.",
        inputSchema={
            "type": "object",
            "properties": {"selector": _SELECTOR_SCHEMA},
            "required": ["selector"],
        },
    ),
    types.Tool(
        name="type_text",
        description="Set the value of an input and fire an input event.",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": _SELECTOR_SCHEMA,
                "text": {"type": "string", "description": "Text to type"},
            },
            "required": ["selector", "text"],
        },
    ),
    types.Tool(
        name="eval",
        description="""Execute a script in the webview.

The script is a function body: use `return` to produce a value.
Non-string values come back JSON-encoded.""",
        inputSchema={
            "type": "object",
            "properties": {
                "script": {"type": "string", "description": "Script code"},
                "max_length": {
                    "type": "integer",
                    "description": "Truncate the result to this many chars",
                },
            },
            "required": ["script"],
        },
    ),
    types.Tool(
        name="inspect",
        description="""Analyze element visibility.

Reports bounding box, computed style, viewport and occlusion problems, and
classes with no CSS rules.""",
        inputSchema={
            "type": "object",
            "properties": {"selector": _SELECTOR_SCHEMA},
            "required": ["selector"],
        },
    ),
    types.Tool(
        name="validate_classes",
        description="Check which CSS classes have rules in the loaded stylesheets.",
        inputSchema={
            "type": "object",
            "properties": {
                "classes": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Class names, e.g. ['flex', 'p-4']",
                },
            },
            "required": ["classes"],
        },
    ),
    types.Tool(
        name="diagnose",
        description="Quick UI health check: empty root, off-screen and zero-size elements, missing CSS.",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="screenshot",
        description="Capture a window screenshot (macOS only).",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Output path (optional)"},
            },
            "required": [],
        },
    ),
    types.Tool(
        name="resize",
        description="Resize the app window.",
        inputSchema={
            "type": "object",
            "properties": {
                "width": {"type": "integer", "description": "Window width in pixels"},
                "height": {"type": "integer", "description": "Window height in pixels"},
            },
            "required": ["width", "height"],
        },
    ),
]


@server.list_tools()  # type: ignore
async def list_tools() -> list[types.Tool]:
    """List available inspector tools."""
    return TOOLS


def _text(text: str) -> list[types.TextContent | types.ImageContent]:
    return [types.TextContent(type="text", text=text)]


@server.call_tool()  # type: ignore
async def call_tool(
    name: str, arguments: dict[str, Any]
) -> list[types.TextContent | types.ImageContent]:
    """Handle tool calls."""
    bridge = get_client()
    arguments = arguments or {}

    try:
        if name == "status":
            response = await bridge.status()
            if not response.success:
                return _text(
                    f"Bridge not available: {response.error}. "
                    "Start the app with the inspector enabled."
                )
            data = response.data or {}
            return _text(
                f"Connected: {data.get('app', '?')} ({data.get('status', '?')}), "
                f"pid {data.get('pid', '?')}, up {data.get('uptime_human', '?')}"
            )

        elif name == "get_dom":
            response = await bridge.dom(
                selector=arguments.get("selector"),
                depth=arguments.get("depth"),
                max_nodes=arguments.get("max_nodes"),
            )
            return _text(pretty_json(extract_result(response)))

        elif name == "query_text":
            selector = get_string_arg(arguments, "selector")
            response = await bridge.query(selector, "text")
            return _text(wrap_content(extract_result(response)))

        elif name == "query_html":
            selector = get_string_arg(arguments, "selector")
            response = await bridge.query(selector, "html")
            return _text(wrap_content(extract_result(response)))

        elif name == "query_property":
            selector = get_string_arg(arguments, "selector")
            prop = get_string_arg(arguments, "property")
            response = await bridge.query(selector, prop)
            return _text(wrap_content(extract_result(response)))

        elif name == "query_all":
            selector = get_string_arg(arguments, "selector")
            response = await bridge.eval(build_query_all_script(selector))
            return _text(pretty_json(extract_result(response)))

        elif name == "click":
            selector = get_string_arg(arguments, "selector")
            response = await bridge.eval(build_click_script(selector))
            return _text(extract_result(response))

        elif name == "type_text":
            selector = get_string_arg(arguments, "selector")
            text = get_string_arg(arguments, "text")
            response = await bridge.eval(build_type_text_script(selector, text))
            return _text(extract_result(response))

        elif name == "eval":
            script = get_string_arg(arguments, "script")
            response = await bridge.eval(script)
            result = extract_result(response)
            max_length = arguments.get("max_length")
            if max_length:
                result = truncate_field(result, int(max_length)) or result
            return _text(result)

        elif name == "inspect":
            selector = get_string_arg(arguments, "selector")
            response = await bridge.inspect(selector)
            return _text(format_visibility(extract_result(response)))

        elif name == "validate_classes":
            classes = arguments.get("classes")
            if not isinstance(classes, list) or not all(isinstance(c, str) for c in classes):
                raise ToolError("Missing 'classes' argument")
            response = await bridge.validate_classes(classes)
            report = decode_json_result(extract_result(response))
            if not isinstance(report, dict):
                return _text(str(report))
            available = report.get("available", [])
            missing = report.get("missing", [])
            lines = [f"Available ({len(available)}): {', '.join(available) or '-'}"]
            lines.append(f"Missing ({len(missing)}): {', '.join(missing) or '-'}")
            return _text("\n".join(lines))

        elif name == "diagnose":
            response = await bridge.diagnose()
            return _text(pretty_json(extract_result(response)))

        elif name == "screenshot":
            response = await bridge.screenshot(arguments.get("path"))
            if not response.success:
                raise ToolError(response.error or "Unknown error")
            path = (response.data or {}).get("path", "")
            content: list[types.TextContent | types.ImageContent] = _text(
                f"Screenshot saved: {path}"
            )
            image = _read_png(path)
            if image is not None:
                content.append(
                    types.ImageContent(type="image", data=image, mimeType="image/png")
                )
            return content

        elif name == "resize":
            width = get_int_arg(arguments, "width")
            height = get_int_arg(arguments, "height")
            response = await bridge.resize(width, height)
            if not response.success:
                raise ToolError(response.error or "Unknown error")
            data = response.data or {}
            return _text(
                f"Window resized to {data.get('width', width)}x{data.get('height', height)}"
            )

        else:
            return _text(f"Unknown tool: {name}")

    except ToolError as e:
        return _text(f"Error: {e}")
    except Exception as e:
        logger.exception(f"Error calling tool {name}")
        return _text(f"Error: {str(e)}")


def _read_png(path: str) -> str | None:
    """Base64 of a screenshot file, if this process can read it."""
    try:
        return base64.b64encode(Path(path).read_bytes()).decode()
    except OSError:
        return None


async def main() -> None:
    """Run the MCP server."""
    logger.info("Starting webview inspector MCP server, bridge: %s", get_client().base_url)

    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def run() -> None:
    """Entry point for the MCP server."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
