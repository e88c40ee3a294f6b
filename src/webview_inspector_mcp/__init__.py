"""MCP server exposing the webview inspector bridge as tools."""

from .client import BridgeResponse, InspectorClient

__version__ = "0.1.0"
__all__ = ["BridgeResponse", "InspectorClient"]
