"""HTTP client for the webview inspector bridge."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BRIDGE_URL = "http://127.0.0.1:9999"
DEFAULT_TIMEOUT = 30.0
# Slightly longer than the bridge's own eval deadline so its 504 reaches us.
EVAL_TIMEOUT = 35.0


@dataclass
class BridgeResponse:
    """Response from the inspector bridge."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class InspectorClient:
    """HTTP client for the inspector bridge endpoints.

    Every method returns a :class:`BridgeResponse`; transport failures are
    reported through ``error`` rather than raised.
    """

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Bridge URL. Defaults to $WEBVIEW_INSPECTOR_URL or
                http://127.0.0.1:9999.
            transport: Optional httpx transport, mainly for tests.
        """
        url = base_url or os.environ.get("WEBVIEW_INSPECTOR_URL") or DEFAULT_BRIDGE_URL
        self.base_url = url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=DEFAULT_TIMEOUT, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        params: dict[str, str] | None = None,
    ) -> BridgeResponse:
        """Make an HTTP request to the bridge.

        Args:
            method: HTTP method (GET or POST).
            endpoint: API endpoint path.
            json_data: Optional JSON body for POST requests.
            timeout: Request timeout in seconds.
            params: Optional query parameters for GET requests.
        """
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"

        try:
            if method == "GET":
                response = await client.get(url, params=params, timeout=timeout)
            elif method == "POST":
                response = await client.post(url, json=json_data, timeout=timeout)
            else:
                return BridgeResponse(
                    success=False, error=f"Unsupported method: {method}"
                )

            response.raise_for_status()
            data = response.json()
            return BridgeResponse(
                success=data.get("success", data.get("status") == "ok"),
                data=data,
                error=data.get("error"),
            )
        except httpx.ConnectError as e:
            return BridgeResponse(
                success=False,
                error=f"Cannot connect to bridge at {url}. Is the app running with the inspector enabled? Error: {e}",
            )
        except httpx.HTTPStatusError as e:
            return BridgeResponse(
                success=False,
                error=f"API error: {e.response.status_code} - {_detail(e.response)}",
            )
        except httpx.TimeoutException:
            return BridgeResponse(
                success=False,
                error=f"Request timed out after {timeout}s",
            )
        except Exception as e:
            return BridgeResponse(success=False, error=str(e))

    # -------------------------------------------------------------------------
    # Health & Status
    # -------------------------------------------------------------------------

    async def status(self) -> BridgeResponse:
        """Check bridge health: app name, pid and uptime."""
        return await self._request("GET", "/status")

    # -------------------------------------------------------------------------
    # Script Evaluation
    # -------------------------------------------------------------------------

    async def eval(self, script: str) -> BridgeResponse:
        """Execute a script in the webview.

        Args:
            script: Function body; use ``return`` to produce a value.
        """
        return await self._request(
            "POST", "/eval", {"script": script}, timeout=EVAL_TIMEOUT
        )

    async def query(self, selector: str, property: str | None = None) -> BridgeResponse:
        """Read a property of the first element matching a selector.

        Args:
            selector: CSS selector.
            property: text (default), html, outerHTML, value, or an attribute name.
        """
        body: dict[str, Any] = {"selector": selector}
        if property:
            body["property"] = property
        return await self._request("POST", "/query", body, timeout=EVAL_TIMEOUT)

    async def dom(
        self,
        selector: str | None = None,
        depth: int | None = None,
        max_nodes: int | None = None,
    ) -> BridgeResponse:
        """Get a simplified DOM tree.

        Args:
            selector: Root element; defaults to the document body.
            depth: Maximum depth to descend.
            max_nodes: Maximum number of nodes to serialize.
        """
        params: dict[str, str] | None = None
        if selector or depth is not None or max_nodes is not None:
            params = {}
            if selector:
                params["selector"] = selector
            if depth is not None:
                params["depth"] = str(depth)
            if max_nodes is not None:
                params["max_nodes"] = str(max_nodes)
        return await self._request("GET", "/dom", params=params, timeout=EVAL_TIMEOUT)

    async def inspect(self, selector: str) -> BridgeResponse:
        """Analyze why an element is or isn't visible."""
        return await self._request(
            "POST", "/inspect", {"selector": selector}, timeout=EVAL_TIMEOUT
        )

    async def validate_classes(self, classes: list[str]) -> BridgeResponse:
        """Check which CSS classes have rules in the loaded stylesheets."""
        return await self._request(
            "POST", "/validate-classes", {"classes": classes}, timeout=EVAL_TIMEOUT
        )

    async def diagnose(self) -> BridgeResponse:
        """Quick UI health check."""
        return await self._request("GET", "/diagnose", timeout=EVAL_TIMEOUT)

    # -------------------------------------------------------------------------
    # Window
    # -------------------------------------------------------------------------

    async def screenshot(self, path: str | None = None) -> BridgeResponse:
        """Capture the app window to a PNG (macOS only).

        Args:
            path: Output path. The bridge picks a default under /tmp.
        """
        body: dict[str, Any] = {}
        if path:
            body["path"] = path
        return await self._request("POST", "/screenshot", body)

    async def resize(self, width: int, height: int) -> BridgeResponse:
        """Resize the app window."""
        return await self._request(
            "POST",
            "/resize",
            {"width": width, "height": height},
            timeout=EVAL_TIMEOUT,
        )


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text
