"""Client for the node-capability discovery service (JSON-RPC 2.0 over HTTP)."""

from __future__ import annotations

import itertools
import json
import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx
from pydantic import BaseModel

from ..errors import DiscoveryError

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "autoflow", "version": "0.1.0"}


class NodeConfigVerdict(BaseModel):
    valid: bool
    errors: list[str] = []


class DiscoveryClient:
    """Async client for the discovery service.

    Every call is bounded by ``timeout`` seconds. Transport failures, JSON-RPC
    errors and malformed payloads all surface as :class:`DiscoveryError`.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self.timeout = timeout
        self._ids = itertools.count(1)
        self.connected = False

    @classmethod
    def from_settings(cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> DiscoveryClient:
        return cls(
            settings.discovery_url or "",
            settings.discovery_token or "",
            timeout=settings.discovery_timeout_seconds,
            http_client=http_client,
        )

    async def __aenter__(self) -> DiscoveryClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.connected = False
        if self._owns_client:
            await self.http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _rpc(self, method: str, params: dict[str, Any]) -> Any:
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}
        try:
            resp = await self.http.post(
                f"{self.base_url}/mcp",
                headers=self._headers,
                json=payload,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise DiscoveryError(f"{method} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise DiscoveryError(f"{method} failed: {e}") from e

        if resp.status_code >= 400:
            raise DiscoveryError(f"{method} failed: HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise DiscoveryError(f"{method} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise DiscoveryError(f"{method} returned a malformed JSON-RPC envelope")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise DiscoveryError(f"{method} error: {message}")
        if "result" not in data:
            raise DiscoveryError(f"{method} response has no result")
        return data["result"]

    async def connect(self) -> None:
        """Perform the initialize handshake once."""
        if self.connected:
            return
        await self._rpc(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "clientInfo": CLIENT_INFO,
            },
        )
        self.connected = True
        logger.info("Connected to discovery service at %s", self.base_url)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        await self.connect()
        result = await self._rpc("tools/call", {"name": name, "arguments": arguments})
        return _unwrap_tool_result(name, result)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def search_node_kinds(self, query: str, limit: int = 5) -> list[str]:
        result = await self.call_tool("search_nodes", {"query": query, "limit": limit})
        items = result.get("results", result.get("nodes")) if isinstance(result, dict) else result
        if not isinstance(items, list):
            raise DiscoveryError("search_nodes returned no result list")
        kinds: list[str] = []
        for item in items:
            if isinstance(item, str):
                kinds.append(item)
            elif isinstance(item, dict) and isinstance(item.get("nodeType"), str):
                kinds.append(item["nodeType"])
        return kinds

    async def get_node_essentials(self, node_type: str) -> dict[str, Any]:
        result = await self.call_tool("get_node_essentials", {"nodeType": node_type})
        if not isinstance(result, dict):
            raise DiscoveryError(f"essentials for {node_type} are not an object")
        required = result.get("required", [])
        if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
            raise DiscoveryError(f"essentials for {node_type} have a malformed 'required' list")
        if not isinstance(result.get("defaults", {}), dict):
            raise DiscoveryError(f"essentials for {node_type} have malformed 'defaults'")
        version = result.get("typeVersion", 1)
        if not isinstance(version, (int, float)) or isinstance(version, bool):
            raise DiscoveryError(f"essentials for {node_type} have a non-numeric 'typeVersion'")
        if not isinstance(result.get("documentation", ""), str):
            raise DiscoveryError(f"essentials for {node_type} have non-text 'documentation'")
        return result

    async def validate_node_configuration(self, node_type: str, parameters: dict[str, Any]) -> NodeConfigVerdict:
        result = await self.call_tool(
            "validate_node_operation",
            {"nodeType": node_type, "config": parameters, "profile": "runtime"},
        )
        if not isinstance(result, dict) or not isinstance(result.get("valid"), bool):
            raise DiscoveryError(f"validation verdict for {node_type} is malformed")
        errors = [e if isinstance(e, str) else json.dumps(e) for e in result.get("errors", [])]
        return NodeConfigVerdict(valid=result["valid"], errors=errors)


def _unwrap_tool_result(name: str, result: Any) -> Any:
    """Tool results arrive either bare or as ``{"content": [{"type": "text", "text": json}]}``."""
    if not (isinstance(result, dict) and isinstance(result.get("content"), list)):
        return result
    if result.get("isError"):
        raise DiscoveryError(f"{name} reported an error")
    texts = [c.get("text", "") for c in result["content"] if isinstance(c, dict) and c.get("type") == "text"]
    if not texts:
        raise DiscoveryError(f"{name} returned no text content")
    try:
        return json.loads("".join(texts))
    except ValueError as e:
        raise DiscoveryError(f"{name} returned malformed JSON content") from e
