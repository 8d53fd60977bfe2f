# =============================================================================
# Gateway Client — One Tool Call = One Gateway Session
# =============================================================================
#
# The Gateway relays opaque bytes. This module is the caller side of the
# worker protocol (newline-delimited JSON-RPC 2.0, see workers/protocol.py):
#
#   call_tool("timeline-builder", "construct_timeline", {"text": ...})
#     1. frame {"jsonrpc": "2.0", "id": ..., "method": "tools/call",
#               "params": {"name": ..., "arguments": ...}}\n
#     2. open a gateway session with that single line as inbound stream
#        (end of input tells the worker to exit after answering)
#     3. read output lines until the response carrying our id
#     4. close the session, return the response's text content
#
# Two transports, same contract:
#   LocalGatewayClient — ToolGateway in this process (default)
#   HttpGatewayClient  — remote gateway at GATEWAY_URL via httpx
#
# Failures:
#   worker answered isError / JSON-RPC error / exited silently → WorkerFailure
#   gateway itself unreachable                                 → GatewayUnavailable
#   unknown capability                                         → CapabilityNotFound
# =============================================================================

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Protocol

import httpx

from docsense.config import settings
from docsense.errors import (
    CapabilityNotFound,
    GatewayUnavailable,
    WorkerFailure,
)
from docsense.services.gateway import ToolGateway, get_gateway

logger = logging.getLogger(__name__)


class GatewayClient(Protocol):
    """What the orchestrator and the analysis endpoints need from a gateway."""

    async def call_tool(self, capability: str, tool: str, arguments: dict) -> str:
        ...

    async def check(self) -> None:
        """Raise GatewayUnavailable if no capability can be reached."""
        ...


# ---------------------------------------------------------------------------
# Framing Helpers
# ---------------------------------------------------------------------------


def frame_tool_call(request_id: str, tool: str, arguments: dict) -> bytes:
    message = {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": tool, "arguments": arguments},
    }
    return (json.dumps(message) + "\n").encode("utf-8")


def _result_text(response: dict, capability: str) -> str:
    """Extract the text content of a tools/call response, raising on errors."""
    if "error" in response:
        error = response["error"] or {}
        raise WorkerFailure(
            message=f"JSON-RPC error {error.get('code')}: {error.get('message')}",
            provider_name=capability,
        )

    result = response.get("result") or {}
    text = "".join(
        block.get("text", "")
        for block in result.get("content", [])
        if block.get("type") == "text"
    )
    if result.get("isError"):
        raise WorkerFailure(message=text or "Tool reported an error", provider_name=capability)
    return text


async def read_tool_response(
    chunks: AsyncIterator[bytes],
    request_id: str,
    capability: str,
) -> str | None:
    """
    Scan newline-delimited output for the response to `request_id`.

    Returns the response text, or None if the output ended without one.
    """
    buffer = b""
    async for chunk in chunks:
        buffer += chunk
        while b"\n" in buffer:
            line, buffer = buffer.split(b"\n", 1)
            if not line.strip():
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON output from %s: %r", capability, line[:200])
                continue
            if isinstance(message, dict) and message.get("id") == request_id:
                return _result_text(message, capability)
    return None


async def _single(payload: bytes) -> AsyncIterator[bytes]:
    yield payload


# ---------------------------------------------------------------------------
# Local Transport
# ---------------------------------------------------------------------------


class LocalGatewayClient:
    """Calls capabilities through a ToolGateway in this process."""

    def __init__(self, gateway: ToolGateway | None = None) -> None:
        self._gateway = gateway or get_gateway()

    async def check(self) -> None:
        if not self._gateway.capabilities():
            raise GatewayUnavailable("No capabilities are registered")

    async def call_tool(self, capability: str, tool: str, arguments: dict) -> str:
        request_id = uuid.uuid4().hex
        payload = frame_tool_call(request_id, tool, arguments)

        async with self._gateway.session(capability, _single(payload)) as handle:
            async with aclosing(aiter(handle)) as output:
                text = await read_tool_response(output, request_id, capability)
            exit_code = handle.exit_code

        if text is None:
            raise WorkerFailure(
                message=f"Worker ended without answering {tool} (exit code {exit_code})",
                provider_name=capability,
                exit_code=exit_code,
            )
        return text


# ---------------------------------------------------------------------------
# HTTP Transport
# ---------------------------------------------------------------------------


class HttpGatewayClient:
    """Calls capabilities on a remote gateway (POST /gateway/{name})."""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout or settings.gateway_timeout_seconds,
        )

    async def check(self) -> None:
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise GatewayUnavailable(f"Gateway health check failed: {exc}") from exc

    async def call_tool(self, capability: str, tool: str, arguments: dict) -> str:
        request_id = uuid.uuid4().hex
        payload = frame_tool_call(request_id, tool, arguments)

        try:
            async with self._client.stream(
                "POST",
                f"/gateway/{capability}",
                content=payload,
                headers={"Content-Type": "application/octet-stream"},
            ) as response:
                if response.status_code == 404:
                    raise CapabilityNotFound(capability)
                if response.status_code >= 400:
                    await response.aread()
                    raise WorkerFailure(
                        message=f"Gateway returned HTTP {response.status_code}: {response.text[:200]}",
                        provider_name=capability,
                    )
                text = await read_tool_response(response.aiter_bytes(), request_id, capability)
        except httpx.TransportError as exc:
            raise GatewayUnavailable(f"Gateway unreachable: {exc}") from exc

        if text is None:
            raise WorkerFailure(
                message=f"Worker ended without answering {tool}",
                provider_name=capability,
            )
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_client: LocalGatewayClient | HttpGatewayClient | None = None


def get_gateway_client() -> LocalGatewayClient | HttpGatewayClient:
    """
    Returns the configured transport:
    - GATEWAY_URL set   → HttpGatewayClient
    - GATEWAY_URL empty → LocalGatewayClient (in-process gateway)
    """
    global _client
    if _client is None:
        if settings.gateway_url:
            _client = HttpGatewayClient(settings.gateway_url)
        else:
            _client = LocalGatewayClient()
    return _client
