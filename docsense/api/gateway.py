# =============================================================================
# Gateway API — Raw Capability Relay over HTTP
# =============================================================================
#
# ENDPOINTS:
#   GET  /gateway            — registered capability names
#   POST /gateway/{name}     — one worker per request, bytes in / bytes out
#
# The request body is streamed into the worker's stdin as it arrives and
# the worker's stdout is streamed back as the response body, unmodified.
# The gateway never parses either direction.
#
#   client ──body──▶ stdin ┌────────┐ stdout ──body──▶ client
#                          │ worker │
#                          └────────┘ stderr ──▶ server log only
#
# The worker is spawned BEFORE the response starts, so an unknown
# capability is a plain 404. Once streaming has begun, the exit code can
# no longer be reported in-band; it is logged and kept on the handle.
#
# ONE READER OF `receive`: WorkerRelayResponse owns the ASGI receive
# channel for the whole exchange. Body messages go into a RequestBody
# queue (the worker's inbound stream, end of body closes stdin) and
# http.disconnect terminates the worker (SIGTERM, grace, SIGKILL).
# Reading the body through request.stream() instead would race with
# StreamingResponse's own disconnect listener, which drops body messages.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from docsense.api.deps import get_gateway
from docsense.services.gateway import ToolGateway, WorkerHandle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gateway", tags=["Gateway"])


# ---------------------------------------------------------------------------
# Request Body → Worker stdin
# ---------------------------------------------------------------------------


class RequestBody:
    """Async byte stream fed from ASGI http.request messages."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._finished = False

    def feed(self, chunk: bytes) -> None:
        if chunk and not self._finished:
            self._queue.put_nowait(chunk)

    def finish(self) -> None:
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk


# ---------------------------------------------------------------------------
# Worker stdout → Response Body
# ---------------------------------------------------------------------------


class WorkerRelayResponse(StreamingResponse):
    """
    Streams a worker's stdout while feeding it the request body.

    Runs two tasks for one exchange: a listener that is the only consumer
    of `receive`, and a streamer that sends stdout chunks. Whichever ends
    first ends the exchange; the worker is always released afterwards.
    """

    def __init__(self, handle: WorkerHandle, body: RequestBody) -> None:
        super().__init__(
            handle,
            media_type="application/octet-stream",
            headers={"X-Worker-Pid": str(handle.pid)},
        )
        self.handle = handle
        self.request_body = body
        self.client_disconnected = False

    async def _listen(self, receive: Receive) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.request":
                self.request_body.feed(message.get("body", b""))
                if not message.get("more_body", False):
                    self.request_body.finish()
            elif message["type"] == "http.disconnect":
                self.client_disconnected = True
                self.request_body.finish()
                return

    async def _stream(self, send: Send) -> None:
        await send({
            "type": "http.response.start",
            "status": self.status_code,
            "headers": self.raw_headers,
        })
        async for chunk in self.handle:
            await send({"type": "http.response.body", "body": chunk, "more_body": True})
        await send({"type": "http.response.body", "body": b"", "more_body": False})

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        streaming = asyncio.create_task(self._stream(send))
        listening = asyncio.create_task(self._listen(receive))
        try:
            await asyncio.wait({streaming, listening}, return_when=asyncio.FIRST_COMPLETED)
            if not streaming.done():
                logger.info("Client left relay for %s mid-response", self.handle.name)
        finally:
            for task in (streaming, listening):
                task.cancel()
            await asyncio.gather(streaming, listening, return_exceptions=True)
            await self.handle.close()

        logger.info(
            "Relay for %s finished (exit code %s)", self.handle.name, self.handle.exit_code,
        )

        if not streaming.cancelled():
            exc = streaming.exception()
            if exc is not None and not isinstance(exc, OSError):
                raise exc


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("", summary="List registered capabilities")
async def list_capabilities(gateway: ToolGateway = Depends(get_gateway)) -> dict:
    return {"capabilities": gateway.capabilities()}


@router.post(
    "/{name}",
    summary="Open a capability session",
    description=(
        "Spawns a fresh worker for the named capability. The request body is "
        "the worker's stdin, the response body is its stdout."
    ),
    responses={404: {"description": "Capability not registered"}},
)
async def open_capability(
    name: str,
    gateway: ToolGateway = Depends(get_gateway),
) -> WorkerRelayResponse:
    body = RequestBody()
    handle = await gateway.open_capability(name, body)
    return WorkerRelayResponse(handle, body)
