# =============================================================================
# Tool Gateway — Named Capabilities over Isolated Worker Processes
# =============================================================================
#
# open_capability(name, inbound) resolves `name` in a static registry,
# spawns ONE fresh worker process for this call, and relays bytes:
#
#   caller inbound (async bytes) ──stdin pump task──▶ worker stdin
#   caller ◀── iterate WorkerHandle ◀─────────────── worker stdout
#                                   worker stderr ──▶ logger (never relayed)
#
# The Gateway is a pure byte relay. It never parses the worker protocol;
# the JSON-RPC framing lives in services/gateway_client.py and
# workers/protocol.py.
#
# LIFETIME (one WorkerHandle per open call, no pooling, no reuse):
# - worker exits first   → output iteration ends normally, exit code is
#                          available as handle.exit_code
# - caller leaves first  → handle.close(): SIGTERM, wait
#                          worker_kill_grace_seconds, then SIGKILL;
#                          unread output is discarded
#
# REGISTRY FILE (capabilities.json):
#   {
#     "capabilities": {
#       "timeline-builder": {
#         "command": "python",
#         "args": ["-m", "docsense.workers.timeline_builder"],
#         "env": {"LOG_LEVEL": "INFO"}
#       }
#     }
#   }
# "python" / "python3" as command resolve to the running interpreter.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import AsyncIterable, AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from pydantic import BaseModel, Field

from docsense.config import settings
from docsense.errors import CapabilityNotFound, WorkerFailure

logger = logging.getLogger(__name__)

# Max bytes handed to the caller per read. A read returns as soon as any
# output is available, so this caps chunk size without adding latency.
_READ_SIZE = 64 * 1024

# StreamReader line limit for stderr logging
_STREAM_LIMIT = 1024 * 1024


# ---------------------------------------------------------------------------
# Capability Registry
# ---------------------------------------------------------------------------


class CapabilitySpec(BaseModel):
    """Launch command and environment for one capability worker."""

    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class CapabilityRegistryFile(BaseModel):
    capabilities: dict[str, CapabilitySpec] = Field(default_factory=dict)


def _worker_module(module: str) -> CapabilitySpec:
    return CapabilitySpec(command="python", args=["-m", f"docsense.workers.{module}"])


# Used when no registry file exists
DEFAULT_CAPABILITIES: dict[str, CapabilitySpec] = {
    "document-analyzer": _worker_module("document_analyzer"),
    "entity-extractor": _worker_module("entity_extractor"),
    "timeline-builder": _worker_module("timeline_builder"),
    "legal-analyzer": _worker_module("legal_analyzer"),
    "fact-verifier": _worker_module("fact_verifier"),
}


def load_registry(path: str | Path) -> dict[str, CapabilitySpec]:
    """
    Load and validate the capability registry file.

    Raises:
        pydantic.ValidationError: If the file does not match the schema.
        json.JSONDecodeError: If the file is not JSON.
    """
    registry_path = Path(path)
    if not registry_path.is_file():
        logger.warning(
            "Capability registry %s not found; using built-in workers",
            registry_path,
        )
        return dict(DEFAULT_CAPABILITIES)

    raw = json.loads(registry_path.read_text(encoding="utf-8"))
    registry = CapabilityRegistryFile.model_validate(raw)
    logger.info(
        "Loaded %d capabilities from %s: %s",
        len(registry.capabilities),
        registry_path,
        ", ".join(sorted(registry.capabilities)),
    )
    return registry.capabilities


# ---------------------------------------------------------------------------
# Worker Handle
# ---------------------------------------------------------------------------


class WorkerHandle:
    """
    One live worker process wired to one caller.

    Iterate it (`async for chunk in handle`) to receive the worker's stdout
    as it arrives. Iteration ends when the worker closes its stdout; by then
    `exit_code` is set. Call `close()` when the caller goes away.
    """

    def __init__(
        self,
        name: str,
        process: asyncio.subprocess.Process,
        inbound: AsyncIterable[bytes],
        kill_grace_seconds: float,
    ) -> None:
        self.name = name
        self._process = process
        self._kill_grace_seconds = kill_grace_seconds
        self._closed = False
        self._stdin_task = asyncio.create_task(self._pump_stdin(inbound))
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def exit_code(self) -> int | None:
        """Worker exit code, or None while it is still running."""
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    # --- Relay tasks ---

    async def _pump_stdin(self, inbound: AsyncIterable[bytes]) -> None:
        stdin = self._process.stdin
        try:
            async for chunk in inbound:
                if not chunk:
                    continue
                stdin.write(chunk)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Worker %s closed its stdin early", self.name)
        finally:
            # End of input is how the caller tells the worker it is done
            if not stdin.is_closing():
                stdin.close()

    async def _drain_stderr(self) -> None:
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                # Line longer than _STREAM_LIMIT; the reader has already
                # discarded the buffered part, keep draining past it
                logger.warning(
                    "[%s pid=%d] stderr line over %d bytes dropped",
                    self.name, self._process.pid, _STREAM_LIMIT,
                )
                continue
            if not line:
                break
            message = line.decode("utf-8", errors="replace").rstrip()
            if message:
                logger.warning("[%s pid=%d] %s", self.name, self._process.pid, message[:_READ_SIZE])

    # --- Output ---

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._read_output()

    async def _read_output(self) -> AsyncIterator[bytes]:
        stdout = self._process.stdout
        while True:
            chunk = await stdout.read(_READ_SIZE)
            if not chunk:
                break
            yield chunk

        exit_code = await self._process.wait()
        # stderr reaches EOF once the process is gone; its errors surface in close()
        await asyncio.wait([self._stderr_task])
        if exit_code == 0:
            logger.info("Worker %s (pid=%d) exited cleanly", self.name, self.pid)
        else:
            logger.warning(
                "Worker %s (pid=%d) exited with code %d", self.name, self.pid, exit_code,
            )

    async def wait(self) -> int:
        return await self._process.wait()

    # --- Teardown ---

    async def close(self) -> None:
        """
        Release the worker. Terminates it if it is still running.

        Safe to call more than once and after the worker has exited.
        """
        if self._closed:
            return
        self._closed = True

        if self._process.returncode is None:
            logger.info("Caller left; terminating worker %s (pid=%d)", self.name, self.pid)
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self._kill_grace_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "Worker %s (pid=%d) ignored SIGTERM for %.1fs; killing",
                    self.name, self.pid, self._kill_grace_seconds,
                )
                try:
                    self._process.kill()
                except ProcessLookupError:
                    pass
                await self._process.wait()

        for task in (self._stdin_task, self._stderr_task):
            if not task.done():
                task.cancel()
        results = await asyncio.gather(
            self._stdin_task, self._stderr_task, return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                logger.warning("Relay task for %s failed: %r", self.name, result)


# ---------------------------------------------------------------------------
# Tool Gateway
# ---------------------------------------------------------------------------


class ToolGateway:
    """Spawns one isolated worker per open_capability() call."""

    def __init__(
        self,
        registry: dict[str, CapabilitySpec],
        kill_grace_seconds: float | None = None,
    ) -> None:
        self._registry = dict(registry)
        self._kill_grace_seconds = (
            settings.worker_kill_grace_seconds
            if kill_grace_seconds is None
            else kill_grace_seconds
        )

    @classmethod
    def from_settings(cls) -> ToolGateway:
        return cls(load_registry(settings.capability_registry_path))

    def capabilities(self) -> list[str]:
        return sorted(self._registry)

    def resolve(self, name: str) -> CapabilitySpec:
        try:
            return self._registry[name]
        except KeyError:
            raise CapabilityNotFound(name) from None

    async def open_capability(
        self,
        name: str,
        inbound: AsyncIterable[bytes],
    ) -> WorkerHandle:
        """
        Start a worker for `name` and wire `inbound` into its stdin.

        Raises:
            CapabilityNotFound: If `name` is not in the registry.
            WorkerFailure: If the worker process cannot be started.
        """
        spec = self.resolve(name)
        command = sys.executable if spec.command in ("python", "python3") else spec.command
        env = {**os.environ, **spec.env}

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *spec.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            raise WorkerFailure(
                message=f"Failed to start worker: {exc}",
                provider_name=name,
            ) from exc

        logger.info("Spawned worker %s (pid=%d)", name, process.pid)
        return WorkerHandle(name, process, inbound, self._kill_grace_seconds)

    @asynccontextmanager
    async def session(
        self,
        name: str,
        inbound: AsyncIterable[bytes],
    ) -> AsyncIterator[WorkerHandle]:
        """open_capability() that always closes the handle on exit."""
        handle = await self.open_capability(name, inbound)
        try:
            yield handle
        finally:
            await handle.close()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_gateway: ToolGateway | None = None


def get_gateway() -> ToolGateway:
    """Process-wide gateway built from the configured registry file."""
    global _gateway
    if _gateway is None:
        _gateway = ToolGateway.from_settings()
    return _gateway
