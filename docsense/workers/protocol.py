# =============================================================================
# Worker Protocol — Newline-Delimited JSON-RPC 2.0 over stdio
# =============================================================================
#
# FRAMING: one JSON object per line, UTF-8, on stdin (requests) and stdout
# (responses). Nothing else may be written to stdout; logging goes to
# stderr.
#
# METHODS:
#   initialize  → {"serverInfo": {"name": ..., "version": ...}}
#   tools/list  → {"tools": [{"name", "description", "inputSchema"}]}
#   tools/call  → {"content": [{"type": "text", "text": ...}], "isError": bool}
#                 params: {"name": <tool>, "arguments": {...}}
#
# A tool that raises does NOT produce a JSON-RPC error: it produces a
# normal result with isError=true and the message as text, so the caller
# can tell "the tool failed" apart from "the protocol failed".
# Messages without an id are notifications and get no response.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from docsense.config import settings
from docsense.services.llm import LLMProvider, get_llm_provider

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602

ToolHandler = Callable[[dict], Awaitable[dict | str]]


@dataclass
class Tool:
    """One named tool a worker exposes."""

    name: str
    description: str
    handler: ToolHandler
    required: tuple[str, ...] = ("text",)
    properties: dict = field(default_factory=lambda: {"text": {"type": "string"}})

    def describe(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.properties,
                "required": list(self.required),
            },
        }


def _error(request_id, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _result(request_id, result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _text_result(text: str, is_error: bool = False) -> dict:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


class WorkerServer:
    """Dispatches JSON-RPC requests to a fixed set of tools."""

    def __init__(self, name: str, tools: list[Tool], version: str | None = None) -> None:
        self.name = name
        self.version = version or settings.app_version
        self._tools = {tool.name: tool for tool in tools}

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def call_tool(self, name: str, arguments: dict) -> dict:
        tool = self._tools.get(name)
        if tool is None:
            return _text_result(f"Error: Unknown tool: {name}", is_error=True)

        missing = [key for key in tool.required if not arguments.get(key)]
        if missing:
            return _text_result(
                f"Error: Missing required arguments: {', '.join(missing)}", is_error=True,
            )

        try:
            output = await tool.handler(arguments)
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            return _text_result(f"Error: {exc}", is_error=True)

        text = output if isinstance(output, str) else json.dumps(output)
        return _text_result(text)

    async def handle_message(self, message) -> dict | None:
        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            return _error(None, INVALID_REQUEST, "Invalid Request")

        request_id = message.get("id")
        method = message.get("method")
        params = message.get("params") or {}
        if not isinstance(params, dict):
            params = {}
        is_notification = "id" not in message

        if method == "initialize":
            response = _result(request_id, {
                "serverInfo": {"name": self.name, "version": self.version},
                "capabilities": {"tools": {}},
            })
        elif method == "tools/list":
            response = _result(request_id, {
                "tools": [tool.describe() for tool in self._tools.values()],
            })
        elif method == "tools/call":
            name = params.get("name")
            arguments = params.get("arguments") or {}
            if not isinstance(name, str) or not isinstance(arguments, dict):
                response = _error(request_id, INVALID_PARAMS, "Invalid params")
            else:
                response = _result(request_id, await self.call_tool(name, arguments))
        else:
            response = _error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        return None if is_notification else response

    async def handle_line(self, line: str) -> dict | None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            return _error(None, PARSE_ERROR, "Parse error")
        return await self.handle_message(message)

    async def serve(self, stdin=None, stdout=None) -> None:
        """Answer requests line by line until stdin reaches EOF."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        logger.info("%s worker ready (tools: %s)", self.name, ", ".join(self.tool_names))

        while True:
            line = await asyncio.to_thread(stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            response = await self.handle_line(line)
            if response is not None:
                stdout.write(json.dumps(response) + "\n")
                stdout.flush()

        logger.info("%s worker: input closed, exiting", self.name)


def run_worker(server: WorkerServer) -> None:
    """Process entry point for `python -m docsense.workers.<module>`."""
    logging.basicConfig(
        stream=sys.stderr,
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(server.serve())


# ---------------------------------------------------------------------------
# Shared Tool Helper
# ---------------------------------------------------------------------------


async def complete_json(
    system: str,
    user_content: str,
    max_tokens: int = 1024,
    llm: LLMProvider | None = None,
) -> str:
    """
    One JSON-mode completion, returning the raw model text.

    Callers pass document text already truncated to tool_input_max_chars.
    The orchestrator parses the text, so it is returned untouched.
    """
    provider = llm or get_llm_provider()
    response = await provider.complete(
        messages=[{"role": "user", "content": user_content}],
        system=system,
        temperature=0.1,
        max_tokens=max_tokens,
        json_mode=True,
    )
    return response.content or "{}"


def truncate(text: str, limit: int | None = None) -> str:
    return text[: limit or settings.tool_input_max_chars]
