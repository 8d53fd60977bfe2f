# =============================================================================
# Unit Tests — Tool Gateway
# =============================================================================
#
# Spawns real Python subprocesses as capability workers (`python -c ...`).
# Covers the byte relay, stderr isolation, exit codes, per-call isolation,
# caller-disconnect teardown and the registry file.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
import time

import pytest
from pydantic import ValidationError

from docsense.errors import CapabilityNotFound, WorkerFailure
from docsense.services.gateway import (
    DEFAULT_CAPABILITIES,
    CapabilitySpec,
    ToolGateway,
    load_registry,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


async def _inbound(*chunks: bytes):
    for chunk in chunks:
        yield chunk


def _script(source: str, **env: str) -> CapabilitySpec:
    return CapabilitySpec(command=sys.executable, args=["-c", source], env=env)


_UPPERCASE_ECHO = (
    "import sys\n"
    "for line in sys.stdin:\n"
    "    sys.stdout.write(line.upper())\n"
    "    sys.stdout.flush()\n"
)

_NOISY = (
    "import sys\n"
    "sys.stderr.write('secret diagnostics\\n')\n"
    "sys.stderr.flush()\n"
    "sys.stdout.write('visible\\n')\n"
)

_EXIT_THREE = "import sys\nsys.stdout.write('partial')\nsys.stdout.flush()\nsys.exit(3)\n"

_LARGE_OUTPUT = "import sys\nsys.stdout.write('x' * 300000)\n"

_SLEEPER = (
    "import sys, time\n"
    "sys.stdout.write('ready\\n')\n"
    "sys.stdout.flush()\n"
    "time.sleep(60)\n"
)

_STUBBORN_SLEEPER = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "sys.stdout.write('ready\\n')\n"
    "sys.stdout.flush()\n"
    "time.sleep(60)\n"
)

_ENV_PRINTER = "import os, sys\nsys.stdout.write(os.environ['DOCSENSE_TEST_FLAG'])\n"

_LONG_STDERR_LINE = (
    "import sys\n"
    "sys.stderr.write('x' * 3000000 + '\\n')\n"
    "sys.stderr.write('tail marker\\n')\n"
    "sys.stderr.flush()\n"
    "sys.stdout.write('done\\n')\n"
)


def _gateway(**scripts: CapabilitySpec) -> ToolGateway:
    return ToolGateway(
        {name.replace("_", "-"): spec for name, spec in scripts.items()},
        kill_grace_seconds=0.3,
    )


async def _collect(gateway: ToolGateway, name: str, *chunks: bytes) -> tuple[bytes, int | None]:
    async with gateway.session(name, _inbound(*chunks)) as handle:
        output = b"".join([chunk async for chunk in handle])
        return output, handle.exit_code


# ---------------------------------------------------------------------------
# Test: Relay
# ---------------------------------------------------------------------------


class TestRelay:
    def test_stdin_and_stdout_relayed(self):
        gateway = _gateway(echo=_script(_UPPERCASE_ECHO))
        output, exit_code = _run(_collect(gateway, "echo", b"hello\n", b"world\n"))
        assert output == b"HELLO\nWORLD\n"
        assert exit_code == 0

    def test_empty_inbound_closes_stdin(self):
        gateway = _gateway(echo=_script(_UPPERCASE_ECHO))
        output, exit_code = _run(_collect(gateway, "echo"))
        assert output == b""
        assert exit_code == 0

    def test_large_output_relayed_verbatim(self):
        gateway = _gateway(big=_script(_LARGE_OUTPUT))
        output, _ = _run(_collect(gateway, "big"))
        assert output == b"x" * 300000

    def test_stderr_logged_not_relayed(self, caplog):
        gateway = _gateway(noisy=_script(_NOISY))
        with caplog.at_level(logging.WARNING, logger="docsense.services.gateway"):
            output, _ = _run(_collect(gateway, "noisy"))
        assert output == b"visible\n"
        assert b"secret" not in output
        assert any("secret diagnostics" in record.getMessage() for record in caplog.records)

    def test_stderr_line_over_limit_keeps_draining(self, caplog):
        gateway = _gateway(chatty=_script(_LONG_STDERR_LINE))
        with caplog.at_level(logging.WARNING, logger="docsense.services.gateway"):
            output, exit_code = _run(asyncio.wait_for(_collect(gateway, "chatty"), timeout=15))
        assert output == b"done\n"
        assert exit_code == 0
        messages = [record.getMessage() for record in caplog.records]
        assert any("dropped" in message for message in messages)
        assert any("tail marker" in message for message in messages)

    def test_nonzero_exit_code_reported(self):
        gateway = _gateway(failing=_script(_EXIT_THREE))
        output, exit_code = _run(_collect(gateway, "failing"))
        assert output == b"partial"
        assert exit_code == 3

    def test_env_from_registry_applied(self):
        gateway = _gateway(env=_script(_ENV_PRINTER, DOCSENSE_TEST_FLAG="on"))
        output, _ = _run(_collect(gateway, "env"))
        assert output == b"on"

    def test_python_command_resolves_to_running_interpreter(self):
        spec = CapabilitySpec(command="python", args=["-c", "import sys; print(sys.executable)"])
        gateway = ToolGateway({"whoami": spec})
        output, _ = _run(_collect(gateway, "whoami"))
        assert output.decode().strip() == sys.executable


# ---------------------------------------------------------------------------
# Test: Resolution & Isolation
# ---------------------------------------------------------------------------


class TestResolution:
    def test_unknown_capability(self):
        gateway = _gateway(echo=_script(_UPPERCASE_ECHO))
        with pytest.raises(CapabilityNotFound) as exc_info:
            _run(gateway.open_capability("missing", _inbound()))
        assert exc_info.value.name == "missing"

    def test_unstartable_command(self):
        gateway = ToolGateway({"broken": CapabilitySpec(command="/nonexistent/worker-binary")})
        with pytest.raises(WorkerFailure):
            _run(gateway.open_capability("broken", _inbound()))

    def test_capabilities_listed_sorted(self):
        gateway = _gateway(zeta=_script("pass"), alpha=_script("pass"))
        assert gateway.capabilities() == ["alpha", "zeta"]

    def test_each_open_spawns_new_process(self):
        gateway = _gateway(echo=_script(_UPPERCASE_ECHO))

        async def scenario():
            first = await gateway.open_capability("echo", _inbound())
            second = await gateway.open_capability("echo", _inbound())
            try:
                return first.pid, second.pid
            finally:
                await first.close()
                await second.close()

        first_pid, second_pid = _run(scenario())
        assert first_pid != second_pid


# ---------------------------------------------------------------------------
# Test: Caller Disconnect
# ---------------------------------------------------------------------------


async def _first_chunk_then_close(gateway: ToolGateway, name: str):
    handle = await gateway.open_capability(name, _inbound())
    output = aiter(handle)
    first = await anext(output)
    started = time.monotonic()
    await handle.close()
    return handle, first, time.monotonic() - started


@posix_only
class TestClose:
    def test_close_terminates_running_worker(self):
        gateway = _gateway(sleeper=_script(_SLEEPER))
        handle, first, _ = _run(_first_chunk_then_close(gateway, "sleeper"))
        assert first == b"ready\n"
        assert handle.running is False
        assert handle.exit_code == -signal.SIGTERM

    def test_close_kills_worker_ignoring_sigterm(self):
        gateway = _gateway(stubborn=_script(_STUBBORN_SLEEPER))
        handle, _, elapsed = _run(_first_chunk_then_close(gateway, "stubborn"))
        assert handle.exit_code == -signal.SIGKILL
        assert elapsed < 5

    def test_close_is_idempotent(self):
        gateway = _gateway(echo=_script(_UPPERCASE_ECHO))

        async def scenario():
            handle = await gateway.open_capability("echo", _inbound(b"a\n"))
            await handle.close()
            await handle.close()
            return handle

        assert _run(scenario()).running is False

    def test_cancelled_consumer_releases_worker(self):
        gateway = _gateway(sleeper=_script(_SLEEPER))

        async def scenario():
            ready = asyncio.Event()
            holder = {}

            async def consume():
                async with gateway.session("sleeper", _inbound()) as handle:
                    holder["handle"] = handle
                    async for _ in handle:
                        ready.set()

            task = asyncio.create_task(consume())
            await asyncio.wait_for(ready.wait(), timeout=10)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return holder["handle"]

        handle = _run(scenario())
        assert handle.running is False


# ---------------------------------------------------------------------------
# Test: Registry File
# ---------------------------------------------------------------------------


class TestLoadRegistry:
    def test_loads_capabilities(self, tmp_path):
        path = tmp_path / "capabilities.json"
        path.write_text(json.dumps({
            "capabilities": {
                "timeline-builder": {
                    "command": "python",
                    "args": ["-m", "docsense.workers.timeline_builder"],
                    "env": {"LOG_LEVEL": "DEBUG"},
                },
            },
        }))
        registry = load_registry(path)
        assert list(registry) == ["timeline-builder"]
        assert registry["timeline-builder"].args == ["-m", "docsense.workers.timeline_builder"]
        assert registry["timeline-builder"].env == {"LOG_LEVEL": "DEBUG"}

    def test_missing_file_falls_back_to_builtin_workers(self, tmp_path):
        registry = load_registry(tmp_path / "absent.json")
        assert registry == DEFAULT_CAPABILITIES
        assert "legal-analyzer" in registry

    def test_invalid_entry_rejected(self, tmp_path):
        path = tmp_path / "capabilities.json"
        path.write_text(json.dumps({"capabilities": {"broken": {"args": []}}}))
        with pytest.raises(ValidationError):
            load_registry(path)
