"""Helpers for invoking the external command-line tools."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Sequence

from ..errors import ServiceError
from ..services.events import emit_tool_event


LOGGER = logging.getLogger(__name__)


class ToolError(ServiceError):
    """Base class for failures of an external tool."""

    def __init__(self, message: str, *, tool: str, diagnostic: str = "") -> None:
        super().__init__(message)
        self.tool = tool
        self.diagnostic = diagnostic


class ToolNotFoundError(ToolError):
    """Raised when the tool binary cannot be executed."""


class ToolTimeoutError(ToolError):
    """Raised when the tool did not exit before its deadline."""


class ToolExitError(ToolError):
    """Raised when the tool exited with a non-zero status."""

    def __init__(self, message: str, *, tool: str, returncode: int, diagnostic: str = "") -> None:
        super().__init__(message, tool=tool, diagnostic=diagnostic)
        self.returncode = returncode


class ToolOutputError(ToolError):
    """Raised when the tool output cannot be interpreted."""


@dataclass(frozen=True)
class ToolResult:
    stdout: str
    stderr: str
    returncode: int
    duration_ms: float


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:  # pragma: no cover - exited between checks
        return
    await process.wait()


async def run_tool(
    command: Sequence[str],
    *,
    timeout: float,
    label: str | None = None,
) -> ToolResult:
    """Run *command* and return its captured output.

    The exit of the process and the expiry of *timeout* are resolved by a
    single ``wait_for``; whichever happens first decides the outcome. On
    timeout or cancellation the child is killed without a grace period.
    """

    tool = label or command[0]
    started = time.perf_counter()
    LOGGER.debug("Executing %s: %s", tool, " ".join(command))
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as error:
        raise ToolNotFoundError(
            f"{tool} binary not found. Please install it.", tool=tool, diagnostic=str(error)
        ) from error
    except PermissionError as error:
        raise ToolNotFoundError(
            f"{tool} binary is not executable.", tool=tool, diagnostic=str(error)
        ) from error

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as error:
        await _kill(process)
        elapsed = (time.perf_counter() - started) * 1000
        emit_tool_event(tool, "timed out", duration_ms=elapsed, level=logging.WARNING)
        raise ToolTimeoutError(
            f"{tool} timed out after {int(round(timeout * 1000))}ms", tool=tool
        ) from error
    except asyncio.CancelledError:
        await _kill(process)
        LOGGER.info("Cancelled %s invocation; process killed", tool)
        raise

    elapsed = (time.perf_counter() - started) * 1000
    result = ToolResult(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        returncode=process.returncode if process.returncode is not None else -1,
        duration_ms=elapsed,
    )
    emit_tool_event(
        tool,
        "exited",
        payload={"returncode": result.returncode},
        duration_ms=elapsed,
        level=logging.DEBUG,
    )
    if result.returncode != 0:
        raise ToolExitError(
            f"{tool} exited with code {result.returncode}: {result.stderr.strip()}",
            tool=tool,
            returncode=result.returncode,
            diagnostic=result.stderr,
        )
    return result


def tool_available(binary: str, *args: str, timeout: float = 5.0) -> bool:
    """Return ``True`` when *binary* runs and exits cleanly with *args*."""

    if shutil.which(binary) is None:
        return False
    try:
        completed = subprocess.run(
            [binary, *args],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        LOGGER.debug("Availability probe for %s failed", binary)
        return False
    return completed.returncode == 0


__all__ = [
    "ToolError",
    "ToolExitError",
    "ToolNotFoundError",
    "ToolOutputError",
    "ToolResult",
    "ToolTimeoutError",
    "run_tool",
    "tool_available",
]
