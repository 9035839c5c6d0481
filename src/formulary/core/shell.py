"""Asynchronous external command execution."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Awaitable, Mapping, Optional, Protocol, Sequence

from formulary.core.errors import SystemError
from formulary.core.logging import get_logger

log = get_logger(__name__)


class CommandRunner(Protocol):
    """Anything that runs a command and returns (stdout, stderr, returncode)."""

    def __call__(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Awaitable[tuple[str, str, int]]:
        ...


async def run_capture(
    cmd: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: Optional[float] = None,
) -> tuple[str, str, int]:
    """Run a command asynchronously and capture its output.

    No timeout is applied unless the caller asks for one.

    Args:
        cmd: Command and its arguments to run.
        cwd: Working directory for the command.
        env: Full environment for the command.
        timeout: Optional timeout in seconds.

    Returns:
        A tuple of (stdout, stderr, returncode).

    Raises:
        SystemError: If the executable cannot be started or times out.
    """
    command = " ".join(str(c) for c in cmd)
    start = time.perf_counter()
    log.debug("command_start", command=command, cwd=str(cwd) if cwd else None)

    try:
        process = await asyncio.create_subprocess_exec(
            *[str(c) for c in cmd],
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        log.error("command_spawn_failed", command=command, error=str(e))
        raise SystemError(
            f"Could not start {cmd[0]}",
            context={"command": command, "error": str(e)},
        ) from e

    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError as e:
        duration_ms = int((time.perf_counter() - start) * 1000)
        log.error(
            "command_timeout",
            command=command,
            timeout=timeout,
            duration_ms=duration_ms
        )
        try:
            process.kill()
        finally:
            raise SystemError(
                f"Command timed out after {timeout}s",
                context={"command": command, "timeout": timeout},
            ) from e

    duration_ms = int((time.perf_counter() - start) * 1000)
    log.info(
        "command_complete",
        command=command,
        returncode=process.returncode,
        duration_ms=duration_ms
    )

    return (
        out.decode(errors="replace").strip(),
        err.decode(errors="replace").strip(),
        process.returncode,
    )
