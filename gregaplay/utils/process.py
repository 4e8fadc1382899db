"""Async wrapper for external process execution.

This module runs external executables (the media encoder) without blocking
the event loop, so one event's run never stalls another run or the HTTP
server.

Critical Pattern:
- Callers MUST use this wrapper instead of subprocess.run() directly
- Ensures non-blocking execution via asyncio.to_thread()
- Enforces a wall-clock timeout; subprocess.run kills the child on expiry
- Never raises for process failure: the outcome is returned as data
"""

import asyncio
import subprocess
import time
from dataclasses import dataclass

from gregaplay.utils.logging import get_logger, truncate

log = get_logger(__name__)

EXIT_CODE_NOT_FOUND = 127


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one external process invocation.

    Attributes:
        returncode: Exit status (None when killed on timeout)
        stdout: Captured standard output
        stderr: Captured diagnostic output
        timed_out: True if the process exceeded its timeout and was killed
        duration_seconds: Wall-clock time spent waiting for the process
    """

    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.returncode == 0


def _decode(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


async def run_process(command: list[str], timeout: float) -> ProcessResult:
    """Run an executable without blocking the async event loop.

    Args:
        command: Executable followed by its arguments
        timeout: Timeout in seconds; the process is killed when exceeded

    Returns:
        ProcessResult describing exit status and captured output

    Example:
        >>> result = await run_process(["ffmpeg", "-version"], timeout=10)
        >>> result.succeeded
        True
    """
    executable = command[0]
    log.info("process_start", executable=executable, arg_count=len(command) - 1, timeout=timeout)
    started = time.monotonic()

    try:
        completed = await asyncio.to_thread(
            subprocess.run,
            command,
            capture_output=True,  # Capture stdout/stderr
            text=True,  # Decode as UTF-8 strings
            errors="replace",  # Replace invalid UTF-8 with replacement character
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        duration = time.monotonic() - started
        log.error("process_timeout", executable=executable, timeout=timeout)
        return ProcessResult(
            returncode=None,
            stdout=_decode(e.stdout),
            stderr=_decode(e.stderr),
            timed_out=True,
            duration_seconds=duration,
        )
    except FileNotFoundError:
        log.error("process_executable_not_found", executable=executable)
        return ProcessResult(
            returncode=EXIT_CODE_NOT_FOUND,
            stdout="",
            stderr=f"executable not found: {executable}",
            duration_seconds=time.monotonic() - started,
        )

    duration = time.monotonic() - started
    if completed.returncode != 0:
        log.error(
            "process_failed",
            executable=executable,
            exit_code=completed.returncode,
            stderr=truncate(completed.stderr),
        )
    else:
        log.info(
            "process_success",
            executable=executable,
            duration_seconds=round(duration, 2),
        )

    return ProcessResult(
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
        duration_seconds=duration,
    )
