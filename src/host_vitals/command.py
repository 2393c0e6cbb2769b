"""Bounded execution of external diagnostic commands.

Every call returns a CommandResult; failures are logged here and never
raised to the caller.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

log = structlog.get_logger()

DEFAULT_TIMEOUT = 5.0

# Seconds between SIGTERM and SIGKILL for a timed-out command
KILL_GRACE_SECONDS = 0.5


class CommandErrorKind(Enum):
    """Why a command produced no usable output."""

    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    NO_OUTPUT = "no_output"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command invocation: stdout on success, error kind otherwise."""

    stdout: str | None = None
    error: CommandErrorKind | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        """Return True if the command succeeded."""
        return self.error is None

    @classmethod
    def success(cls, stdout: str) -> "CommandResult":
        return cls(stdout=stdout)

    @classmethod
    def failure(cls, error: CommandErrorKind, message: str) -> "CommandResult":
        return cls(error=error, message=message)


# Signature shared by run_command and test doubles
CommandRunner = Callable[[str, Sequence[str], float], Awaitable[CommandResult]]


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Terminate a process gracefully, escalating to SIGKILL after the grace period."""
    try:
        process.terminate()
    except ProcessLookupError:
        return  # Already exited

    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
    except asyncio.TimeoutError:
        try:
            process.kill()  # SIGKILL - cannot be caught or ignored
        except ProcessLookupError:
            return
        await process.wait()


async def run_command(
    executable: str,
    arguments: Sequence[str],
    timeout: float = DEFAULT_TIMEOUT,
) -> CommandResult:
    """Run an external command and capture its output.

    Args:
        executable: Absolute path to the executable
        arguments: Arguments passed to the executable
        timeout: Seconds to wait for the process to exit

    Returns:
        CommandResult with decoded stdout, or one of NOT_FOUND, TIMEOUT,
        NON_ZERO_EXIT (message carries stderr) or NO_OUTPUT.
    """
    if not Path(executable).exists():
        log.error("command_not_found", executable=executable)
        return CommandResult.failure(
            CommandErrorKind.NOT_FOUND, f"Process not found at path: {executable}"
        )

    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *arguments,
            stdin=asyncio.subprocess.DEVNULL,  # No tty interaction
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        log.error("command_spawn_failed", executable=executable, error=str(e))
        return CommandResult.failure(CommandErrorKind.NOT_FOUND, str(e))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("command_timeout", executable=executable, timeout=timeout)
        await _terminate(process)
        return CommandResult.failure(CommandErrorKind.TIMEOUT, "Process execution timed out")
    except asyncio.CancelledError:
        # Owning loop is shutting down; don't leave the child behind
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        raise

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        if not detail:
            detail = f"Unknown error (exit code: {process.returncode})"
        log.warning(
            "command_failed",
            executable=executable,
            returncode=process.returncode,
            stderr=detail,
        )
        return CommandResult.failure(
            CommandErrorKind.NON_ZERO_EXIT, f"Process execution failed: {detail}"
        )

    try:
        output = stdout.decode("utf-8")
    except UnicodeDecodeError:
        log.error("command_no_output", executable=executable, size=len(stdout))
        return CommandResult.failure(CommandErrorKind.NO_OUTPUT, "Invalid output from process")

    return CommandResult.success(output)
