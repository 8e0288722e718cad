"""Toolchain runner for local native builds.

This module handles:
- Composing the Capacitor sync, npm install and Gradle assemble commands
- Executing them with subprocess
- Capturing combined stdout/stderr to log files
- Enforcing timeouts

Commands run in a worker thread when awaited through ``run_step`` so the
event loop keeps serving status queries while Gradle works.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from storeapp_builder.builds.errors import ToolchainError

logger = logging.getLogger(__name__)

SYNC_COMMAND = ["npx", "cap", "sync", "android"]
INSTALL_COMMAND = ["npm", "install"]

# Lines of output attached to a failure
ERROR_TAIL_LINES = 60


@dataclass
class CommandResult:
    """Result of a toolchain command.

    Attributes:
        success: Whether the command exited with code 0.
        exit_code: Process exit code.
        log_path: Path to the log file with combined output.
        started_at: Start time.
        finished_at: Finish time.
        command: The command that was executed.
    """

    success: bool
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str

    def output_tail(self, lines: int = ERROR_TAIL_LINES) -> str:
        """Return the last lines of command output from the log."""
        return read_log_tail(self.log_path, lines)


def read_log_tail(log_path: Path, lines: int = ERROR_TAIL_LINES) -> str:
    """Return the last output lines of a log, without the '#' header lines."""
    try:
        content = log_path.read_text(errors="replace")
    except OSError:
        return ""
    body = [line for line in content.splitlines() if not line.startswith("# ")]
    return "\n".join(body[-lines:])


def gradle_wrapper() -> str:
    """Return the Gradle wrapper invocation for this platform."""
    return "gradlew.bat" if sys.platform == "win32" else "./gradlew"


def compose_assemble_command() -> list[str]:
    """Compose the clean + debug assemble command."""
    return [gradle_wrapper(), "clean", "assembleDebug", "--no-daemon"]


def run_command(
    cmd: list[str],
    cwd: Path,
    log_path: Path,
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
) -> CommandResult:
    """Execute a toolchain command, logging its output to a file.

    Args:
        cmd: Command as list of strings.
        cwd: Working directory.
        log_path: File receiving combined stdout/stderr.
        timeout: Timeout in seconds (None = no timeout).
        env_override: Optional environment variable overrides.

    Returns:
        CommandResult with execution details.

    Raises:
        ToolchainError: If the command times out or cannot be started.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s (cwd: %s)", cmd_str, cwd)

    started_at = datetime.now(timezone.utc)

    try:
        with log_path.open("w") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {cwd}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            env: dict[str, str] | None = None
            if env_override:
                env = dict(os.environ)
                env.update(env_override)

            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=env,
                check=False,
            )
            exit_code = result.returncode

    except subprocess.TimeoutExpired as e:
        message = f"{cmd_str} timed out after {timeout} seconds"
        logger.error("%s. See log: %s", message, log_path)
        with log_path.open("a") as log_file:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise ToolchainError(
            message,
            output=read_log_tail(log_path),
            exit_code=-1,
            code="toolchain_timeout",
        ) from e

    except OSError as e:
        message = f"Failed to execute {cmd_str}: {e}"
        logger.error(message)
        raise ToolchainError(message, code="execution_error") from e

    finished_at = datetime.now(timezone.utc)

    with log_path.open("a") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    if exit_code != 0:
        logger.error("%s failed with exit code %d. See log: %s", cmd_str, exit_code, log_path)

    return CommandResult(
        success=exit_code == 0,
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
    )


async def run_step(
    description: str,
    cmd: list[str],
    cwd: Path,
    log_path: Path,
    timeout: int | None = None,
) -> CommandResult:
    """Run a toolchain command off the event loop and require success.

    Args:
        description: Step name used in the error message.
        cmd: Command as list of strings.
        cwd: Working directory.
        log_path: File receiving combined output.
        timeout: Timeout in seconds.

    Returns:
        CommandResult of the successful command.

    Raises:
        ToolchainError: If the command fails, times out, or cannot start.
            Carries the tail of the command output.
    """
    result = await asyncio.to_thread(run_command, cmd, cwd, log_path, timeout)
    if not result.success:
        raise ToolchainError(
            f"{description} failed with exit code {result.exit_code}",
            output=result.output_tail(),
            exit_code=result.exit_code,
        )
    return result


__all__ = [
    "INSTALL_COMMAND",
    "SYNC_COMMAND",
    "CommandResult",
    "compose_assemble_command",
    "gradle_wrapper",
    "read_log_tail",
    "run_command",
    "run_step",
]
