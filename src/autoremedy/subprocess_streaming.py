"""External process boundary for build tools and fix commands.

The build tool is treated as an opaque subprocess: an argv, combined
stdout/stderr, and an exit code. Build output can be large, so it is streamed
to a log file rather than captured in memory; fix commands are short and are
captured directly. Every call carries a hard timeout, and a hung process is
reported as a failure instead of being awaited indefinitely.

Usage:
    result = run_with_streaming(
        command=["docker-compose", "build", "--no-cache"],
        log_path=Path("data/build-attempt-1.log"),
        timeout=900,
    )
    if result.returncode != 0:
        print(result.tail)
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)

FAILED_RETURNCODE = -1


@dataclass
class StreamedProcessResult:
    """Result from subprocess execution with streamed output."""

    returncode: int
    log_path: Path
    tail: str  # Last N lines for quick inspection
    command: List[str]
    timeout_occurred: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timeout_occurred

    def read_output(self, encoding: str = "utf-8") -> str:
        """Read the full combined output back from the log file."""
        try:
            return self.log_path.read_text(encoding=encoding, errors="replace")
        except OSError as e:
            logger.warning(f"[StreamingSubprocess] Failed to read {self.log_path}: {e}")
            return self.tail


@dataclass
class CommandResult:
    """Result from a short captured command."""

    returncode: int
    output: str
    command: List[str]
    timeout_occurred: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timeout_occurred


def split_command(command: Union[str, List[str]]) -> List[str]:
    """Turn a configured command string into an argv list (no shell)."""
    if isinstance(command, str):
        return shlex.split(command)
    return list(command)


def read_last_n_lines(file_path: Path, n: int = 50, encoding: str = "utf-8") -> str:
    """Read last N lines from a file.

    Args:
        file_path: Path to file
        n: Number of lines to read from end
        encoding: File encoding

    Returns:
        Last N lines as string
    """
    try:
        with open(file_path, "r", encoding=encoding, errors="replace") as f:
            lines = f.readlines()
            tail_lines = lines[-n:] if len(lines) > n else lines
            return "".join(tail_lines)
    except OSError as e:
        logger.warning(f"Failed to read tail from {file_path}: {e}")
        return f"(Failed to read tail: {e})"


def run_with_streaming(
    command: List[str],
    log_path: Path,
    cwd: Optional[Path] = None,
    env: Optional[dict] = None,
    timeout: Optional[float] = None,
    tail_lines: int = 50,
    encoding: str = "utf-8",
) -> StreamedProcessResult:
    """Run subprocess with stdout/stderr streamed to a log file.

    Args:
        command: Command to execute as list
        log_path: Path where stdout+stderr will be written
        cwd: Working directory for subprocess
        env: Environment variables (None = inherit)
        timeout: Timeout in seconds (None = no timeout)
        tail_lines: Number of lines to return in tail (default: 50)
        encoding: Output encoding (default: utf-8)

    Returns:
        StreamedProcessResult with returncode, log_path, and tail. A timeout
        or a command that cannot be started yields returncode -1.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug(
        f"[StreamingSubprocess] Running command: {' '.join(command)}\n"
        f"  Log: {log_path}\n"
        f"  Timeout: {timeout}s"
    )

    timeout_occurred = False
    returncode = FAILED_RETURNCODE

    try:
        with open(log_path, "w", encoding=encoding, errors="replace") as log_file:
            process = subprocess.run(
                command,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                cwd=cwd,
                env=env,
                timeout=timeout,
            )
            returncode = process.returncode

    except subprocess.TimeoutExpired:
        logger.warning(f"[StreamingSubprocess] Command timed out after {timeout}s: {command}")
        timeout_occurred = True
        with open(log_path, "a", encoding=encoding) as log_file:
            log_file.write(f"\n\n[TIMEOUT] Process exceeded {timeout}s timeout and was terminated.\n")

    except OSError as e:
        logger.error(f"[StreamingSubprocess] Command failed to start: {e}")
        with open(log_path, "a", encoding=encoding) as log_file:
            log_file.write(f"\n\n[ERROR] Process execution failed: {e}\n")

    tail = read_last_n_lines(log_path, n=tail_lines, encoding=encoding)

    logger.debug(
        f"[StreamingSubprocess] Command completed: returncode={returncode}, "
        f"timeout={timeout_occurred}, log={log_path}"
    )

    return StreamedProcessResult(
        returncode=returncode,
        log_path=log_path,
        tail=tail,
        command=command,
        timeout_occurred=timeout_occurred,
    )


def run_captured(
    command: List[str],
    cwd: Optional[Path] = None,
    timeout: Optional[float] = None,
    env: Optional[dict] = None,
) -> CommandResult:
    """Run a short command and capture its combined output.

    Never raises for process failures: timeouts and missing executables are
    folded into a failed CommandResult.
    """
    try:
        process = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
            env=env,
            timeout=timeout,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except subprocess.TimeoutExpired as e:
        partial = e.output or ""
        if isinstance(partial, bytes):
            partial = partial.decode("utf-8", errors="replace")
        logger.warning(f"[StreamingSubprocess] Command timed out after {timeout}s: {command}")
        return CommandResult(
            returncode=FAILED_RETURNCODE,
            output=f"{partial}\n[TIMEOUT] Process exceeded {timeout}s timeout and was terminated.",
            command=command,
            timeout_occurred=True,
        )
    except OSError as e:
        logger.warning(f"[StreamingSubprocess] Command failed to start: {command}: {e}")
        return CommandResult(returncode=FAILED_RETURNCODE, output=str(e), command=command)

    return CommandResult(returncode=process.returncode, output=process.stdout or "", command=command)


CommandRunner = Callable[[List[str], Path, float], CommandResult]


def default_runner(argv: List[str], cwd: Path, timeout: float) -> CommandResult:
    """CommandRunner backed by run_captured."""
    return run_captured(argv, cwd=cwd, timeout=timeout)
