from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
import subprocess
from typing import Any, Callable, Mapping

from tfprov.cancellation import CancellationToken
from tfprov.errors import CommandError, ErrorCategory, OperationCancelled, ToolUnavailable

logger = logging.getLogger(__name__)

CommandRunner = Callable[["RunArgs"], subprocess.CompletedProcess[str]]

_POLL_INTERVAL_SEC = 0.1
_TERMINATE_GRACE_SEC = 5.0

_RETRYABLE_PATTERNS = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "connection refused",
    "connection reset",
    "i/o timeout",
    "tls handshake timeout",
    "context deadline exceeded",
    "too many requests",
    "rate limit",
    "error acquiring the state lock",
)


@dataclass(frozen=True)
class RunArgs:
    cmd: list[str]
    env: Mapping[str, str] = field(default_factory=dict)
    interactive: bool = False
    token: CancellationToken | None = None

    @property
    def command_line(self) -> str:
        return " ".join(self.cmd)


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str


def default_runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
    """Run a process to completion, terminating it if the token is cancelled."""
    env = {**os.environ, **args.env} if args.env else None
    token = args.token or CancellationToken()
    token.raise_if_cancelled()

    try:
        proc = subprocess.Popen(
            args.cmd,
            env=env,
            stdin=None if args.interactive else subprocess.DEVNULL,
            stdout=None if args.interactive else subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as exc:
        raise ToolUnavailable(f"Executable not found: {args.cmd[0]}") from exc

    with proc:
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL_SEC)
                break
            except subprocess.TimeoutExpired:
                if token.cancelled:
                    _terminate(proc)
                    raise OperationCancelled(f"Cancelled while running: {args.command_line}")
    return subprocess.CompletedProcess(args=args.cmd, returncode=proc.returncode, stdout=stdout or "", stderr=stderr or "")


def _terminate(proc: subprocess.Popen[str]) -> None:
    logger.info("Terminating process pid=%s after cancellation", proc.pid)
    proc.terminate()
    try:
        proc.wait(timeout=_TERMINATE_GRACE_SEC)
    except subprocess.TimeoutExpired:
        logger.warning("Process pid=%s ignored SIGTERM; killing", proc.pid)
        proc.kill()
        proc.wait()


def classify_error(*, returncode: int, stderr: str, stdout: str) -> ErrorCategory:
    if returncode < 0:
        return "retryable"
    text = f"{stderr}\n{stdout}".lower()
    if any(pattern in text for pattern in _RETRYABLE_PATTERNS):
        return "retryable"
    return "fatal"


def run_command(
    args: RunArgs,
    *,
    runner: CommandRunner | None = None,
    error_cls: type[CommandError] = CommandError,
    error_message: str,
) -> CommandResult:
    active_runner = runner or default_runner
    if args.token is not None:
        args.token.raise_if_cancelled()
    logger.debug("Running command: %s", args.command_line)
    completed = active_runner(args)
    result = CommandResult(
        command=list(args.cmd),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if result.returncode != 0:
        raise error_cls(
            message=error_message,
            result=result,
            category=classify_error(
                returncode=result.returncode,
                stderr=result.stderr,
                stdout=result.stdout,
            ),
        )
    return result


@dataclass(frozen=True)
class TextOutput:
    """Free-text tool output (init, validate, plan, apply, destroy)."""

    result: CommandResult

    @property
    def text(self) -> str:
        return self.result.stdout.strip()


@dataclass(frozen=True)
class JsonOutput:
    """Structured tool output (version -json, output -json)."""

    result: CommandResult
    payload: Any
