"""Subprocess execution for build-tool invocations.

Every invocation runs as exactly one ``sh -c`` process with stdin closed
and stdout/stderr captured separately. Failures (non-zero exit, or the
process not starting at all) are reported through
``CommandResult.success``; ``execute`` does not raise for them.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from .progress import ProgressReporter, ProgressSink

logger = logging.getLogger("xcodeflow.executor")

_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class CommandInvocation:
    """One request to run an external tool with a fixed argument list."""

    args: tuple[str, ...]
    label: str = "command"
    progress_sink: Optional[ProgressSink] = None
    cwd: Optional[Path] = None
    env: Optional[dict[str, str]] = None

    def __post_init__(self) -> None:
        # Accept any sequence but store a tuple.
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))

    @property
    def command_line(self) -> str:
        return build_command_line(self.args)


@dataclass
class CommandResult:
    """Outcome of one invocation, produced once at process exit."""

    success: bool
    output: str = ""
    error: str = ""
    exit_code: Optional[int] = None
    command_line: str = ""
    elapsed_seconds: float = 0.0
    operation_id: Optional[str] = None


def quote_argument(arg: str) -> str:
    """Quote one argument so the shell sees it as a single token."""
    return shlex.quote(str(arg))


def build_command_line(args: Sequence[str]) -> str:
    return " ".join(quote_argument(a) for a in args)


async def _pump(
    stream: Optional[asyncio.StreamReader],
    chunks: list[str],
    on_line: Optional[Callable[[str], None]],
) -> None:
    """Read *stream* to EOF, keeping every byte and reporting complete lines."""
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    while True:
        data = await stream.read(_READ_CHUNK)
        if not data:
            break
        text = decoder.decode(data)
        chunks.append(text)
        if on_line is None:
            continue
        pending += text
        *lines, pending = pending.split("\n")
        for line in lines:
            on_line(line)
    tail = decoder.decode(b"", final=True)
    if tail:
        chunks.append(tail)
        pending += tail
    if on_line is not None and pending:
        on_line(pending)


class CommandExecutor:
    """Runs invocations; holds only configuration, never per-call state."""

    def __init__(
        self,
        *,
        progress_interval: float = 1.0,
        shell: str = "sh",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.progress_interval = progress_interval
        self.shell = shell
        self._clock = clock

    async def execute(
        self,
        invocation: CommandInvocation,
        progress_sink: Optional[ProgressSink] = None,
    ) -> CommandResult:
        sink = progress_sink or invocation.progress_sink
        command_line = invocation.command_line
        logger.info("Executing %s command: %s", invocation.label, command_line)
        logger.debug("Raw command array: %s", json.dumps(list(invocation.args)))

        reporter: Optional[ProgressReporter] = None
        if sink is not None:
            reporter = ProgressReporter(
                sink,
                label=invocation.label,
                interval=self.progress_interval,
                clock=self._clock,
            )
            reporter.start()

        env = None
        if invocation.env:
            env = os.environ.copy()
            env.update(invocation.env)

        t0 = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                command_line,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(invocation.cwd) if invocation.cwd else None,
                env=env,
            )
        except (OSError, ValueError) as e:
            message = f"Failed to start {invocation.label} command: {e}"
            logger.error(message)
            if reporter:
                reporter.finish(False, message)
            return CommandResult(
                success=False,
                error=message,
                command_line=command_line,
                elapsed_seconds=time.monotonic() - t0,
                operation_id=reporter.operation_id if reporter else None,
            )

        logger.debug("Process started pid=%d", proc.pid)
        out_chunks: list[str] = []
        err_chunks: list[str] = []
        on_line = reporter.feed if reporter else None
        await asyncio.gather(
            _pump(proc.stdout, out_chunks, on_line),
            _pump(proc.stderr, err_chunks, on_line),
        )
        rc = await proc.wait()
        elapsed = time.monotonic() - t0

        stdout = "".join(out_chunks)
        stderr = "".join(err_chunks)
        success = rc == 0

        if success:
            logger.info("%s succeeded (exit=0) in %.1fs", invocation.label, elapsed)
            error = stderr
        else:
            error = stderr if stderr.strip() else f"{invocation.label} failed with exit code {rc}"
            tail = "\n".join(stdout.splitlines()[-15:]) or "(no output)"
            logger.warning(
                "%s failed (exit=%d) in %.1fs: %s\nOutput tail:\n%s",
                invocation.label,
                rc,
                elapsed,
                command_line,
                tail,
            )

        if reporter:
            reporter.finish(success)

        return CommandResult(
            success=success,
            output=stdout,
            error=error,
            exit_code=rc,
            command_line=command_line,
            elapsed_seconds=elapsed,
            operation_id=reporter.operation_id if reporter else None,
        )


_default_executor: Optional[CommandExecutor] = None


def get_executor() -> CommandExecutor:
    global _default_executor
    if _default_executor is None:
        _default_executor = CommandExecutor()
    return _default_executor


def set_executor(executor: Optional[CommandExecutor]) -> None:
    global _default_executor
    _default_executor = executor


def execute(
    invocation: CommandInvocation,
    progress_sink: Optional[ProgressSink] = None,
) -> Awaitable[CommandResult]:
    """Run *invocation* with the process-wide default executor."""
    return get_executor().execute(invocation, progress_sink)
