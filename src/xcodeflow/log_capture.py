"""Simulator log capture sessions.

A session owns one or more ``xcrun simctl`` subprocesses that all append to
a single artifact file in the temp directory. Sessions live in a
:class:`LogCaptureRegistry`; the registry is the only shared mutable state
and every access to its table goes through an ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import SessionNotFoundError
from .retention import LOG_RETENTION_DAYS, RetentionCleaner, artifact_name

logger = logging.getLogger("xcodeflow.log_capture")


@dataclass
class LogSession:
    """A running capture: its processes and the file they write to."""

    session_id: str
    processes: list[asyncio.subprocess.Process]
    artifact_path: Path
    device_id: str
    app_identifier: str
    started_at: float = field(default_factory=time.time)

    @property
    def running_processes(self) -> list[asyncio.subprocess.Process]:
        return [p for p in self.processes if p.returncode is None]

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "artifact_path": str(self.artifact_path),
            "device_id": self.device_id,
            "app_identifier": self.app_identifier,
            "pids": [p.pid for p in self.processes],
            "running": len(self.running_processes),
            "uptime": time.time() - self.started_at,
        }


@dataclass
class StartCaptureResult:
    session_id: str = ""
    artifact_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class StopCaptureResult:
    content: str = ""
    error: Optional[str] = None


def os_log_stream_args(xcrun: str, device_id: str, app_identifier: str) -> list[str]:
    return [
        xcrun,
        "simctl",
        "spawn",
        device_id,
        "log",
        "stream",
        "--level=debug",
        "--predicate",
        f'subsystem == "{app_identifier}"',
    ]


def console_launch_args(xcrun: str, device_id: str, app_identifier: str) -> list[str]:
    return [
        xcrun,
        "simctl",
        "launch",
        "--console-pty",
        "--terminate-running-process",
        device_id,
        app_identifier,
    ]


class LogCaptureRegistry:
    """Starts, tracks and stops log capture sessions."""

    def __init__(
        self,
        *,
        temp_dir: Optional[Path] = None,
        xcrun: str = "xcrun",
        retention_days: float = LOG_RETENTION_DAYS,
        cleaner: Optional[RetentionCleaner] = None,
    ):
        self.temp_dir = Path(temp_dir or tempfile.gettempdir())
        self.xcrun = xcrun
        self.cleaner = cleaner or RetentionCleaner(self.temp_dir, retention_days=retention_days)
        self._sessions: dict[str, LogSession] = {}
        self._lock = asyncio.Lock()
        self._watchers: set[asyncio.Task] = set()

    async def start(
        self,
        device_id: str,
        app_identifier: str,
        capture_console: bool = False,
    ) -> StartCaptureResult:
        """Start capturing logs of *app_identifier* on simulator *device_id*."""
        self.cleaner.sweep()

        session_id = str(uuid.uuid4())
        artifact_path = self.temp_dir / artifact_name(session_id)

        commands: list[list[str]] = []
        if capture_console:
            commands.append(console_launch_args(self.xcrun, device_id, app_identifier))
        commands.append(os_log_stream_args(self.xcrun, device_id, app_identifier))

        processes: list[asyncio.subprocess.Process] = []
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            # Children inherit the descriptor; our copy is closed once they are spawned.
            with open(artifact_path, "ab") as log_file:
                log_file.write(f"\n--- Log capture for bundle ID: {app_identifier} ---\n".encode())
                log_file.flush()
                for args in commands:
                    proc = await asyncio.create_subprocess_exec(
                        *args,
                        stdin=asyncio.subprocess.DEVNULL,
                        stdout=log_file,
                        stderr=asyncio.subprocess.STDOUT,
                    )
                    logger.debug("Log capture process pid=%d: %s", proc.pid, " ".join(args))
                    processes.append(proc)
        except (OSError, ValueError) as e:
            logger.error("Failed to start log capture: %s", e)
            await _terminate(processes)
            return StartCaptureResult(error=str(e))

        session = LogSession(
            session_id=session_id,
            processes=processes,
            artifact_path=artifact_path,
            device_id=device_id,
            app_identifier=app_identifier,
        )
        async with self._lock:
            self._sessions[session_id] = session
        for proc in processes:
            task = asyncio.create_task(_report_exit(session_id, proc))
            self._watchers.add(task)
            task.add_done_callback(self._watchers.discard)

        logger.info("Log capture started with session ID: %s", session_id)
        return StartCaptureResult(session_id=session_id, artifact_path=artifact_path)

    async def stop(self, session_id: str) -> StopCaptureResult:
        """Stop *session_id* and return everything captured so far.

        Raises:
            SessionNotFoundError: the id is unknown or already stopped.
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            logger.warning("Log session not found: %s", session_id)
            raise SessionNotFoundError(session_id)

        logger.info("Attempting to stop log capture session: %s", session_id)
        await _terminate(session.processes)
        logger.info(
            "Log capture session %s stopped. Log file retained at: %s",
            session_id,
            session.artifact_path,
        )

        try:
            content = session.artifact_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.error("Failed to read log capture for session %s: %s", session_id, e)
            return StopCaptureResult(error=str(e))
        return StopCaptureResult(content=content)

    async def stop_all(self) -> None:
        async with self._lock:
            ids = list(self._sessions)
        for session_id in ids:
            try:
                await self.stop(session_id)
            except SessionNotFoundError:
                continue

    async def get(self, session_id: str) -> Optional[LogSession]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def active_sessions(self) -> list[LogSession]:
        async with self._lock:
            return list(self._sessions.values())


async def _terminate(processes: list[asyncio.subprocess.Process], timeout: float = 5.0) -> None:
    """Send SIGTERM to processes that are still running and reap them."""
    for proc in processes:
        if proc.returncode is not None:
            continue
        try:
            proc.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            continue
    for proc in processes:
        try:
            await asyncio.wait_for(proc.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Log capture process pid=%d did not exit after SIGTERM", proc.pid)


async def _report_exit(session_id: str, proc: asyncio.subprocess.Process) -> None:
    code = await proc.wait()
    logger.info("A log capture process for session %s exited with code %s.", session_id, code)
