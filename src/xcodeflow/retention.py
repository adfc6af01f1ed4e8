"""Age-based cleanup of log capture artifacts."""

from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger("xcodeflow.retention")

LOG_FILE_PREFIX = "xcodemcp_sim_log_"
LOG_FILE_SUFFIX = ".log"
LOG_RETENTION_DAYS = 3.0


def artifact_name(session_id: str) -> str:
    return f"{LOG_FILE_PREFIX}{session_id}{LOG_FILE_SUFFIX}"


class RetentionCleaner:
    """Deletes capture files older than ``retention_days`` from ``directory``.

    Only files named ``<prefix>*<suffix>`` are considered. Errors are logged
    and never raised, so a failed sweep cannot block a new capture.
    """

    def __init__(
        self,
        directory: Optional[Path] = None,
        *,
        retention_days: float = LOG_RETENTION_DAYS,
        prefix: str = LOG_FILE_PREFIX,
        suffix: str = LOG_FILE_SUFFIX,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory or tempfile.gettempdir())
        self.retention_days = retention_days
        self.prefix = prefix
        self.suffix = suffix
        self._clock = clock

    @property
    def retention_seconds(self) -> float:
        return self.retention_days * 24 * 60 * 60

    def is_artifact(self, name: str) -> bool:
        return name.startswith(self.prefix) and name.endswith(self.suffix)

    def sweep(self) -> list[Path]:
        """Run one cleanup pass and return the deleted paths."""
        try:
            names = os.listdir(self.directory)
        except OSError as e:
            logger.warning("Could not read %s for log cleanup: %s", self.directory, e)
            return []

        now = self._clock()
        cutoff = self.retention_seconds
        deleted: list[Path] = []
        for name in names:
            if not self.is_artifact(name):
                continue
            path = self.directory / name
            try:
                if now - path.stat().st_mtime > cutoff:
                    path.unlink()
                    deleted.append(path)
                    logger.info("Deleted old log file: %s", path)
            except OSError as e:
                logger.warning("Error during log cleanup for %s: %s", path, e)

        if deleted:
            logger.debug("Log cleanup removed %d file(s) from %s", len(deleted), self.directory)
        return deleted
