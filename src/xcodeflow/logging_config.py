"""
Centralized logging configuration for xcodeflow.

Usage at an entry point (cli.py, api.py):

    from xcodeflow.logging_config import setup_logging
    setup_logging(level="DEBUG")

Modules only ever call ``logging.getLogger("xcodeflow.<area>")``; this
function attaches the handlers to the ``xcodeflow`` parent logger:

- a rich console handler on stderr (stdout stays free for command output)
- a plain file handler at ``<log_dir>/xcodeflow.log``
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_NAME = "xcodeflow.log"

_initialized = False


def default_log_dir() -> Path:
    return Path(os.environ.get("XCODEFLOW_LOG_DIR", str(Path(tempfile.gettempdir()) / "xcodeflow-logs")))


def setup_logging(
    *,
    log_dir: Optional[str | Path] = None,
    level: str = "INFO",
    console: bool = True,
    enable_file: bool = True,
) -> logging.Logger:
    """
    Configure the ``xcodeflow`` logger once per process.

    Args:
        log_dir: Directory for the log file. Defaults to XCODEFLOW_LOG_DIR or $TMPDIR/xcodeflow-logs.
        level: Minimum level for the console handler; the file always gets DEBUG.
        console: Attach the rich stderr handler.
        enable_file: Attach the file handler.
    """
    global _initialized

    root = logging.getLogger("xcodeflow")
    if _initialized:
        return root

    root.setLevel(logging.DEBUG)

    if console:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setLevel(level.upper())
        root.addHandler(handler)

    if enable_file:
        path = Path(log_dir) if log_dir else default_log_dir()
        path.mkdir(parents=True, exist_ok=True)
        log_path = str(path / LOG_FILE_NAME)
        if not any(
            isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == log_path
            for h in root.handlers
        ):
            file_handler = logging.FileHandler(log_path)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            root.addHandler(file_handler)

    _initialized = True
    return root
