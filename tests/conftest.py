from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest
from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_SRC = (_PROJECT_ROOT / "src").resolve()
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

load_dotenv(_PROJECT_ROOT / ".env", override=False)


def write_script(path: Path, body: str) -> Path:
    """Write an executable ``#!/bin/sh`` script standing in for a build tool."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_xcrun(tmp_path: Path) -> Path:
    """An ``xcrun`` that prints its argv and then keeps running like ``log stream``."""
    return write_script(
        tmp_path / "xcrun",
        'echo "fake-xcrun $*"\nexec sleep 30\n',
    )


@pytest.fixture
def make_script():
    return write_script
