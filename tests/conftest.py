import os
import threading
from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image

from app.core.config import LinkSettings
from app.core.logs import LOGGER, setup_logging
from app.repositories.db import StateStore
from app.services.digest import sha256_file


@pytest.fixture(autouse=True)
def _reset_linkarr_logger():
    """setup_logging() swaps handlers on a module-level logger; undo it after each test."""
    yield
    for h in list(LOGGER.handlers):
        LOGGER.removeHandler(h)
        h.close()
    LOGGER.propagate = True


@pytest.fixture
def settings():
    # Pillow reader keeps tests independent of whether exiftool is installed
    return LinkSettings({"metadata": {"reader": "pillow"}})


@pytest.fixture
def store(tmp_path):
    s = StateStore(tmp_path / "state.db")
    yield s
    s.close()


@pytest.fixture
def run_log(tmp_path):
    path = tmp_path / "actions.log"
    setup_logging(path, quiet=True)
    return path


def write_media(path: Path, content: bytes, when: datetime = datetime(2021, 3, 4, 12, 0, 0)) -> Path:
    """Write a file and pin its mtime (the fallback capture time)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    ts = when.timestamp()
    os.utime(path, (ts, ts))
    return path


def make_jpeg(path: Path, date_time: str, color=(200, 30, 30)) -> Path:
    """Small JPEG with an IFD0 DateTime tag."""
    path.parent.mkdir(parents=True, exist_ok=True)
    exif = Image.Exif()
    exif[0x0132] = date_time  # DateTime
    Image.new("RGB", (8, 8), color).save(path, format="JPEG", exif=exif)
    return path


def output_files(root: Path):
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


class CountingDigest:
    """sha256_file with a call counter, to prove the path cache skips re-reads."""

    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, path):
        with self._lock:
            self.calls += 1
        return sha256_file(path)
