# app/utils/fs.py
# Output-tree helpers: where a file goes and how to tell if it's already there.
from datetime import datetime
from pathlib import Path
import os

from app.services.digest import sha256_file


def time_path(ts: datetime) -> str:
    """YYYY/MM fragment for a capture time."""
    return f"{ts.year:04d}/{ts.month:02d}"


def ensure_dir(path: Path) -> None:
    """Recursive create; an existing directory is fine."""
    path.mkdir(parents=True, exist_ok=True)


def fallback_name(key: bytes, basename: str) -> str:
    """<first 8 hex chars of the key>_<basename>, used when the plain name is taken."""
    return f"{key.hex()[:8]}_{basename}"


def same_content(target: Path, source: Path, key: bytes) -> bool:
    """
    True if target exists and holds the content identified by key:
    either it's the same inode as source, or it hashes to key.
    """
    if not target.is_file():
        return False
    try:
        if os.path.samefile(target, source):
            return True
    except OSError:
        pass  # source may be gone; fall through to hashing the target
    return sha256_file(target) == key
