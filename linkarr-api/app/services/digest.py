# app/services/digest.py
from __future__ import annotations
from pathlib import Path
import hashlib
from typing import Union

from app.core.errors import DigestError

KEY_SIZE = 32  # SHA-256


def sha256_file(p: Union[str, Path], bufsize: int = 1024 * 1024) -> bytes:
    """
    Raw SHA-256 digest of a file's bytes, read in chunks so large videos
    never sit in memory. Raises DigestError if the file can't be opened or fully read.
    """
    h = hashlib.sha256()
    try:
        with open(p, "rb", buffering=0) as f:
            while True:
                chunk = f.read(bufsize)
                if not chunk:
                    break
                h.update(chunk)
    except OSError as e:
        raise DigestError(p, e) from e
    return h.digest()
