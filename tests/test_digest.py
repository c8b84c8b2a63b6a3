import hashlib
import os
from datetime import datetime

import pytest

from app.core.errors import DigestError
from app.services.digest import KEY_SIZE, sha256_file
from app.utils.fs import fallback_name, same_content, time_path


def test_streamed_digest_matches_hashlib(tmp_path):
    p = tmp_path / "big.mov"
    data = os.urandom(3 * 1024 * 1024 + 17)
    p.write_bytes(data)
    key = sha256_file(p, bufsize=64 * 1024)
    assert key == hashlib.sha256(data).digest()
    assert len(key) == KEY_SIZE


def test_empty_file(tmp_path):
    p = tmp_path / "empty.jpg"
    p.write_bytes(b"")
    assert sha256_file(p) == hashlib.sha256(b"").digest()


def test_unreadable_file_is_a_digest_error(tmp_path):
    with pytest.raises(DigestError):
        sha256_file(tmp_path / "gone.jpg")


def test_output_path_helpers():
    key = bytes.fromhex("deadbeef") + bytes(28)
    assert time_path(datetime(2009, 1, 2)) == "2009/01"
    assert fallback_name(key, "IMG_0001.JPG") == "deadbeef_IMG_0001.JPG"


def test_same_content(tmp_path):
    src = tmp_path / "src.jpg"
    src.write_bytes(b"pixels")
    key = hashlib.sha256(b"pixels").digest()

    link = tmp_path / "link.jpg"
    os.link(src, link)
    copy = tmp_path / "copy.jpg"
    copy.write_bytes(b"pixels")
    other = tmp_path / "other.jpg"
    other.write_bytes(b"not pixels")

    assert same_content(link, src, key)
    assert same_content(copy, src, key)
    assert not same_content(other, src, key)
    assert not same_content(tmp_path / "missing.jpg", src, key)
