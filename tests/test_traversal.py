import os
from datetime import datetime

import pytest

from app.core.config import LinkSettings
from app.core.errors import TimestampError, TraversalError
from app.schemas.media import TimestampSource
from app.services.metadata import TimestampResolver
from app.services.pipeline import Traversal
from conftest import make_jpeg, write_media


def names(items):
    return sorted(os.path.basename(i.source_path) for i in items)


def test_extension_filter_is_case_insensitive(tmp_path, settings):
    write_media(tmp_path / "photo.JPG", b"1")
    write_media(tmp_path / "clip.Mp4", b"2")
    write_media(tmp_path / "notes.txt", b"3")
    write_media(tmp_path / "raw.dng", b"4")
    assert names(Traversal(settings).walk(tmp_path)) == ["clip.Mp4", "photo.JPG"]


def test_ignored_paths_are_never_emitted(tmp_path, settings):
    write_media(tmp_path / "keep" / "a.jpg", b"1")
    write_media(tmp_path / "keep" / ".AppleDouble" / "a.jpg", b"2")
    write_media(tmp_path / ".AppleDouble" / "deep" / "b.jpg", b"3")
    items = list(Traversal(settings).walk(tmp_path))
    assert [i.source_path for i in items] == [str(tmp_path / "keep" / "a.jpg")]


def test_ignore_list_comes_from_settings(tmp_path):
    settings = LinkSettings({"traversal": {"ignore": ["@eaDir"]}, "metadata": {"reader": "pillow"}})
    write_media(tmp_path / "@eaDir" / "a.jpg", b"1")
    write_media(tmp_path / ".AppleDouble" / "b.jpg", b"2")
    assert names(Traversal(settings).walk(tmp_path)) == ["b.jpg"]


def test_symlinks_are_skipped(tmp_path, settings):
    real = write_media(tmp_path / "real.jpg", b"1")
    (tmp_path / "alias.jpg").symlink_to(real)
    assert names(Traversal(settings).walk(tmp_path)) == ["real.jpg"]


def test_items_carry_timestamp_and_no_key(tmp_path, settings):
    write_media(tmp_path / "old.mov", b"1", when=datetime(2015, 8, 9, 10, 11, 12))
    make_jpeg(tmp_path / "new.jpg", "2022:01:02 03:04:05")
    items = {os.path.basename(i.source_path): i for i in Traversal(settings).walk(tmp_path)}

    assert items["old.mov"].timestamp == datetime(2015, 8, 9, 10, 11, 12)
    assert items["old.mov"].timestamp_source is TimestampSource.FILESYSTEM_TIME
    assert items["new.jpg"].timestamp == datetime(2022, 1, 2, 3, 4, 5)
    assert items["new.jpg"].timestamp_source is TimestampSource.EMBEDDED_METADATA
    assert all(i.content_key is None for i in items.values())


def test_missing_root_is_a_traversal_error(tmp_path, settings):
    with pytest.raises(TraversalError):
        list(Traversal(settings).walk(tmp_path / "nope"))


def test_resolver_errors_abort_instead_of_skipping(tmp_path, settings):
    write_media(tmp_path / "a.jpg", b"1")

    def broken(p):
        raise TimestampError(p, "unreadable")

    with pytest.raises(TimestampError):
        list(Traversal(settings, TimestampResolver(settings, reader=broken)).walk(tmp_path))
