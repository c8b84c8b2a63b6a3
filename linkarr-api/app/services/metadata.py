# app/services/metadata.py
# Capture-time resolution: embedded metadata first, filesystem mtime otherwise.
# "No metadata" is an expected outcome; anything else that goes wrong while
# reading a file is a TimestampError and aborts the run.
from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple
import json, subprocess, shutil

from PIL import Image, ExifTags, UnidentifiedImageError

from app.core.config import LinkSettings
from app.core.errors import TimestampError
from app.schemas.media import TimestampSource

try:
    # Enables Pillow to open HEIC/HEIF if installed
    import pillow_heif  # type: ignore
    pillow_heif.register_heif_opener()
except ImportError:
    pillow_heif = None

TagReader = Callable[[Path], Dict[str, object]]

_EXIF_IFD = 0x8769  # ExifIFD pointer; DateTimeOriginal/DateTimeDigitized live here

# Common invalid/sentinel values → treat as missing
_SENTINELS = ("0000:00:00", "0001:01:01", "    :  :  ")

# exiftool errors meaning "not a format it reads", same as Pillow's UnidentifiedImageError
_NO_METADATA_ERRORS = ("Unknown file type", "File is empty", "File format error")


def _has_exiftool() -> bool:
    return shutil.which("exiftool") is not None


def read_tags_exiftool(p: Path) -> Dict[str, object]:
    """Return raw exiftool tags as a flat dict (unprefixed names)."""
    cmd = [
        "exiftool",
        "-j", "-n",
        "-api", "largefilesupport=1",
        "--MakerNotes", "--PreviewImage", "--ThumbnailImage",
        str(p),
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=20)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise TimestampError(p, f"exiftool failed: {e}") from e
    # with -j, per-file errors land in the row's "Error" field and stderr may be empty
    try:
        data = json.loads(proc.stdout) if proc.stdout.strip() else []
    except json.JSONDecodeError as e:
        if proc.returncode != 0:
            raise TimestampError(p, proc.stderr.strip() or f"exiftool rc={proc.returncode}") from e
        raise TimestampError(p, f"unreadable exiftool output: {e}") from e
    row = dict(data[0]) if data else {}
    row.pop("SourceFile", None)
    error = str(row.get("Error") or "")
    if error.startswith(_NO_METADATA_ERRORS):
        return {}
    if proc.returncode != 0 or not data:
        raise TimestampError(p, error or proc.stderr.strip() or f"exiftool rc={proc.returncode}")
    return row


def read_tags_pillow(p: Path) -> Dict[str, object]:
    """
    Image-only reader: IFD0 plus the Exif sub-IFD, keyed by Pillow's tag names.
    Files Pillow doesn't recognise (videos, mostly) have no metadata.
    """
    out: Dict[str, object] = {}
    try:
        with Image.open(p) as im:
            exif = im.getexif()
            tags = dict(exif.items())
            tags.update(exif.get_ifd(_EXIF_IFD).items())
    except UnidentifiedImageError:
        return out
    except OSError as e:
        raise TimestampError(p, str(e)) from e
    for tag_id, val in tags.items():
        name = ExifTags.TAGS.get(tag_id, f"EXIF:{tag_id}")
        if isinstance(val, bytes):
            val = val.decode("ascii", errors="ignore")
        out[str(name)] = val
    return out


def tag_reader_for(mode: str) -> TagReader:
    """Pick a reader: exiftool when asked for (or available in auto mode), else Pillow."""
    if mode == "exiftool" or (mode == "auto" and _has_exiftool()):
        return read_tags_exiftool
    return read_tags_pillow


def parse_embedded_dt(value: object, fmt: str) -> Optional[datetime]:
    """
    Parse a tag value in the fixed metadata format.
    Returns None for empty/sentinel values; raises ValueError for anything malformed.
    Sub-second and UTC-offset suffixes after the base stamp are dropped.
    """
    s = str(value).strip().strip("\x00").strip()
    if not s or s.startswith(_SENTINELS):
        return None
    try:
        return datetime.strptime(s, fmt)
    except ValueError:
        if len(s) > 19:
            return datetime.strptime(s[:19], fmt)
        raise


class TimestampResolver:
    """Given a path, returns (capture time, where it came from)."""

    def __init__(self, settings: LinkSettings, reader: Optional[TagReader] = None) -> None:
        self.date_tags = settings.date_tags
        self.date_format = settings.date_format
        self.reader = reader or tag_reader_for(settings.reader)

    def embedded_timestamp(self, p: Path) -> Optional[datetime]:
        """First tag in priority order that is present wins; None if none are."""
        meta = self.reader(p)
        for k in self.date_tags:
            v = meta.get(k)
            if v is None or v == "":
                continue
            try:
                dt = parse_embedded_dt(v, self.date_format)
            except ValueError as e:
                raise TimestampError(p, f"bad {k} value {v!r}: {e}") from e
            if dt:
                return dt
        return None

    def resolve(self, p: Path) -> Tuple[datetime, TimestampSource]:
        dt = self.embedded_timestamp(p)
        if dt is not None:
            return dt, TimestampSource.EMBEDDED_METADATA
        try:
            mtime = p.stat().st_mtime
        except OSError as e:
            raise TimestampError(p, str(e)) from e
        return datetime.fromtimestamp(mtime), TimestampSource.FILESYSTEM_TIME
