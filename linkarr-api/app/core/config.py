# app/core/config.py
# Loads linkarr settings from a TOML file (defaults + overrides).
# - Reads --config, then LINKARR_CONFIG, then ./linkarr.toml
# - Normalizes extension lists (lowercase, ensure leading dot)
# - Returns an explicit LinkSettings value; nothing here is process-wide state,
#   so two runs with different settings can live in the same process.

from __future__ import annotations
from pathlib import Path
import os
from typing import List, Optional
import tomli as tomllib  # py3.11+: tomllib in stdlib; using tomli for compatibility

from app.core.errors import ConfigError


# -------------------- Defaults (used if TOML omits keys) --------------------
_DEFAULTS = {
    "paths": {
        "database": "state.db",
        "log": "actions.log",
    },
    "formats": {
        "extensions": ["mov", "jpg", "jpeg", "avi", "mp4"],
    },
    "traversal": {
        # sidecar/resource-fork folders written by netatalk and friends
        "ignore": [".AppleDouble"],
    },
    "metadata": {
        # first present tag wins; names cover both exiftool and Pillow spellings
        "date_tags": [
            "DateTimeOriginal",
            "CreateDate",
            "DateTimeDigitized",
            "MediaCreateDate",
            "TrackCreateDate",
            "ModifyDate",
            "DateTime",
        ],
        "date_format": "%Y:%m:%d %H:%M:%S",
        "reader": "auto",   # auto|exiftool|pillow
    },
    "pipeline": {
        "hash_workers": 3,
        "commit_workers": 1,
    },
}

_READERS = ("auto", "exiftool", "pillow")


# -------------------- Read TOML --------------------

def _find_config_path(explicit: Optional[Path] = None) -> Optional[Path]:
    """Find linkarr.toml.
    Priority:
      1) explicit path (--config)
      2) LINKARR_CONFIG
      3) ./linkarr.toml (CWD)
    """
    if explicit is not None:
        p = Path(explicit).expanduser()
        if not p.exists():
            raise ConfigError(f"config file not found: {p}")
        return p

    cfg_env = os.getenv("LINKARR_CONFIG")
    if cfg_env:
        p = Path(cfg_env).expanduser()
        if p.exists():
            return p

    p = Path.cwd() / "linkarr.toml"
    if p.exists():
        return p

    return None


def _load_config_toml(path: Optional[Path]) -> dict:
    """Parse TOML at path; {} when there is no file. Bad TOML is an error, not a silent default."""
    if path is None:
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e


def _norm_ext_list(exts: List[str]) -> frozenset[str]:
    """
    Normalize extension strings: ensure leading dot and lowercase.
    Accepts 'jpg' or '.jpg' and returns '.jpg'.
    """
    out: set[str] = set()
    for e in exts:
        e = (e or "").strip().lower()
        if not e:
            continue
        if not e.startswith("."):
            e = "." + e
        out.add(e)
    return frozenset(out)


def _positive_int(value, name: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if n < 1:
        raise ConfigError(f"{name} must be >= 1, got {n}")
    return n


# -------------------- Settings value --------------------
class LinkSettings:
    """
    Everything a link pass needs to know besides its input and output roots.
    Built from a (possibly empty) TOML dict merged section-by-section over _DEFAULTS.
    """
    def __init__(self, cfg: Optional[dict] = None) -> None:
        cfg = cfg or {}

        paths = {**_DEFAULTS["paths"], **cfg.get("paths", {})}
        self.database: Path = Path(paths["database"]).expanduser()
        self.log: Path = Path(paths["log"]).expanduser()

        formats = {**_DEFAULTS["formats"], **cfg.get("formats", {})}
        self.extensions: frozenset[str] = _norm_ext_list(list(formats["extensions"]))

        traversal = {**_DEFAULTS["traversal"], **cfg.get("traversal", {})}
        self.ignore: tuple[str, ...] = tuple(s for s in traversal["ignore"] if s)

        meta = {**_DEFAULTS["metadata"], **cfg.get("metadata", {})}
        self.date_tags: tuple[str, ...] = tuple(meta["date_tags"])
        self.date_format: str = str(meta["date_format"])
        self.reader: str = str(meta["reader"]).lower()
        if self.reader not in _READERS:
            raise ConfigError(f"[metadata].reader must be one of {_READERS}, got {self.reader!r}")

        pipe = {**_DEFAULTS["pipeline"], **cfg.get("pipeline", {})}
        self.hash_workers: int = _positive_int(pipe["hash_workers"], "hash_workers")
        self.commit_workers: int = _positive_int(pipe["commit_workers"], "commit_workers")

    def accepts(self, path: str) -> bool:
        """True if the path has an accepted extension and no ignore substring."""
        if any(s in path for s in self.ignore):
            return False
        return path.lower().endswith(tuple(self.extensions))

    def __repr__(self) -> str:
        return (
            f"LinkSettings(database={self.database}, log={self.log}, "
            f"extensions={sorted(self.extensions)}, ignore={list(self.ignore)}, "
            f"date_tags={list(self.date_tags)}, reader={self.reader}, "
            f"hash_workers={self.hash_workers}, commit_workers={self.commit_workers})"
        )


def load_settings(explicit: Optional[Path] = None) -> LinkSettings:
    """Locate and parse linkarr.toml, returning defaults when no file is found."""
    return LinkSettings(_load_config_toml(_find_config_path(explicit)))
