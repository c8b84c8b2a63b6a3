from pathlib import Path

import pytest

from app.core.config import LinkSettings, load_settings
from app.core.errors import ConfigError


def test_defaults():
    s = LinkSettings()
    assert s.extensions == {".mov", ".jpg", ".jpeg", ".avi", ".mp4"}
    assert s.ignore == (".AppleDouble",)
    assert s.date_tags[0] == "DateTimeOriginal"
    assert s.reader == "auto"
    assert (s.hash_workers, s.commit_workers) == (3, 1)
    assert s.database == Path("state.db")
    assert s.log == Path("actions.log")


def test_extensions_are_normalized():
    s = LinkSettings({"formats": {"extensions": ["JPG", ".Heic", " mp4 ", ""]}})
    assert s.extensions == {".jpg", ".heic", ".mp4"}


def test_accepts():
    s = LinkSettings()
    assert s.accepts("/photos/IMG_0001.JPG")
    assert s.accepts("/photos/clip.mov")
    assert not s.accepts("/photos/notes.txt")
    assert not s.accepts("/photos/jpg")
    assert not s.accepts("/photos/.AppleDouble/IMG_0001.JPG")


@pytest.mark.parametrize("section", [
    {"metadata": {"reader": "magic"}},
    {"pipeline": {"hash_workers": 0}},
    {"pipeline": {"commit_workers": "many"}},
])
def test_invalid_values_are_config_errors(section):
    with pytest.raises(ConfigError):
        LinkSettings(section)


def test_load_from_explicit_file(tmp_path):
    cfg = tmp_path / "linkarr.toml"
    cfg.write_text('[pipeline]\nhash_workers = 7\n[paths]\ndatabase = "db/state.db"\n')
    s = load_settings(cfg)
    assert s.hash_workers == 7
    assert s.commit_workers == 1
    assert s.database == Path("db/state.db")


def test_missing_explicit_file_is_an_error(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.toml")


def test_bad_toml_is_an_error(tmp_path):
    cfg = tmp_path / "linkarr.toml"
    cfg.write_text("[pipeline\nhash_workers = ")
    with pytest.raises(ConfigError):
        load_settings(cfg)


def test_env_var_then_cwd(tmp_path, monkeypatch):
    env_cfg = tmp_path / "env.toml"
    env_cfg.write_text("[pipeline]\ncommit_workers = 4\n")
    cwd = tmp_path / "cwd"
    cwd.mkdir()
    (cwd / "linkarr.toml").write_text("[pipeline]\ncommit_workers = 2\n")
    monkeypatch.chdir(cwd)

    monkeypatch.setenv("LINKARR_CONFIG", str(env_cfg))
    assert load_settings().commit_workers == 4

    monkeypatch.delenv("LINKARR_CONFIG")
    assert load_settings().commit_workers == 2


def test_no_file_anywhere_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("LINKARR_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    assert load_settings().hash_workers == 3
