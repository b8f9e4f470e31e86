"""Tests for atomic JSON persistence."""

import json
import os
import stat

import pytest

from whoopterm.storage import atomic_write_json, read_json, remove_file


def test_write_then_read(tmp_path):
    path = tmp_path / "nested" / "data.json"
    atomic_write_json(path, {"a": 1, "b": [1, 2]})

    assert read_json(path) == {"a": 1, "b": [1, 2]}


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_file_is_private(tmp_path):
    path = tmp_path / "tokens.json"
    atomic_write_json(path, {})

    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_failed_replace_keeps_old_content(tmp_path, monkeypatch):
    """A failure mid-write leaves the previous file intact and no temp files."""
    path = tmp_path / "cache.json"
    path.write_text(json.dumps({"old": True}))

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("whoopterm.storage.os.replace", broken_replace)

    with pytest.raises(OSError, match="disk full"):
        atomic_write_json(path, {"new": True})

    assert read_json(path) == {"old": True}
    assert [p.name for p in tmp_path.iterdir()] == ["cache.json"]


def test_remove_file(tmp_path):
    path = tmp_path / "x.json"
    path.write_text("{}")

    assert remove_file(path) is True
    assert remove_file(path) is False
