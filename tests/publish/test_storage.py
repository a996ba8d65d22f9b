from __future__ import annotations

import json

import pytest

from publish import storage
from publish.storage import atomic_write_json


def test_atomic_write_creates_directory_and_document(tmp_path):
    target = tmp_path / "nested" / "feeds.json"

    atomic_write_json(target, {"title": "Économie", "count": 1})

    assert json.loads(target.read_text(encoding="utf-8")) == {"title": "Économie", "count": 1}
    assert "Économie" in target.read_text(encoding="utf-8")
    assert [p.name for p in target.parent.iterdir()] == ["feeds.json"]


def test_failed_replace_keeps_previous_document(tmp_path, monkeypatch):
    target = tmp_path / "feeds.json"
    atomic_write_json(target, {"version": 1})

    def _boom(src, dst):
        raise OSError("rename failed")

    monkeypatch.setattr(storage.os, "replace", _boom)
    with pytest.raises(OSError):
        atomic_write_json(target, {"version": 2})

    assert json.loads(target.read_text(encoding="utf-8")) == {"version": 1}
    assert [p.name for p in tmp_path.iterdir()] == ["feeds.json"]


def test_unserializable_payload_leaves_no_temp_file(tmp_path):
    target = tmp_path / "feeds.json"

    with pytest.raises(TypeError):
        atomic_write_json(target, {"bad": object()})

    assert list(tmp_path.iterdir()) == []
