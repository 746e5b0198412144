from __future__ import annotations

import json
from pathlib import Path

import pytest

from wabridge.monitors.registry import MonitorRegistry, MonitorScript, MonitorSpec, match_keyword


def test_add_normalises_and_persists(tmp_path: Path):
    path = tmp_path / "monitors.json"
    registry = MonitorRegistry(path)

    key = registry.add("555", MonitorSpec(webhook="http://example.com/hook"))

    assert key == "555@c.us"
    assert registry.get("555") is not None
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["555@c.us"]["webhook"] == "http://example.com/hook"
    assert "createdAt" in saved["555@c.us"]
    # indented for humans
    assert "\n  " in path.read_text(encoding="utf-8")


def test_registry_reloads_from_disk(tmp_path: Path):
    path = tmp_path / "monitors.json"
    MonitorRegistry(path).add(
        "111@c.us", MonitorSpec(script=MonitorScript(keywords={"ping": "pong", "hello": "hi"}))
    )

    reloaded = MonitorRegistry(path)
    spec = reloaded.get("111@c.us")

    assert spec is not None
    assert list(spec.script.keywords.items()) == [("ping", "pong"), ("hello", "hi")]


def test_add_overwrites_existing(monitors: MonitorRegistry):
    monitors.add("111", MonitorSpec(webhook="http://a.example/"))
    monitors.add("111", MonitorSpec(webhook="http://b.example/"))

    assert len(monitors.list()) == 1
    assert monitors.get("111@c.us").webhook == "http://b.example/"


def test_remove(monitors: MonitorRegistry):
    monitors.add("111", MonitorSpec())

    assert monitors.remove("111@c.us") is True
    assert monitors.remove("111@c.us") is False
    assert monitors.list() == []


def test_add_rejects_empty_id(monitors: MonitorRegistry):
    with pytest.raises(ValueError):
        monitors.add("   ", MonitorSpec())


@pytest.mark.parametrize("content", ["", "{broken", "[1, 2]"])
def test_corrupt_store_loads_empty(tmp_path: Path, content: str):
    path = tmp_path / "monitors.json"
    path.write_text(content, encoding="utf-8")

    assert MonitorRegistry(path).list() == []


def test_missing_store_loads_empty(tmp_path: Path):
    assert len(MonitorRegistry(tmp_path / "nope.json")) == 0


def test_match_keyword_first_hit_in_insertion_order():
    keywords = {"ping": "pong", "hello": "hi"}

    assert match_keyword(keywords, "Hello there, ping?") == "pong"
    assert match_keyword({"hello": "hi", "ping": "pong"}, "Hello there, ping?") == "hi"


def test_match_keyword_is_case_insensitive_substring():
    assert match_keyword({"HI": "hey"}, "this") == "hey"
    assert match_keyword({"bye": "x"}, "hello") is None
    assert match_keyword({"a": "b"}, "") is None
    assert match_keyword(None, "anything") is None
