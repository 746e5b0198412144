from __future__ import annotations

import json

from wabridge.bus.queue import QUEUE_FILENAME, EventQueue


def test_peek_returns_events_in_insertion_order(event_queue: EventQueue):
    event_queue.push({"from": "111@c.us", "body": "hello"})
    event_queue.push({"from": "222@c.us", "body": "world"})

    first = event_queue.peek()
    second = event_queue.peek()

    assert [e["body"] for e in first] == ["hello", "world"]
    assert first == second
    assert len(event_queue) == 2


def test_flush_drains_everything(event_queue: EventQueue):
    event_queue.push({"from": "111@c.us", "body": "hello"})
    event_queue.push({"from": "222@c.us", "body": "world"})

    drained = event_queue.flush()

    assert [e["from"] for e in drained] == ["111@c.us", "222@c.us"]
    assert event_queue.peek() == []
    assert event_queue.flush() == []


def test_flush_on_missing_file_is_empty(event_queue: EventQueue):
    assert event_queue.flush() == []
    assert event_queue.peek() == []


def test_corrupt_lines_are_skipped(event_queue: EventQueue):
    event_queue.push({"from": "111@c.us", "body": "ok"})
    with open(event_queue.file, "a", encoding="utf-8") as f:
        f.write("{not json\n")
        f.write("\n")
        f.write("[1, 2, 3]\n")
    event_queue.push({"from": "222@c.us", "body": "still ok"})

    assert [e["body"] for e in event_queue.peek()] == ["ok", "still ok"]
    assert [e["body"] for e in event_queue.flush()] == ["ok", "still ok"]


def test_push_writes_one_utf8_line_per_event(event_queue: EventQueue):
    event_queue.push({"from": "111@c.us", "body": "olá 📱"})

    lines = event_queue.file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["body"] == "olá 📱"


def test_clear_truncates(event_queue: EventQueue):
    event_queue.push({"from": "111@c.us"})
    event_queue.clear()

    assert event_queue.peek() == []
    assert event_queue.file.exists()


def test_leftover_rotation_is_recovered_before_live_file(event_queue: EventQueue):
    leftover = event_queue.dir / f"{QUEUE_FILENAME}.draining-1-1-1"
    leftover.write_text(json.dumps({"body": "crashed drain"}) + "\n", encoding="utf-8")
    event_queue.push({"body": "fresh"})

    assert [e["body"] for e in event_queue.peek()] == ["crashed drain", "fresh"]
    assert [e["body"] for e in event_queue.flush()] == ["crashed drain", "fresh"]
    assert not leftover.exists()
    assert event_queue.peek() == []


def test_push_after_flush_lands_in_fresh_file(event_queue: EventQueue):
    event_queue.push({"body": "one"})
    event_queue.flush()
    event_queue.push({"body": "two"})

    assert [e["body"] for e in event_queue.peek()] == ["two"]
