import logging

import pytest
from cosync.core.emitter import EventEmitter


def test_listeners_called_in_registration_order():
    emitter = EventEmitter()
    calls = []
    emitter.on("data", lambda x: calls.append(("first", x)))
    emitter.on("data", lambda x: calls.append(("second", x)))

    assert emitter.emit("data", 1) is True
    assert calls == [("first", 1), ("second", 1)]


def test_emit_without_listeners():
    assert EventEmitter().emit("nothing") is False


def test_once_fires_a_single_time():
    emitter = EventEmitter()
    calls = []
    emitter.once("ready", calls.append)

    emitter.emit("ready", "a")
    emitter.emit("ready", "b")

    assert calls == ["a"]
    assert emitter.listener_count("ready") == 0


def test_off_removes_latest_registration():
    emitter = EventEmitter()
    calls = []
    emitter.on("x", calls.append)
    emitter.on("x", calls.append)

    assert emitter.off("x", calls.append) is True
    emitter.emit("x", 1)
    assert calls == [1]
    assert emitter.off("missing", calls.append) is False


def test_listener_added_during_emit_waits_for_next_emit():
    emitter = EventEmitter()
    calls = []

    def register():
        calls.append("register")
        emitter.on("tick", lambda: calls.append("late"))

    emitter.once("tick", register)
    emitter.emit("tick")
    emitter.emit("tick")

    assert calls == ["register", "late"]


def test_listener_exception_propagates():
    emitter = EventEmitter()

    def broken():
        raise RuntimeError("listener failed")

    emitter.on("go", broken)
    with pytest.raises(RuntimeError, match="listener failed"):
        emitter.emit("go")


def test_remove_all_listeners():
    emitter = EventEmitter()
    emitter.on("a", print)
    emitter.on("b", print)

    emitter.remove_all_listeners("a")
    assert emitter.listeners("a") == []
    assert emitter.listeners("b") == [print]

    emitter.remove_all_listeners()
    assert emitter.listener_count("b") == 0


def test_leak_warning_logged_once(caplog):
    emitter = EventEmitter(max_listeners=2)
    with caplog.at_level(logging.WARNING, logger="cosync.core.emitter"):
        for _ in range(5):
            emitter.on("data", print)

    warnings = [record for record in caplog.records if "listener leak" in record.getMessage()]
    assert len(warnings) == 1


def test_unlimited_listeners(caplog):
    emitter = EventEmitter(max_listeners=0)
    with caplog.at_level(logging.WARNING, logger="cosync.core.emitter"):
        for _ in range(100):
            emitter.on("data", print)

    assert emitter.listener_count("data") == 100
    assert "listener leak" not in caplog.text


def test_negative_max_listeners():
    with pytest.raises(ValueError):
        EventEmitter(max_listeners=-1)
