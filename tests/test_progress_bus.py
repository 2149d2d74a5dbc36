"""Unit tests for the progress bus."""

from __future__ import annotations

import itertools
import threading

import pytest

from service.codec_engine import EngineEventKind
from service.progress_bus import ProgressBus
from conftest import FakeCodecEngine


def build_bus(capacity: int = 7) -> ProgressBus:
    """Build a bus with a deterministic clock."""
    ticks = itertools.count(1)
    return ProgressBus(capacity=capacity, clock=lambda: float(next(ticks)))


def test_status_log_is_newest_first_and_bounded() -> None:
    bus = build_bus(capacity=3)

    for label in ["one", "two", "three", "four"]:
        bus.append_status(label)

    assert [entry.label for entry in bus.entries()] == ["four", "three", "two"]
    assert [entry.timestamp for entry in bus.entries()] == [4.0, 3.0, 2.0]


def test_progress_is_clamped() -> None:
    bus = build_bus()

    bus.set_progress(140)
    assert bus.progress == 100
    bus.set_progress(-3)
    assert bus.progress == 0


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ProgressBus(capacity=0)


def test_attach_routes_engine_events(fake_engine: FakeCodecEngine) -> None:
    bus = build_bus()
    detach = bus.attach(fake_engine)

    fake_engine.emit(EngineEventKind.LOG, "  frame=12 fps=30  ")
    fake_engine.emit(EngineEventKind.LOG, "   ")
    fake_engine.emit(EngineEventKind.PROGRESS, 42)
    detach()
    fake_engine.emit(EngineEventKind.PROGRESS, 99)

    assert [entry.label for entry in bus.entries()] == ["frame=12 fps=30"]
    assert bus.progress == 42


def test_wait_for_change_wakes_on_status() -> None:
    bus = build_bus()
    start_id = bus.change_id
    observed: list[int] = []

    def wait() -> None:
        observed.append(bus.wait_for_change(start_id, timeout=5))

    waiter = threading.Thread(target=wait)
    waiter.start()
    bus.append_status("Encoder ready.")
    waiter.join(timeout=5)

    assert observed == [start_id + 1]


def test_wait_for_change_times_out_without_changes() -> None:
    bus = build_bus()

    assert bus.wait_for_change(bus.change_id, timeout=0.01) == bus.change_id


def test_snapshot_is_json_ready() -> None:
    bus = build_bus()
    bus.set_progress(37)
    bus.append_status("Segment 1 locked.")

    snapshot = bus.snapshot()

    assert snapshot["progress"] == 37
    assert snapshot["status"] == [{"label": "Segment 1 locked.", "timestamp": 1.0}]
    assert snapshot["change_id"] == 2
