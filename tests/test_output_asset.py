"""Unit tests for the output asset slot."""

from __future__ import annotations

import itertools

from service.output_asset import OUTPUT_CONTENT_TYPE, OUTPUT_FILENAME, OutputSlot


def build_slot() -> OutputSlot:
    """Build a slot with predictable handles."""
    counter = itertools.count(1)
    return OutputSlot(clock=lambda: 0.0, id_factory=lambda: f"handle-{next(counter)}")


def test_publish_exposes_asset_by_handle() -> None:
    slot = build_slot()

    asset = slot.publish(b"mp4")

    assert asset.filename == OUTPUT_FILENAME
    assert asset.content_type == OUTPUT_CONTENT_TYPE
    assert slot.resolve(asset.handle) is asset
    assert asset.size == 3


def test_publishing_revokes_previous_handle() -> None:
    slot = build_slot()
    first = slot.publish(b"first")

    second = slot.publish(b"second")

    assert slot.resolve(first.handle) is None
    assert slot.resolve(second.handle) is second
    assert slot.current is second


def test_revoke_with_stale_handle_keeps_live_asset() -> None:
    slot = build_slot()
    first = slot.publish(b"first")
    second = slot.publish(b"second")

    assert not slot.revoke(first.handle)
    assert slot.revoke(second.handle)
    assert slot.current is None
    assert not slot.revoke()
