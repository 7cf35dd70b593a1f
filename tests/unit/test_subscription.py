"""Tests for the notification subscription manager."""

import pytest

from fakes import (
    CONTROL_POINT_CHAR,
    OXIMETRY_CHAR,
    PPG_CHAR,
    FakeLink,
    FakeUI,
    make_payload,
    settle,
    wait_until,
)
from oxilink.errors import SubscribeError, SubscribeErrorKind
from oxilink.models import ClientConfiguration, ReadingBoard, SubscriptionState
from oxilink.subscription import SubscriptionManager


def make_manager(link=None):
    link = link or FakeLink()
    ui = FakeUI()
    board = ReadingBoard()
    return SubscriptionManager(link, board, ui), link, ui, board


@pytest.mark.asyncio
async def test_subscribe_prefers_indicate():
    manager, link, ui, _ = make_manager()
    await manager.subscribe(PPG_CHAR)

    assert link.writes == [(PPG_CHAR, ClientConfiguration.INDICATE)]
    assert manager.state is SubscriptionState.SUBSCRIBED
    assert manager.characteristic == PPG_CHAR
    assert "Successfully subscribed for value changes" in ui.statuses
    await manager.unsubscribe()


@pytest.mark.asyncio
async def test_subscribe_uses_notify():
    manager, link, _, _ = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)

    assert link.writes == [(OXIMETRY_CHAR, ClientConfiguration.NOTIFY)]
    assert link.handler_count == 1
    await manager.unsubscribe()


@pytest.mark.asyncio
async def test_subscribe_unsupported_characteristic():
    manager, link, _, _ = make_manager()
    with pytest.raises(SubscribeError) as exc_info:
        await manager.subscribe(CONTROL_POINT_CHAR)

    assert exc_info.value.kind is SubscribeErrorKind.UNSUPPORTED_CHARACTERISTIC
    assert link.writes == []
    assert manager.state is SubscriptionState.UNSUBSCRIBED


@pytest.mark.asyncio
async def test_subscribe_twice_is_noop():
    manager, link, _, _ = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)
    await manager.subscribe(OXIMETRY_CHAR)

    assert len(link.writes) == 1
    assert link.handler_count == 1
    assert manager.state is SubscriptionState.SUBSCRIBED
    await manager.unsubscribe()


@pytest.mark.asyncio
async def test_subscribe_other_characteristic_replaces_old():
    manager, link, _, _ = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)
    await manager.subscribe(PPG_CHAR)

    assert link.writes == [
        (OXIMETRY_CHAR, ClientConfiguration.NOTIFY),
        (OXIMETRY_CHAR, ClientConfiguration.NONE),
        (PPG_CHAR, ClientConfiguration.INDICATE),
    ]
    assert link.handler_count == 1
    assert PPG_CHAR.handle in link.handlers
    assert manager.characteristic == PPG_CHAR
    await manager.unsubscribe()


@pytest.mark.asyncio
async def test_subscribe_rejected_is_unauthorized():
    manager, link, _, _ = make_manager(FakeLink(fail={"subscribe"}))
    with pytest.raises(SubscribeError) as exc_info:
        await manager.subscribe(OXIMETRY_CHAR)

    assert exc_info.value.kind is SubscribeErrorKind.UNAUTHORIZED
    assert manager.state is SubscriptionState.UNSUBSCRIBED
    assert link.handler_count == 0


@pytest.mark.asyncio
async def test_unsubscribe_when_unsubscribed_is_noop():
    manager, link, ui, _ = make_manager()
    await manager.unsubscribe()

    assert link.writes == []
    assert ui.messages == []


@pytest.mark.asyncio
async def test_unsubscribe_removes_handler():
    manager, link, _, _ = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)
    await manager.unsubscribe()

    assert link.writes[-1] == (OXIMETRY_CHAR, ClientConfiguration.NONE)
    assert link.handler_count == 0
    assert manager.state is SubscriptionState.UNSUBSCRIBED
    assert manager.characteristic is None


@pytest.mark.asyncio
async def test_unsubscribe_waits_for_consumer():
    manager, _, _, _ = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)
    consumer = manager._channel.task

    await manager.unsubscribe()

    assert consumer.done()


@pytest.mark.asyncio
async def test_unsubscribe_rejected_keeps_subscription():
    manager, link, _, _ = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)
    link.fail.add("unsubscribe")

    with pytest.raises(SubscribeError) as exc_info:
        await manager.unsubscribe()

    assert exc_info.value.kind is SubscribeErrorKind.REMOTE_REJECTED
    assert manager.state is SubscriptionState.SUBSCRIBED
    assert link.handler_count == 1

    link.fail.clear()
    await manager.unsubscribe()
    assert manager.state is SubscriptionState.UNSUBSCRIBED


@pytest.mark.asyncio
async def test_notification_updates_latest_reading():
    manager, link, ui, board = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)

    link.emit(make_payload(heart_rate=72, spo2=97))
    await wait_until(lambda: board.latest is not None)

    assert (board.latest.heart_rate, board.latest.spo2) == (72, 97)
    assert ui.readings == [board.latest]
    await manager.unsubscribe()


@pytest.mark.asyncio
async def test_disconnect_code_unsubscribes_eagerly():
    manager, link, ui, board = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)

    link.emit(make_payload(heart_rate=511, spo2=96))
    await wait_until(lambda: manager.state is SubscriptionState.UNSUBSCRIBED)

    assert board.latest.heart_rate == 0
    assert ui.readings[-1].heart_rate == 0
    assert "Please check connection and reconnect." in ui.errors
    assert link.writes[-1] == (OXIMETRY_CHAR, ClientConfiguration.NONE)
    assert link.handler_count == 0


@pytest.mark.asyncio
async def test_undecodable_payload_is_reported_and_skipped():
    manager, link, ui, board = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)

    link.emit(b"\x01\x02")
    link.emit(make_payload(heart_rate=70, spo2=98))
    await wait_until(lambda: board.latest is not None)

    assert len(ui.errors) == 1
    assert "Unable to convert reading" in ui.errors[0]
    assert manager.state is SubscriptionState.SUBSCRIBED
    await manager.unsubscribe()


@pytest.mark.asyncio
async def test_payloads_after_unsubscribe_are_dropped():
    manager, link, ui, board = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)
    push = link.handlers[OXIMETRY_CHAR.handle][0]
    await manager.unsubscribe()

    # A late delivery through the old handler must not reach the board
    push(make_payload(heart_rate=80, spo2=95))
    await settle()

    assert board.latest is None
    assert ui.readings == []


@pytest.mark.asyncio
async def test_discard_clears_without_writing():
    manager, link, _, _ = make_manager()
    await manager.subscribe(OXIMETRY_CHAR)
    consumer = manager._channel.task
    manager.discard()

    assert len(link.writes) == 1
    assert link.handler_count == 0
    assert manager.state is SubscriptionState.UNSUBSCRIBED
    await settle()
    assert consumer.cancelled()
