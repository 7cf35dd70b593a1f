"""
Subscription to oximetry value notifications.

The manager owns at most one notification channel. The link handler only
enqueues raw payloads; a consumer task per channel decodes them, publishes
the latest reading and forwards it to the display. Switching characteristic
closes the old channel before the new one is opened.
"""

import asyncio
import logging
from typing import Optional

from .decoder import decode
from .errors import (
    DecodeError,
    GattCommunicationError,
    SubscribeError,
    SubscribeErrorKind,
)
from .link import GattLink
from .models import (
    CharacteristicDescriptor,
    ClientConfiguration,
    ReadingBoard,
    Severity,
    SubscriptionState,
    UserInterface,
)

logger = logging.getLogger(__name__)


class _Channel:
    """Inbound payload stream for one subscription."""

    def __init__(self, characteristic: CharacteristicDescriptor, maxsize: int) -> None:
        self.characteristic = characteristic
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.open = True
        self.dropped = 0
        self.task: Optional[asyncio.Task] = None

    def push(self, payload: bytes) -> None:
        """Value handler registered on the link. Must not block."""
        if not self.open:
            return
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            # Only the latest reading matters, drop if backed up
            self.dropped += 1

    def close(self) -> None:
        self.open = False
        task = self.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait_closed(self) -> None:
        """Wait for the consumer task to finish after ``close``."""
        task = self.task
        if task is None or task is asyncio.current_task():
            return
        await asyncio.wait({task})


def _log_consumer_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Notification consumer failed: {exc!r}")


class SubscriptionManager:
    """Manages the single value-changed subscription of a session."""

    def __init__(
        self,
        link: GattLink,
        board: ReadingBoard,
        ui: UserInterface,
        queue_size: int = 10,
    ) -> None:
        self._link = link
        self._board = board
        self._ui = ui
        self._queue_size = queue_size
        self._lock = asyncio.Lock()
        self._channel: Optional[_Channel] = None

    @property
    def state(self) -> SubscriptionState:
        if self._channel is None:
            return SubscriptionState.UNSUBSCRIBED
        return SubscriptionState.SUBSCRIBED

    @property
    def is_subscribed(self) -> bool:
        return self._channel is not None

    @property
    def characteristic(self) -> Optional[CharacteristicDescriptor]:
        """Characteristic currently subscribed to, if any."""
        return self._channel.characteristic if self._channel else None

    @property
    def dropped(self) -> int:
        return self._channel.dropped if self._channel else 0

    @staticmethod
    def select_configuration(
        characteristic: CharacteristicDescriptor,
    ) -> ClientConfiguration:
        """Pick indicate over notify, as advertised by the characteristic.

        Raises:
            SubscribeError: If neither is supported
        """
        if characteristic.supports_indicate:
            return ClientConfiguration.INDICATE
        if characteristic.supports_notify:
            return ClientConfiguration.NOTIFY
        raise SubscribeError(
            SubscribeErrorKind.UNSUPPORTED_CHARACTERISTIC,
            f"{characteristic.name} supports neither notify nor indicate",
        )

    async def subscribe(self, characteristic: CharacteristicDescriptor) -> None:
        """Enable value notifications on a characteristic.

        No-op if already subscribed to it. An existing subscription to a
        different characteristic is removed first.

        Raises:
            SubscribeError: UNSUPPORTED_CHARACTERISTIC or UNAUTHORIZED, or
                REMOTE_REJECTED if the previous subscription can't be removed
        """
        async with self._lock:
            if self._channel is not None:
                if self._channel.characteristic == characteristic:
                    logger.debug(f"Already subscribed to {characteristic.name}")
                    return
                await self._unsubscribe_locked()

            value = self.select_configuration(characteristic)
            try:
                await self._link.write_client_configuration(characteristic, value)
            except GattCommunicationError as e:
                # Also raised when a device advertises a capability it lacks
                raise SubscribeError(
                    SubscribeErrorKind.UNAUTHORIZED,
                    f"Error registering for value changes: {e}",
                ) from e

            channel = _Channel(characteristic, self._queue_size)
            self._link.add_value_handler(characteristic, channel.push)
            channel.task = asyncio.create_task(self._consume(channel))
            channel.task.add_done_callback(_log_consumer_exit)
            self._channel = channel
            logger.info(f"Subscribed to {characteristic.name} ({value.name})")

        self._ui.notify_user("Successfully subscribed for value changes", Severity.STATUS)

    async def unsubscribe(self) -> None:
        """Disable value notifications. No-op if not subscribed.

        Raises:
            SubscribeError: REMOTE_REJECTED if the device refused; the
                subscription is left in place
        """
        async with self._lock:
            channel = self._channel
            if channel is None:
                return
            await self._unsubscribe_locked()
        await channel.wait_closed()
        self._ui.notify_user("Successfully un-registered for notifications", Severity.STATUS)

    def discard(self) -> None:
        """Drop the subscription locally without writing to the device.

        Used when the link is already gone.
        """
        if self._channel is not None:
            logger.info(f"Discarding subscription to {self._channel.characteristic.name}")
            self._close(self._channel)

    async def _unsubscribe_locked(self) -> None:
        channel = self._channel
        assert channel is not None
        try:
            await self._link.write_client_configuration(
                channel.characteristic, ClientConfiguration.NONE
            )
        except GattCommunicationError as e:
            raise SubscribeError(
                SubscribeErrorKind.REMOTE_REJECTED,
                f"Error un-registering for notifications: {e.status.value}",
            ) from e
        self._close(channel)
        logger.info(f"Unsubscribed from {channel.characteristic.name}")

    def _close(self, channel: _Channel) -> None:
        self._link.remove_value_handler(channel.characteristic, channel.push)
        channel.close()
        if self._channel is channel:
            self._channel = None

    async def _unsubscribe_channel(self, channel: _Channel) -> None:
        """Unsubscribe only if ``channel`` is still the live one."""
        async with self._lock:
            if self._channel is not channel:
                return
            try:
                await self._unsubscribe_locked()
            except SubscribeError:
                if not channel.open:
                    # Discarded while the write was in flight
                    logger.debug(f"{channel.characteristic.name} already discarded")
                    return
                raise
        self._ui.notify_user("Successfully un-registered for notifications", Severity.STATUS)

    async def _consume(self, channel: _Channel) -> None:
        """Decode payloads of one channel until it is closed."""
        while channel.open:
            payload = await channel.queue.get()
            if not channel.open:
                break

            try:
                reading = decode(payload)
            except DecodeError as e:
                logger.warning(f"Dropping payload {payload!r}: {e}")
                self._ui.notify_user(f"Unable to convert reading: {e}", Severity.ERROR)
                continue

            self._board.publish(reading)
            try:
                self._ui.display_reading(reading, reading.timestamp)
            except Exception as e:
                logger.error(f"Display error: {e}")

            if reading.signal_lost:
                self._ui.notify_user(
                    "Please check connection and reconnect.", Severity.ERROR
                )
                try:
                    await self._unsubscribe_channel(channel)
                except SubscribeError as e:
                    logger.error(f"Could not stop notifications: {e}")
                    self._ui.notify_user(str(e), Severity.ERROR)
