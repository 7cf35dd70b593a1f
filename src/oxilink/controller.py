"""
Connection lifecycle for a single pulse oximeter.

The controller drives connect -> discover -> subscribe and the reverse
teardown, and owns the only live ``Session``. Public verbs report each
failure to the user exactly once and re-raise it to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Set

from .discovery import DiscoveryPipeline
from .errors import (
    GattCommunicationError,
    GattStatus,
    LifecycleError,
    LifecycleErrorKind,
    OxiLinkError,
    SubscribeError,
)
from .link import BleakLink, GattLink
from .models import (
    CharacteristicDescriptor,
    Reading,
    ReadingBoard,
    ServiceDescriptor,
    Severity,
    SubscriptionState,
    UserInterface,
)
from .recorder import DestinationPicker, Recorder
from .subscription import SubscriptionManager

logger = logging.getLogger(__name__)

LinkFactory = Callable[[str], GattLink]


class LifecycleState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    DISCOVERING = "discovering"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    TEARDOWN = "teardown"


@dataclass
class Session:
    """The live connection to one device and its subscription."""

    device_id: str
    link: GattLink
    service: ServiceDescriptor
    characteristic: CharacteristicDescriptor
    subscriptions: SubscriptionManager
    connected_at: datetime = field(default_factory=datetime.now)


class OximeterController:
    """Manages connection, subscription and recording for one oximeter."""

    def __init__(
        self,
        ui: UserInterface,
        link_factory: LinkFactory = BleakLink,
        discovery: Optional[DiscoveryPipeline] = None,
        recorder: Optional[Recorder] = None,
    ) -> None:
        """Initialize controller with no device connection.

        Args:
            ui: Feedback and display surface
            link_factory: Creates an unopened link for a device id
            discovery: Discovery pipeline (default targets the Nonin service)
            recorder: Recording sink (default records the latest reading at 1 Hz)
        """
        self._ui = ui
        self._link_factory = link_factory
        self._discovery = discovery or DiscoveryPipeline(ui)
        self.readings = ReadingBoard()
        self.recorder = recorder or Recorder(
            self.readings, ui, on_failure=self._force_unsubscribe
        )
        self.state = LifecycleState.IDLE
        self._session: Optional[Session] = None
        # Held by a connect (reset included) or a teardown for its whole run
        self._lock = asyncio.Lock()
        self._attempt: Optional[asyncio.Task] = None
        self._abandoned: Set[asyncio.Task] = set()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_active(self) -> bool:
        return self.state is LifecycleState.ACTIVE

    @property
    def subscription_state(self) -> SubscriptionState:
        if self._session is None:
            return SubscriptionState.UNSUBSCRIBED
        return self._session.subscriptions.state

    @property
    def latest_reading(self) -> Optional[Reading]:
        return self.readings.latest

    # ========== Lifecycle ==========

    async def connect(self, device_id: Optional[str]) -> Session:
        """Connect to a device and subscribe to its oximetry values.

        Any previous session is torn down first. On failure the link is
        released and the controller is back to IDLE.

        Raises:
            LifecycleError: NO_DEVICE_SELECTED, RESET_FAILED, RADIO_UNAVAILABLE,
                CONNECT_FAILED or ABANDONED
            DiscoveryError: If the oximetry characteristic can't be resolved
            SubscribeError: If value notifications can't be enabled
        """
        try:
            if not device_id:
                raise LifecycleError(
                    LifecycleErrorKind.NO_DEVICE_SELECTED, "No device selected."
                )
            # Registered before the first await so a later verb can cancel it
            self._abandon_attempt()
            attempt = asyncio.ensure_future(self._reset_and_establish(device_id))
            self._attempt = attempt
            try:
                return await attempt
            except asyncio.CancelledError:
                if attempt in self._abandoned:
                    raise LifecycleError(
                        LifecycleErrorKind.ABANDONED,
                        f"Connection to {device_id} was abandoned.",
                    ) from None
                raise
            finally:
                self._abandoned.discard(attempt)
                if self._attempt is attempt:
                    self._attempt = None
        except OxiLinkError as e:
            logger.error(f"Connect failed: {e}")
            self._ui.notify_user(str(e), Severity.ERROR)
            raise

    async def teardown(self) -> None:
        """Unsubscribe and release the device. No-op when idle.

        Raises:
            LifecycleError: RESET_FAILED if the device refused to stop
                notifications; the link is kept so the user can retry
        """
        self._abandon_attempt()
        try:
            async with self._lock:
                await self._teardown()
        except LifecycleError as e:
            logger.error(f"Teardown failed: {e}")
            self._ui.notify_user(str(e), Severity.ERROR)
            raise

    async def _reset_and_establish(self, device_id: str) -> Session:
        async with self._lock:
            try:
                await self._teardown()
            except LifecycleError as e:
                raise LifecycleError(
                    LifecycleErrorKind.RESET_FAILED,
                    "Error: Unable to reset state, try again.",
                ) from e
            return await self._establish(device_id)

    async def _establish(self, device_id: str) -> Session:
        link = self._link_factory(device_id)
        self.state = LifecycleState.CONNECTING
        try:
            try:
                await link.open()
            except GattCommunicationError as e:
                if e.status is GattStatus.DEVICE_NOT_AVAILABLE:
                    raise LifecycleError(
                        LifecycleErrorKind.RADIO_UNAVAILABLE, "Bluetooth radio is not on."
                    ) from e
                raise LifecycleError(
                    LifecycleErrorKind.CONNECT_FAILED, "Failed to connect to device."
                ) from e

            self.state = LifecycleState.DISCOVERING
            service, characteristic = await self._discovery.discover(link)

            self.state = LifecycleState.SUBSCRIBING
            subscriptions = SubscriptionManager(link, self.readings, self._ui)
            await subscriptions.subscribe(characteristic)
        except BaseException:
            await link.close()
            self.state = LifecycleState.IDLE
            raise

        session = Session(
            device_id=device_id,
            link=link,
            service=service,
            characteristic=characteristic,
            subscriptions=subscriptions,
        )
        link.set_on_disconnect(lambda: self._on_link_lost(session))
        self._session = session
        self.state = LifecycleState.ACTIVE
        logger.info(f"Session active on {device_id}")
        return session

    async def _teardown(self) -> None:
        session = self._session
        if session is None:
            self.state = LifecycleState.IDLE
            return

        previous = self.state
        self.state = LifecycleState.TEARDOWN
        try:
            await session.subscriptions.unsubscribe()
        except SubscribeError as e:
            self.state = previous
            raise LifecycleError(
                LifecycleErrorKind.RESET_FAILED, "Error: Unable to reset app state"
            ) from e
        except asyncio.CancelledError:
            # A newer verb will run the reset again
            self.state = previous
            raise

        self._session = None
        session.link.set_on_disconnect(None)
        await asyncio.shield(session.link.close())
        self.state = LifecycleState.IDLE
        logger.info(f"Released {session.device_id}")

    def _abandon_attempt(self) -> None:
        """Cancel an in-flight connect.

        The attempt releases its own link and then the lock, so the caller
        proceeds once it has taken the lock.
        """
        attempt = self._attempt
        self._attempt = None
        if attempt is None or attempt.done():
            return
        logger.info("Abandoning in-flight connection attempt")
        self._abandoned.add(attempt)
        attempt.cancel()

    def _on_link_lost(self, session: Session) -> None:
        """Called by the link when the device drops the connection."""
        if self._session is not session:
            return
        session.subscriptions.discard()
        self._session = None
        self.state = LifecycleState.IDLE
        self._ui.notify_user("Device disconnected", Severity.ERROR)

    # ========== Recording ==========

    async def start_recording(self, pick_destination: DestinationPicker) -> Optional[Path]:
        """Start recording the latest reading once per second.

        Raises:
            RecordingError: ALREADY_RECORDING or WRITE_FAILED
        """
        try:
            path = await self.recorder.start(pick_destination)
        except OxiLinkError as e:
            logger.error(f"Recording failed to start: {e}")
            self._ui.notify_user(str(e), Severity.ERROR)
            raise
        if path is not None:
            self._ui.notify_user(f"Recording to {path}", Severity.STATUS)
        return path

    async def stop_recording(self) -> None:
        """Stop recording. No-op if not recording."""
        if not self.recorder.is_recording:
            return
        await self.recorder.stop()
        self._ui.notify_user("Recording stopped", Severity.STATUS)

    async def _force_unsubscribe(self) -> None:
        """Stop notifications after a recording failure."""
        session = self._session
        if session is None:
            return
        try:
            await session.subscriptions.unsubscribe()
        except SubscribeError as e:
            logger.warning(f"Unsubscribe failed, clearing locally: {e}")
            session.subscriptions.discard()
