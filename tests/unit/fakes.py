"""In-memory stand-ins for the device link and the user interface."""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional

from oxilink.core import TARGET_SERVICE_NAME, TARGET_SERVICE_UUID
from oxilink.errors import GattCommunicationError, GattStatus
from oxilink.models import (
    CharacteristicDescriptor,
    ClientConfiguration,
    Reading,
    ServiceDescriptor,
    Severity,
)

OXIMETRY_SERVICE = ServiceDescriptor(uuid=TARGET_SERVICE_UUID, name=TARGET_SERVICE_NAME, handle=16)
BATTERY_SERVICE = ServiceDescriptor(
    uuid="0000180f-0000-1000-8000-00805f9b34fb", name="Battery Service", handle=1
)
OXIMETRY_CHAR = CharacteristicDescriptor(
    uuid="0aad7ea0-0d60-11e2-8e3c-0002a5d5c51b",
    name="Nonin Continuous Oximetry",
    handle=17,
    supports_notify=True,
)
CONTROL_POINT_CHAR = CharacteristicDescriptor(
    uuid="1447af80-0d60-11e2-88b6-0002a5d5c51b",
    name="Custom Characteristic: 1447af80-0d60-11e2-88b6-0002a5d5c51b",
    handle=20,
)
PPG_CHAR = CharacteristicDescriptor(
    uuid="ec0a883a-4d24-11e7-b114-b2f933d5fe66",
    name="PPG Oximetry",
    handle=30,
    supports_notify=True,
    supports_indicate=True,
)


def make_payload(heart_rate: int = 72, spo2: int = 97, length: int = 10) -> bytes:
    """Build a continuous oximetry payload."""
    data = bytearray(length)
    data[7] = spo2
    data[8] = heart_rate & 0xFF
    data[9] = (heart_rate >> 8) & 0xFF
    return bytes(data)


def make_reading(heart_rate: int, spo2: int) -> Reading:
    return Reading(heart_rate=heart_rate, spo2=spo2, timestamp=datetime(2024, 1, 1, 12, 0, 0))


class FakeLink:
    """GattLink backed by canned services, failing on demand.

    ``fail`` names operations that raise: open, services, access,
    characteristics, descriptors, subscribe, unsubscribe.
    """

    def __init__(
        self,
        device_id: str = "dev-1",
        services: Optional[List[ServiceDescriptor]] = None,
        characteristics: Optional[List[CharacteristicDescriptor]] = None,
        fail: Optional[set] = None,
        open_status: GattStatus = GattStatus.UNREACHABLE,
    ) -> None:
        self.device_id = device_id
        self.services = services if services is not None else [BATTERY_SERVICE, OXIMETRY_SERVICE]
        self.characteristics = (
            characteristics if characteristics is not None else [CONTROL_POINT_CHAR, OXIMETRY_CHAR]
        )
        self.fail = set(fail or ())
        self.open_status = open_status
        self.open_gate: Optional[asyncio.Event] = None
        self.opened = False
        self.close_count = 0
        self.writes: List[tuple] = []
        self.handlers: Dict[int, List[Callable[[bytes], None]]] = {}
        self._on_disconnect: Optional[Callable[[], None]] = None

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    @property
    def handler_count(self) -> int:
        return sum(len(h) for h in self.handlers.values())

    def _maybe_fail(self, operation: str, status: GattStatus = GattStatus.UNREACHABLE) -> None:
        if operation in self.fail:
            raise GattCommunicationError(status, f"{operation} failed")

    async def open(self) -> None:
        if self.open_gate is not None:
            await self.open_gate.wait()
        self._maybe_fail("open", self.open_status)
        self.opened = True

    async def close(self) -> None:
        self.close_count += 1
        self.opened = False
        self.handlers.clear()

    async def get_services(self, cached: bool = False) -> List[ServiceDescriptor]:
        assert not cached
        self._maybe_fail("services")
        return list(self.services)

    async def request_access(self, service: ServiceDescriptor) -> bool:
        return "access" not in self.fail

    async def get_characteristics(self, service, cached: bool = False):
        assert not cached
        self._maybe_fail("characteristics")
        return list(self.characteristics)

    async def get_descriptors(self, characteristic, cached: bool = False) -> List[str]:
        assert not cached
        self._maybe_fail("descriptors", GattStatus.PROTOCOL_ERROR)
        return ["00002902-0000-1000-8000-00805f9b34fb"]

    async def write_client_configuration(self, characteristic, value: ClientConfiguration) -> None:
        if value is ClientConfiguration.NONE:
            self._maybe_fail("unsubscribe", GattStatus.PROTOCOL_ERROR)
        else:
            self._maybe_fail("subscribe", GattStatus.ACCESS_DENIED)
        self.writes.append((characteristic, value))

    def add_value_handler(self, characteristic, handler) -> None:
        self.handlers.setdefault(characteristic.handle, []).append(handler)

    def remove_value_handler(self, characteristic, handler) -> None:
        handlers = self.handlers.get(characteristic.handle, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self.handlers.pop(characteristic.handle, None)

    def set_on_disconnect(self, callback) -> None:
        self._on_disconnect = callback

    def emit(self, payload: bytes, characteristic: CharacteristicDescriptor = OXIMETRY_CHAR) -> None:
        """Deliver a value notification like the platform would."""
        for handler in list(self.handlers.get(characteristic.handle, ())):
            handler(payload)

    def drop(self) -> None:
        """Simulate the peripheral going away."""
        self.handlers.clear()
        if self._on_disconnect:
            self._on_disconnect()


class FakeUI:
    """Collects user notifications and displayed readings."""

    def __init__(self) -> None:
        self.messages: List[tuple] = []
        self.readings: List[Reading] = []

    def notify_user(self, message: str, severity: Severity) -> None:
        self.messages.append((message, severity))

    def display_reading(self, reading: Reading, at: datetime) -> None:
        self.readings.append(reading)

    @property
    def errors(self) -> List[str]:
        return [m for m, s in self.messages if s is Severity.ERROR]

    @property
    def statuses(self) -> List[str]:
        return [m for m, s in self.messages if s is Severity.STATUS]


class ManualTicker:
    """Replaces the recorder's sleep so tests decide when a tick happens."""

    def __init__(self) -> None:
        self._ticks: asyncio.Queue = asyncio.Queue()

    async def __call__(self, period: float) -> None:
        await self._ticks.get()

    def fire(self) -> None:
        self._ticks.put_nowait(None)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout)


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)
