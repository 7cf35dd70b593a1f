"""
Data types shared by the oximeter client components.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol


@dataclass(frozen=True)
class ServiceDescriptor:
    """GATT service as seen during discovery."""

    uuid: str
    name: str
    handle: int = 0


@dataclass(frozen=True)
class CharacteristicDescriptor:
    """GATT characteristic with the capability flags used for subscribing."""

    uuid: str
    name: str
    handle: int = 0
    supports_notify: bool = False
    supports_indicate: bool = False


class ClientConfiguration(Enum):
    """Values of the Client Characteristic Configuration descriptor."""

    NONE = 0x0000
    NOTIFY = 0x0001
    INDICATE = 0x0002


class SubscriptionState(Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED = "subscribed"


class Severity(Enum):
    STATUS = "status"
    ERROR = "error"


@dataclass(frozen=True)
class Reading:
    """One decoded oximeter sample.

    A value of 0 means the sensor reported no signal on that channel.
    """

    heart_rate: int
    spo2: int
    timestamp: datetime

    @property
    def signal_lost(self) -> bool:
        return self.heart_rate == 0 or self.spo2 == 0

    def as_record(self) -> str:
        """Format as a recording line: ``SpO2;HeartRate``."""
        return f"{self.spo2};{self.heart_rate}"


class ReadingBoard:
    """Holds the latest reading, overwritten on every notification."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Optional[Reading] = None

    @property
    def latest(self) -> Optional[Reading]:
        with self._lock:
            return self._latest

    def publish(self, reading: Reading) -> None:
        with self._lock:
            self._latest = reading

    def clear(self) -> None:
        with self._lock:
            self._latest = None


class UserInterface(Protocol):
    """Feedback surface the core reports to."""

    def notify_user(self, message: str, severity: Severity) -> None: ...

    def display_reading(self, reading: Reading, at: datetime) -> None: ...
