"""
Error taxonomy for the oximeter client.

Every failure raised by a component carries a ``kind`` enum member so
callers can branch on the cause without parsing messages.
"""

from enum import Enum
from typing import Optional


class GattStatus(Enum):
    """Outcome of a remote GATT operation that did not succeed."""

    UNREACHABLE = "unreachable"
    PROTOCOL_ERROR = "protocol error"
    ACCESS_DENIED = "access denied"
    DEVICE_NOT_AVAILABLE = "device not available"


class LifecycleErrorKind(Enum):
    NO_DEVICE_SELECTED = "no device selected"
    RADIO_UNAVAILABLE = "radio unavailable"
    CONNECT_FAILED = "connect failed"
    RESET_FAILED = "reset failed"
    ABANDONED = "abandoned"


class DiscoveryErrorKind(Enum):
    SERVICES_UNREACHABLE = "services unreachable"
    SERVICE_NOT_FOUND = "service not found"
    ACCESS_DENIED = "access denied"
    CHARACTERISTICS_UNREACHABLE = "characteristics unreachable"
    CHARACTERISTIC_NOT_FOUND = "characteristic not found"
    DESCRIPTORS_UNREACHABLE = "descriptors unreachable"


class SubscribeErrorKind(Enum):
    UNSUPPORTED_CHARACTERISTIC = "unsupported characteristic"
    UNAUTHORIZED = "unauthorized"
    REMOTE_REJECTED = "remote rejected"


class DecodeErrorKind(Enum):
    TOO_SHORT = "too short"


class RecordingErrorKind(Enum):
    ALREADY_RECORDING = "already recording"
    WRITE_FAILED = "write failed"


class OxiLinkError(Exception):
    """Base class for all errors raised by oxilink."""

    def __init__(self, kind: Enum, message: Optional[str] = None) -> None:
        self.kind = kind
        self.message = message or kind.value.capitalize()
        super().__init__(self.message)


class GattCommunicationError(OxiLinkError):
    """A remote GATT operation failed at the link level."""

    def __init__(self, status: GattStatus, message: Optional[str] = None) -> None:
        super().__init__(status, message)

    @property
    def status(self) -> GattStatus:
        return self.kind  # type: ignore[return-value]


class LifecycleError(OxiLinkError):
    """Connecting or resetting the device session failed."""


class DiscoveryError(OxiLinkError):
    """The vendor service or characteristic could not be resolved."""


class SubscribeError(OxiLinkError):
    """Enabling or disabling value notifications failed."""


class DecodeError(OxiLinkError):
    """A notification payload could not be decoded."""


class RecordingError(OxiLinkError):
    """Recording readings to disk failed."""
