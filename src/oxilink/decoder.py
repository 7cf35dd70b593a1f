"""
Decoder for the continuous oximetry notification payload.

Byte 7 carries SpO2 (0-100) and bytes 8-9 carry the heart rate (0-320),
both averaged over four beats by the device. The device reports a detached
sensor with the codes 127 (SpO2) and 511 (heart rate); those are normalized
to 0 so that callers can treat 0 as "check connection".
"""

import struct
from datetime import datetime
from typing import Optional

from .core import (
    HEART_RATE_DISCONNECTED,
    HEART_RATE_MAX,
    HEART_RATE_OFFSET,
    PAYLOAD_MIN_LENGTH,
    SPO2_DISCONNECTED,
    SPO2_MAX,
    SPO2_OFFSET,
)
from .errors import DecodeError, DecodeErrorKind
from .models import Reading


def _normalize(value: int, disconnected: int, maximum: int) -> int:
    if value == disconnected or value < 0 or value > maximum:
        return 0
    return value


def decode(buffer: bytes, timestamp: Optional[datetime] = None) -> Reading:
    """Decode a notification payload into a reading.

    Args:
        buffer: Raw characteristic value, at least 10 bytes
        timestamp: Time of receipt (defaults to now)

    Returns:
        Reading with sentinel values normalized to 0

    Raises:
        DecodeError: If the buffer is too short
    """
    if buffer is None or len(buffer) < PAYLOAD_MIN_LENGTH:
        length = 0 if buffer is None else len(buffer)
        raise DecodeError(
            DecodeErrorKind.TOO_SHORT,
            f"Payload too short: {length} bytes (need {PAYLOAD_MIN_LENGTH})",
        )

    (raw_heart_rate,) = struct.unpack_from("<h", buffer, HEART_RATE_OFFSET)
    raw_spo2 = buffer[SPO2_OFFSET]

    return Reading(
        heart_rate=_normalize(raw_heart_rate, HEART_RATE_DISCONNECTED, HEART_RATE_MAX),
        spo2=_normalize(raw_spo2, SPO2_DISCONNECTED, SPO2_MAX),
        timestamp=timestamp or datetime.now(),
    )
