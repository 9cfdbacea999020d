"""
Decoders for raw characteristic payloads.

Heart rate follows the standard Heart Rate Measurement (0x2A37) layout: a
flags byte whose bit 0 selects a uint16 value, followed by the value in
little-endian order. Airflow is a bare little-endian uint16.
"""

import struct
from collections.abc import Callable

from lungua.domain.errors import PayloadError

PayloadParser = Callable[[bytes], float]

_HR_VALUE_16BIT = 0x01


def parse_heart_rate(payload: bytes) -> float:
    """Decode a heart rate measurement notification into beats per minute."""
    try:
        flags = payload[0]
        if flags & _HR_VALUE_16BIT:
            (value,) = struct.unpack_from("<H", payload, 1)
        else:
            (value,) = struct.unpack_from("<B", payload, 1)
    except (IndexError, struct.error) as e:
        raise PayloadError(f"Malformed heart rate payload: {bytes(payload).hex()}") from e
    return float(value)


def parse_airflow(payload: bytes) -> float:
    """Decode an inhaler airflow notification (L/min or raw sensor units)."""
    try:
        (value,) = struct.unpack_from("<H", payload, 0)
    except struct.error as e:
        raise PayloadError(f"Malformed airflow payload: {bytes(payload).hex()}") from e
    return float(value)
