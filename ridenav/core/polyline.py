"""Encode and decode Google's polyline algorithm format.

Coordinates are scaled by 1e5, delta-encoded against the previous point,
zig-zag folded and written as 5-bit groups (least significant first) with a
continuation bit, each group offset by 63 into printable ASCII.
"""

import logging
import math
from typing import Iterable

from ridenav.core.errors import DecodeError
from ridenav.core.models import Coordinate

logger = logging.getLogger(__name__)

PRECISION = 1e5
_CHUNK_MASK = 0x1F
_CONTINUATION = 0x20
_OFFSET = 63


def _scale(value: float) -> int:
    """Scale to integer units, rounding half away from zero."""
    scaled = math.floor(abs(value) * PRECISION + 0.5)
    return -scaled if value < 0 else scaled


def _encode_value(value: int, out: list[str]) -> None:
    value = ~(value << 1) if value < 0 else value << 1
    while value >= _CONTINUATION:
        out.append(chr((_CONTINUATION | (value & _CHUNK_MASK)) + _OFFSET))
        value >>= 5
    out.append(chr(value + _OFFSET))


def encode(points: Iterable[Coordinate]) -> str:
    out: list[str] = []
    prev_lat = 0
    prev_lon = 0
    for point in points:
        lat = _scale(point.lat)
        lon = _scale(point.lon)
        _encode_value(lat - prev_lat, out)
        _encode_value(lon - prev_lon, out)
        prev_lat, prev_lon = lat, lon
    return "".join(out)


def _read_value(encoded: str, index: int) -> tuple[int, int] | None:
    """Read one signed delta starting at ``index``.

    Returns ``(delta, next_index)``, or None if the string ends before the
    final chunk of the value.
    """
    shift = 0
    result = 0
    length = len(encoded)
    while True:
        if index >= length:
            return None
        b = ord(encoded[index]) - _OFFSET
        index += 1
        result |= (b & _CHUNK_MASK) << shift
        shift += 5
        if b < _CONTINUATION:
            break
    delta = ~(result >> 1) if result & 1 else result >> 1
    return delta, index


def decode(encoded: str) -> list[Coordinate]:
    """Decode a polyline string into coordinates.

    Raises DecodeError if the input is truncated mid-value; the error's
    ``partial`` attribute holds every point decoded before the fault.
    """
    points: list[Coordinate] = []
    index = 0
    lat = 0
    lon = 0
    while index < len(encoded):
        start = index
        lat_part = _read_value(encoded, index)
        if lat_part is None:
            raise DecodeError("Polyline ended inside a latitude value", points, start)
        dlat, index = lat_part
        lon_part = _read_value(encoded, index)
        if lon_part is None:
            raise DecodeError("Polyline ended before the matching longitude", points, start)
        dlon, index = lon_part
        lat += dlat
        lon += dlon
        points.append(Coordinate(lat / PRECISION, lon / PRECISION))
    return points


def decode_lenient(encoded: str) -> list[Coordinate]:
    """Decode, falling back to the points read before a truncation."""
    try:
        return decode(encoded)
    except DecodeError as e:
        logger.warning(
            "Truncated polyline at char %d, keeping %d points", e.position, len(e.partial),
        )
        return e.partial
