"""AMQP header values and lookup.

Header tables arrive from the broker as typed values. `HeaderValue` is a closed
tagged union over the kinds the consumer knows how to display, with a catch-all
OTHER kind; `render()` is the only place that dispatches on the tag.
"""
from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class HeaderKind(str, Enum):
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    INT32 = "INT32"
    INT64 = "INT64"
    FLOAT = "FLOAT"
    DOUBLE = "DOUBLE"
    TIMESTAMP = "TIMESTAMP"
    OTHER = "OTHER"


@dataclass(frozen=True)
class HeaderValue:
    """One typed header table entry value."""

    kind: HeaderKind
    value: Any

    @classmethod
    def from_raw(cls, value: Any) -> "HeaderValue":
        """Classify a decoded header value as delivered by the AMQP client."""
        if isinstance(value, HeaderValue):
            return value
        if isinstance(value, (str, bytes, bytearray, memoryview)):
            return cls(HeaderKind.STRING, value)
        # bool before int: bool is an int subclass
        if isinstance(value, bool):
            return cls(HeaderKind.BOOLEAN, value)
        if isinstance(value, int):
            if _INT32_MIN <= value <= _INT32_MAX:
                return cls(HeaderKind.INT32, value)
            return cls(HeaderKind.INT64, value)
        if isinstance(value, float):
            return cls(HeaderKind.DOUBLE, value)
        if isinstance(value, datetime):
            return cls(HeaderKind.TIMESTAMP, value)
        return cls(HeaderKind.OTHER, value)

    def render(self) -> str:
        kind = self.kind
        if kind is HeaderKind.STRING:
            if isinstance(self.value, (bytes, bytearray, memoryview)):
                return bytes(self.value).decode("utf-8", errors="replace")
            return str(self.value)
        if kind is HeaderKind.BOOLEAN:
            return "true" if self.value else "false"
        if kind in (HeaderKind.INT32, HeaderKind.INT64):
            return str(int(self.value))
        if kind in (HeaderKind.FLOAT, HeaderKind.DOUBLE):
            return _format_float(float(self.value))
        if kind is HeaderKind.TIMESTAMP:
            return str(_epoch_seconds(self.value))
        return repr(self.value)


def _format_float(value: float) -> str:
    """Plain decimal notation without exponent; whole numbers drop the fraction (2.0 -> "2")."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        text = str(int(value))
        return "-0" if text == "0" and math.copysign(1.0, value) < 0 else text
    return format(Decimal(repr(value)), "f")


def _epoch_seconds(value: datetime | int | float) -> int:
    if isinstance(value, datetime):
        # naive datetimes are UTC on the wire
        return calendar.timegm(value.utctimetuple())
    return int(value)


def to_header_table(raw: Mapping[str, Any] | None) -> dict[str, HeaderValue] | None:
    """Wrap every value of a decoded header table; None stays None."""
    if raw is None:
        return None
    return {str(k): HeaderValue.from_raw(v) for k, v in raw.items()}


def get_header_value_if_exists(
    headers: Mapping[str, HeaderValue | Any] | None,
    key: str,
) -> str | None:
    """Return the display string of header `key`, or None if headers or key are absent."""
    if headers is None:
        return None
    for header_key, value in headers.items():
        if header_key == key:
            return HeaderValue.from_raw(value).render()
    return None
