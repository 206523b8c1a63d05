from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import re
import time

from docbatch.errors import InvalidArgumentError
from docbatch.validation import validate_integer


MIN_SECONDS = -62135596800  # 0001-01-01T00:00:00Z
MAX_SECONDS = 253402300799  # 9999-12-31T23:59:59Z
MAX_NANOSECONDS = 999_999_999

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

RFC3339_PATTERN = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d{1,9}))?"
    r"(?P<offset>Z|[+-]\d{2}:\d{2})$"
)


@dataclass(frozen=True, order=True)
class Timestamp:
    """Point in time with nanosecond precision, independent of any timezone."""

    seconds: int
    nanoseconds: int = 0

    def __post_init__(self) -> None:
        validate_integer("seconds", self.seconds, min_value=MIN_SECONDS, max_value=MAX_SECONDS)
        validate_integer("nanoseconds", self.nanoseconds, min_value=0, max_value=MAX_NANOSECONDS)

    @classmethod
    def now(cls) -> Timestamp:
        return cls.from_epoch_nanoseconds(time.time_ns())

    @classmethod
    def from_epoch_nanoseconds(cls, value: int) -> Timestamp:
        seconds, nanoseconds = divmod(value, 1_000_000_000)
        return cls(seconds=seconds, nanoseconds=nanoseconds)

    @classmethod
    def from_datetime(cls, value: datetime) -> Timestamp:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - EPOCH
        seconds = delta.days * 86_400 + delta.seconds
        return cls(seconds=seconds, nanoseconds=delta.microseconds * 1_000)

    @classmethod
    def from_proto(cls, value: str) -> Timestamp:
        """Parse the RFC 3339 wire form, e.g. ``2026-02-12T00:00:00.123456789Z``."""
        matched = RFC3339_PATTERN.match(value) if isinstance(value, str) else None
        if matched is None:
            raise InvalidArgumentError(f"Invalid timestamp format: {value!r}")
        offset = matched.group("offset")
        if offset == "Z":
            offset = "+00:00"
        parsed = datetime.fromisoformat(matched.group("base") + offset)
        fraction = (matched.group("fraction") or "").ljust(9, "0")
        return cls(seconds=cls.from_datetime(parsed).seconds, nanoseconds=int(fraction))

    def to_datetime(self) -> datetime:
        """Convert to an aware UTC datetime, truncating to microseconds."""
        return EPOCH + timedelta(seconds=self.seconds, microseconds=self.nanoseconds // 1_000)

    def to_proto(self) -> str:
        moment = EPOCH + timedelta(seconds=self.seconds)
        base = (
            f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
            f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
        )
        if self.nanoseconds == 0:
            return f"{base}Z"
        fraction = f"{self.nanoseconds:09d}".rstrip("0")
        return f"{base}.{fraction}Z"
