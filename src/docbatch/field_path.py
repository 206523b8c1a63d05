from __future__ import annotations

from dataclasses import dataclass
from typing import Any
import re

from docbatch.errors import InvalidArgumentError
from docbatch.validation import ArgumentId, create_error_description, validate_argument_count, validate_string


SIMPLE_SEGMENT_PATTERN = re.compile(r"^[_a-zA-Z][_a-zA-Z0-9]*$")
FORBIDDEN_CHARACTERS_PATTERN = re.compile(r"[~*/\[\]]")


@dataclass(frozen=True, order=True, init=False)
class FieldPath:
    """Ordered, immutable sequence of field names addressing a (nested) field.

    Ordering is lexicographic over the segments, so a path sorts directly
    before every path it is a prefix of.
    """

    segments: tuple[str, ...]

    def __init__(self, *segments: str) -> None:
        validate_argument_count("FieldPath", len(segments), min_count=1)
        for index, segment in enumerate(segments):
            validate_string(index, segment)
            if not segment:
                raise InvalidArgumentError(
                    f"{create_error_description(index, 'field name')} Field names must not be empty."
                )
        object.__setattr__(self, "segments", tuple(segments))

    @classmethod
    def from_dotted_string(cls, path: str) -> FieldPath:
        validate_field_path("path", path)
        return cls(*path.split("."))

    @classmethod
    def from_argument(cls, value: str | FieldPath) -> FieldPath:
        if isinstance(value, FieldPath):
            return value
        return cls.from_dotted_string(value)

    def append(self, *segments: str) -> FieldPath:
        return FieldPath(*self.segments, *segments)

    def compare_to(self, other: FieldPath) -> int:
        if self.segments < other.segments:
            return -1
        if self.segments > other.segments:
            return 1
        return 0

    def is_prefix_of(self, other: FieldPath) -> bool:
        if len(self.segments) > len(other.segments):
            return False
        return other.segments[: len(self.segments)] == self.segments

    def format_string(self) -> str:
        """Canonical server representation; non-identifier names are backtick-quoted."""
        return ".".join(_format_segment(segment) for segment in self.segments)

    def __str__(self) -> str:
        return self.format_string()


def _format_segment(segment: str) -> str:
    if SIMPLE_SEGMENT_PATTERN.match(segment):
        return segment
    escaped = segment.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def validate_field_path(arg: ArgumentId, value: Any) -> None:
    """Accept a FieldPath or a dotted string such as ``"address.city"``."""
    if isinstance(value, FieldPath):
        return
    if not isinstance(value, str):
        raise InvalidArgumentError(
            f"{create_error_description(arg, 'field path')} "
            "Paths can only be specified as strings or via a FieldPath object."
        )
    if not value or FORBIDDEN_CHARACTERS_PATTERN.search(value):
        raise InvalidArgumentError(
            f"{create_error_description(arg, 'field path')} "
            'Paths can\'t be empty and must not contain "*~/[]".'
        )
    if value.startswith(".") or value.endswith(".") or ".." in value:
        raise InvalidArgumentError(
            f"{create_error_description(arg, 'field path')} "
            'Paths must not start or end with "." or contain "..".'
        )
