"""Encode Python values to the wire ``Value`` format (proto3 JSON mapping)."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Literal
import base64
import math

from docbatch.errors import InvalidArgumentError
from docbatch.field_path import FieldPath
from docbatch.field_value import (
    ArrayRemoveTransform,
    ArrayUnionTransform,
    DeleteField,
    FieldTransform,
    FieldValue,
)
from docbatch.geo_point import GeoPoint
from docbatch.reference import DocumentReference
from docbatch.timestamp import Timestamp
from docbatch.validation import ArgumentId, create_error_description, custom_object_message, validate_range


MAX_DEPTH = 20
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

AllowDeletes = Literal["none", "root", "all"]


class Serializer:
    """Converts user values into wire values.

    Sentinels encode to ``None`` and are skipped by the enclosing map, so a
    map whose entries are all sentinels disappears from the document body.
    An explicitly empty map is kept.
    """

    def encode_value(self, value: Any) -> dict[str, Any] | None:
        if isinstance(value, FieldValue):
            return None
        if value is None:
            return {"nullValue": "NULL_VALUE"}
        if isinstance(value, bool):
            return {"booleanValue": value}
        if isinstance(value, int):
            return {"integerValue": str(value)}
        if isinstance(value, float):
            return {"doubleValue": _encode_double(value)}
        if isinstance(value, str):
            return {"stringValue": value}
        if isinstance(value, (bytes, bytearray)):
            return {"bytesValue": base64.standard_b64encode(bytes(value)).decode("ascii")}
        if isinstance(value, datetime):
            return {"timestampValue": Timestamp.from_datetime(value).to_proto()}
        if isinstance(value, Timestamp):
            return {"timestampValue": value.to_proto()}
        if isinstance(value, GeoPoint):
            return {"geoPointValue": value.to_proto()}
        if isinstance(value, DocumentReference):
            return {"referenceValue": value.formatted_name}
        if isinstance(value, (list, tuple)):
            return {"arrayValue": self.encode_array(value)}
        if isinstance(value, Mapping):
            fields = self.encode_fields(value)
            if not fields and len(value) > 0:
                return None
            return {"mapValue": {"fields": fields}}
        raise InvalidArgumentError(custom_object_message("value", value))

    def encode_fields(self, data: Mapping[str, Any]) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for key, value in data.items():
            encoded = self.encode_value(value)
            if encoded is not None:
                fields[key] = encoded
        return fields

    def encode_array(self, elements: Any) -> dict[str, Any]:
        values = []
        for element in elements:
            encoded = self.encode_value(element)
            if encoded is not None:
                values.append(encoded)
        return {"values": values}


def _encode_double(value: float) -> float | str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return value


def _field_message(path: FieldPath | None) -> str:
    return f" (found in field {path})" if path is not None else ""


def validate_user_input(
    arg: ArgumentId,
    value: Any,
    description: str,
    *,
    allow_deletes: AllowDeletes,
    allow_transforms: bool,
    path: FieldPath | None = None,
    level: int = 0,
    in_array: bool = False,
) -> None:
    """Validate a value tree destined for a document body.

    ``allow_deletes`` controls where FieldValue.delete() may appear: nowhere,
    only as the value of a top-level entry, or at any depth outside arrays.
    """
    error_prefix = create_error_description(arg, description)
    if level > MAX_DEPTH:
        raise InvalidArgumentError(
            f"{error_prefix} Input object is deeper than {MAX_DEPTH} levels or contains a cycle."
        )

    if isinstance(value, Mapping):
        for key, child in value.items():
            if not isinstance(key, str) or not key:
                raise InvalidArgumentError(
                    f"{error_prefix} Field names must be non-empty strings{_field_message(path)}."
                )
            validate_user_input(
                arg,
                child,
                description,
                allow_deletes=allow_deletes,
                allow_transforms=allow_transforms,
                path=path.append(key) if path is not None else FieldPath(key),
                level=level + 1,
                in_array=in_array,
            )
        return

    if isinstance(value, (list, tuple)):
        for element in value:
            validate_user_input(
                arg,
                element,
                description,
                allow_deletes=allow_deletes,
                allow_transforms=allow_transforms,
                path=path,
                level=level + 1,
                in_array=True,
            )
        return

    if isinstance(value, DeleteField):
        if in_array:
            raise InvalidArgumentError(
                f"{error_prefix} {value.method_name}() cannot be used inside of an array{_field_message(path)}."
            )
        if allow_deletes == "none" or (allow_deletes == "root" and level > 0):
            raise InvalidArgumentError(
                f"{error_prefix} {value.method_name}() must appear at the top-level and can only be "
                f"used in update() or set() with merge=True{_field_message(path)}."
            )
        return

    if isinstance(value, FieldTransform):
        if in_array:
            raise InvalidArgumentError(
                f"{error_prefix} {value.method_name}() cannot be used inside of an array{_field_message(path)}."
            )
        if not allow_transforms:
            raise InvalidArgumentError(
                f"{error_prefix} {value.method_name}() can only be used in set(), create() or "
                f"update(){_field_message(path)}."
            )
        validate_transform_payload(arg, value, path)
        return

    if isinstance(value, int) and not isinstance(value, bool):
        validate_range(arg, value, INT64_MIN, INT64_MAX)
        return

    if value is None or isinstance(
        value,
        (bool, float, str, bytes, bytearray, datetime, Timestamp, GeoPoint, DocumentReference),
    ):
        return

    raise InvalidArgumentError(custom_object_message(arg, value, path))


def validate_transform_payload(arg: ArgumentId, transform: FieldTransform, path: FieldPath | None) -> None:
    """Array transform elements must be plain values; sentinels are not allowed inside them."""
    if isinstance(transform, (ArrayUnionTransform, ArrayRemoveTransform)):
        for element in transform.elements:
            validate_user_input(
                arg,
                element,
                f"{transform.method_name}() argument",
                allow_deletes="none",
                allow_transforms=False,
                path=path,
                in_array=True,
            )
