from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from docbatch.errors import InvalidArgumentError
from docbatch.field_path import FieldPath, validate_field_path
from docbatch.field_value import FieldTransform, LeafKind, classify_value
from docbatch.reference import DocumentReference
from docbatch.serializer import Serializer, validate_transform_payload, validate_user_input
from docbatch.timestamp import Timestamp
from docbatch.validation import ArgumentId, create_error_description, custom_object_message, is_plain_object


UpdateMap = Mapping[FieldPath, Any]


@dataclass(frozen=True)
class DocumentSnapshot:
    """Plain-value projection of user input; sentinel values are left out."""

    ref: DocumentReference
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_object(
        cls,
        ref: DocumentReference,
        data: Mapping[str, Any],
        serializer: Serializer | None = None,
    ) -> DocumentSnapshot:
        encoder = serializer or Serializer()
        return cls(ref=ref, fields=encoder.encode_fields(data))

    @classmethod
    def from_update_map(
        cls,
        ref: DocumentReference,
        update_map: UpdateMap,
        serializer: Serializer | None = None,
    ) -> DocumentSnapshot:
        tree: dict[str, Any] = {}
        for path, value in update_map.items():
            if classify_value(value) is not LeafKind.PLAIN:
                continue
            node = tree
            for segment in path.segments[:-1]:
                node = node.setdefault(segment, {})
            node[path.segments[-1]] = value
        encoder = serializer or Serializer()
        return cls(ref=ref, fields=encoder.encode_fields(tree))

    @property
    def is_empty(self) -> bool:
        return not self.fields

    def to_proto(self) -> dict[str, Any]:
        return {"update": {"name": self.ref.formatted_name, "fields": dict(self.fields)}}


@dataclass(frozen=True)
class DocumentMask:
    """Field paths the backend treats as authoritative for a merge or update."""

    field_paths: tuple[FieldPath, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "field_paths", tuple(sorted(self.field_paths)))

    @classmethod
    def from_field_mask(cls, field_mask: Sequence[str | FieldPath]) -> DocumentMask:
        paths = []
        for index, value in enumerate(field_mask):
            validate_field_path(index, value)
            paths.append(FieldPath.from_argument(value))
        return cls(tuple(paths))

    @classmethod
    def from_top_level_keys(cls, data: Mapping[str, Any]) -> DocumentMask:
        return cls(
            tuple(
                FieldPath(key)
                for key, value in data.items()
                if classify_value(value) is not LeafKind.TRANSFORM
            )
        )

    @classmethod
    def from_object(cls, data: Mapping[str, Any]) -> DocumentMask:
        """Collect every leaf path; deletes and empty maps are leaves, transforms are skipped."""
        paths: list[FieldPath] = []
        _collect_leaf_paths(data, None, paths)
        return cls(tuple(paths))

    @classmethod
    def from_update_map(cls, update_map: UpdateMap) -> DocumentMask:
        return cls(
            tuple(
                path
                for path, value in update_map.items()
                if classify_value(value) is not LeafKind.TRANSFORM
            )
        )

    @property
    def is_empty(self) -> bool:
        return not self.field_paths

    def remove_fields(self, paths: Iterable[FieldPath]) -> DocumentMask:
        removed = set(paths)
        return DocumentMask(tuple(path for path in self.field_paths if path not in removed))

    def apply_to(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Project ``data`` down to the values under the mask's paths."""
        remaining = set(self.field_paths)
        projected = self._project(data, None, remaining)
        if remaining:
            missing = min(remaining)
            raise InvalidArgumentError(f'Input data is missing for field "{missing}".')
        return projected

    def _project(
        self,
        data: Mapping[str, Any],
        current: FieldPath | None,
        remaining: set[FieldPath],
    ) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key, value in data.items():
            path = current.append(key) if current is not None else FieldPath(key)
            if any(mask_path.is_prefix_of(path) for mask_path in self.field_paths):
                result[key] = value
                remaining.discard(path)
            elif is_plain_object(value) and any(path.is_prefix_of(mask_path) for mask_path in self.field_paths):
                result[key] = self._project(value, path, remaining)
        return result

    def to_proto(self) -> dict[str, Any]:
        return {"fieldPaths": [path.format_string() for path in self.field_paths]}


def _collect_leaf_paths(data: Mapping[str, Any], current: FieldPath | None, out: list[FieldPath]) -> None:
    for key, value in data.items():
        path = current.append(key) if current is not None else FieldPath(key)
        kind = classify_value(value)
        if kind is LeafKind.TRANSFORM:
            continue
        if kind is LeafKind.PLAIN and is_plain_object(value) and len(value) > 0:
            _collect_leaf_paths(value, path, out)
        else:
            out.append(path)


@dataclass(frozen=True)
class DocumentTransform:
    """Ordered server-side transforms extracted from sentinel values."""

    ref: DocumentReference
    transforms: tuple[tuple[FieldPath, FieldTransform], ...] = ()

    @classmethod
    def from_object(cls, ref: DocumentReference, data: Mapping[str, Any]) -> DocumentTransform:
        transforms: list[tuple[FieldPath, FieldTransform]] = []
        for key, value in data.items():
            _extract_transforms(value, FieldPath(key), transforms)
        return cls(ref=ref, transforms=tuple(transforms))

    @classmethod
    def from_update_map(cls, ref: DocumentReference, update_map: UpdateMap) -> DocumentTransform:
        transforms: list[tuple[FieldPath, FieldTransform]] = []
        for path, value in update_map.items():
            _extract_transforms(value, path, transforms)
        return cls(ref=ref, transforms=tuple(transforms))

    @property
    def fields(self) -> list[FieldPath]:
        return [path for path, _ in self.transforms]

    @property
    def is_empty(self) -> bool:
        return not self.transforms

    def validate(self) -> None:
        for path, transform in self.transforms:
            validate_transform_payload("data", transform, path)

    def to_proto(self, serializer: Serializer | None = None) -> dict[str, Any] | None:
        if self.is_empty:
            return None
        encoder = serializer or Serializer()
        return {
            "transform": {
                "document": self.ref.formatted_name,
                "fieldTransforms": [transform.to_proto(encoder, path) for path, transform in self.transforms],
            }
        }


def _extract_transforms(
    value: Any,
    path: FieldPath,
    out: list[tuple[FieldPath, FieldTransform]],
) -> None:
    if isinstance(value, FieldTransform):
        out.append((path, value))
    elif is_plain_object(value):
        for key, child in value.items():
            _extract_transforms(child, path.append(key), out)


@dataclass(frozen=True)
class Precondition:
    """Existence or last-update-time constraint; at most one may be set."""

    exists: bool | None = None
    last_update_time: Timestamp | None = None

    def __post_init__(self) -> None:
        if self.exists is not None and self.last_update_time is not None:
            raise InvalidArgumentError("A precondition can only contain one condition.")

    @classmethod
    def from_argument(cls, value: Precondition | Mapping[str, Any] | None) -> Precondition:
        if value is None:
            return cls()
        if isinstance(value, Precondition):
            return value
        return cls(exists=value.get("exists"), last_update_time=value.get("last_update_time"))

    @property
    def is_empty(self) -> bool:
        return self.exists is None and self.last_update_time is None

    def to_proto(self) -> dict[str, Any] | None:
        if self.exists is not None:
            return {"exists": self.exists}
        if self.last_update_time is not None:
            return {"updateTime": self.last_update_time.to_proto()}
        return None


def validate_document_data(arg: ArgumentId, data: Any, *, allow_deletes: bool) -> None:
    """Validate a nested mapping used as a full document or merge input."""
    if not is_plain_object(data):
        raise InvalidArgumentError(custom_object_message(arg, data))
    for key, value in data.items():
        if not isinstance(key, str) or not key:
            raise InvalidArgumentError(
                f"{create_error_description(arg, 'document')} Field names must be non-empty strings."
            )
        validate_user_input(
            arg,
            value,
            "document",
            allow_deletes="all" if allow_deletes else "none",
            allow_transforms=True,
            path=FieldPath(key),
        )


def validate_field_value(arg: ArgumentId, value: Any, path: FieldPath) -> None:
    validate_user_input(
        arg,
        value,
        "field value",
        allow_deletes="root",
        allow_transforms=True,
        path=path,
    )


def validate_update_map(arg: ArgumentId, data: Any) -> None:
    """Validate a flat mapping of field paths to values used by update()."""
    if not is_plain_object(data):
        raise InvalidArgumentError(custom_object_message(arg, data))
    for key, value in data.items():
        validate_field_path(arg, key)
        validate_user_input(
            arg,
            value,
            "document",
            allow_deletes="root",
            allow_transforms=True,
            path=FieldPath.from_argument(key),
        )
    if len(data) == 0:
        raise InvalidArgumentError("At least one field must be updated.")


def validate_update(
    arg: ArgumentId,
    field_paths: Iterable[FieldPath],
    *,
    description: str = "update map",
) -> None:
    """Reject duplicate or nested field paths such as ``"a"`` together with ``"a.b"``."""
    fields = sorted(field_paths)
    for index in range(1, len(fields)):
        if fields[index - 1].is_prefix_of(fields[index]):
            raise InvalidArgumentError(
                f"{create_error_description(arg, description)} "
                f'Field "{fields[index - 1]}" was specified multiple times.'
            )
