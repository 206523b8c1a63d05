from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from docbatch.errors import InvalidArgumentError
from docbatch.validation import ArgumentId, create_error_description


def database_name(project_id: str, database_id: str) -> str:
    if not project_id.strip():
        raise InvalidArgumentError("project_id must not be empty.")
    if not database_id.strip():
        raise InvalidArgumentError("database_id must not be empty.")
    return f"projects/{project_id.strip()}/databases/{database_id.strip()}"


@dataclass(frozen=True)
class DocumentReference:
    """Location of one document: the database resource name plus a slash path."""

    database: str
    path: str

    def __post_init__(self) -> None:
        parts = [part for part in self.path.split("/") if part]
        if len(parts) == 0 or len(parts) % 2 != 0:
            raise InvalidArgumentError(f"Document path must have even segments: {self.path}")
        object.__setattr__(self, "path", "/".join(parts))

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def formatted_name(self) -> str:
        return f"{self.database}/documents/{self.path}"


def validate_document_reference(arg: ArgumentId, value: Any) -> None:
    if not isinstance(value, DocumentReference):
        raise InvalidArgumentError(f"{create_error_description(arg, 'DocumentReference')} Input is not a DocumentReference.")
