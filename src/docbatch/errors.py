from __future__ import annotations


class InvalidArgumentError(ValueError):
    """Raised when an argument fails validation before any request is sent."""


class BatchStateError(RuntimeError):
    """Raised when a committed batch is modified."""


class ProtocolViolationError(AssertionError):
    """Raised when the backend response does not match the submitted writes."""
