"""
Error types raised by the ingestion pipeline, the CRAN client and the datastore.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class PaketeError(Exception):
    """Base class for all errors raised by pakete."""


class NotFoundError(PaketeError):
    """A pipeline stage had nothing to work on."""

    def __init__(self, details: str):
        super().__init__(f"NotFound: {details}")
        self.details = details


class FetchError(PaketeError):
    """
    The CRAN server could not be queried.

    `details` describes where the failure happened, `response` holds either
    the HTTP status or the original error type and message.
    """

    def __init__(self, details: str, response: Optional[Dict[str, Any]] = None):
        super().__init__(f"CranError: {details}")
        self.details = details
        self.response = response or {}


class DatabaseError(PaketeError):
    """
    A datastore call failed.

    `kind` is the original exception type name and `message` its message.
    """

    def __init__(self, kind: str, message: str, operation: Optional[str] = None):
        label = f"DatabaseError.{operation}" if operation else "DatabaseError"
        super().__init__(f"{label}: {kind}: {message}")
        self.kind = kind
        self.message = message
        self.operation = operation

    @classmethod
    def from_exception(cls, exc: BaseException, operation: Optional[str] = None) -> "DatabaseError":
        return cls(type(exc).__name__, str(exc), operation)
