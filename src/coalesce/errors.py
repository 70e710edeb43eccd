"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Error taxonomy for the request coalescer.
"""

from __future__ import annotations


class CoalesceError(RuntimeError):
    """Base error for coalescer and store failures."""


class StoreUnavailableError(CoalesceError):
    """Raised by stores on connectivity, timeout or internal failure."""

    def __init__(self, operation: str, key: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Store {operation} failed for key '{key}'{detail}")


class CorruptedRecordError(CoalesceError, ValueError):
    """Raised when a stored payload is present but cannot be decoded."""
