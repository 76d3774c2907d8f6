"""Errors raised by the transcript core and its collaborators."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for chat gateway errors."""


class ValidationError(GatewayError, ValueError):
    """Raised for malformed request fields, before any storage or inference access."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class InferenceError(GatewayError):
    """Raised when the inference backend fails or times out."""


class StorageError(GatewayError):
    """Raised when the key-value store cannot be reached."""
