"""Centralized error codes, structured errors, and explicit outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Mapping, TypeVar

__all__ = [
    "VALIDATION_ERROR",
    "NOT_FOUND",
    "ALREADY_REGISTERED",
    "CREDENTIAL_MISSING",
    "REAUTH_REQUIRED",
    "AUTH_DENIED",
    "REMOTE_ERROR",
    "CONFIG_ERROR",
    "INTERNAL_ERROR",
    "GENERIC_INTERNAL_MESSAGE",
    "BloggerMcpError",
    "Outcome",
    "error_payload",
    "normalize_error",
]

VALIDATION_ERROR = "VALIDATION_ERROR"
NOT_FOUND = "NOT_FOUND"
ALREADY_REGISTERED = "ALREADY_REGISTERED"
CREDENTIAL_MISSING = "CREDENTIAL_MISSING"
REAUTH_REQUIRED = "REAUTH_REQUIRED"
AUTH_DENIED = "AUTH_DENIED"
REMOTE_ERROR = "REMOTE_ERROR"
CONFIG_ERROR = "CONFIG_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"

GENERIC_INTERNAL_MESSAGE = "Unexpected internal error"

T = TypeVar("T")


@dataclass(slots=True)
class BloggerMcpError(Exception):
    """Domain-specific exception carrying an error code and message."""

    code: str
    message: str
    details: Mapping[str, Any] | None = None

    def __str__(self) -> str:  # pragma: no cover - delegation to message
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return error_payload(self.code, self.message, details=self.details)


def error_payload(code: str, message: str, *, details: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Build a structured error payload used in tool responses."""

    payload: dict[str, Any] = {
        "code": code,
        "message": message,
    }
    if details:
        payload["details"] = dict(details)
    return payload


def normalize_error(exc: BaseException) -> BloggerMcpError:
    """Convert any raised value into a structured error.

    Structured errors are returned verbatim. Other exceptions keep their
    message under ``INTERNAL_ERROR``; exceptions without a message get a
    generic one.
    """

    if isinstance(exc, BloggerMcpError):
        return exc
    message = str(exc).strip()
    if not message:
        return BloggerMcpError(
            INTERNAL_ERROR,
            GENERIC_INTERNAL_MESSAGE,
            details={"exception": type(exc).__name__},
        )
    return BloggerMcpError(INTERNAL_ERROR, message, details={"exception": type(exc).__name__})


@dataclass(slots=True, frozen=True)
class Outcome(Generic[T]):
    """Explicit success/error result returned at public component boundaries."""

    value: T | None = None
    error: BloggerMcpError | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "Outcome[T]":
        return cls(value=value, error=None)

    @classmethod
    def failure(cls, error: BloggerMcpError) -> "Outcome[T]":
        return cls(value=None, error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T | None:
        """Return the value or raise the carried error."""

        if self.error is not None:
            raise self.error
        return self.value
