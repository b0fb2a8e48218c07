"""Loud failures for states the reconciler guarantees."""

from __future__ import annotations

from typing import TypeVar

T = TypeVar("T")


class InvariantViolation(RuntimeError):
    """Raised when a value that an earlier transition guarantees is missing."""


def require(value: T | None, message: str) -> T:
    if value is None:
        raise InvariantViolation(message)
    return value
