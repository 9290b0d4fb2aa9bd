"""Typed outcomes returned by identity workflows.

Handlers never raise for business outcomes. They return one of the variants
below and the HTTP layer maps each variant to a status code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Success(Generic[T]):
    value: T = None  # type: ignore[assignment]


@dataclass(slots=True, frozen=True)
class ValidationFailure:
    """Malformed input; field-level messages are safe to return verbatim."""

    errors: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def single(cls, field_name: str, message: str) -> "ValidationFailure":
        return cls(errors={field_name: [message]})

    @classmethod
    def many(cls, field_name: str, messages: list[str]) -> "ValidationFailure":
        return cls(errors={field_name: list(messages)})


@dataclass(slots=True, frozen=True)
class AuthFailure:
    """Wrong credentials or an invalid/expired token."""

    reason: str


@dataclass(slots=True, frozen=True)
class ConflictFailure:
    """Duplicate or already-consumed resource."""

    field: str
    message: str


@dataclass(slots=True, frozen=True)
class NotFoundFailure:
    message: str


Failure = Union[ValidationFailure, AuthFailure, ConflictFailure, NotFoundFailure]
Result = Union[Success[T], Failure]
