"""Field-level input checks shared by the workflow handlers."""

from __future__ import annotations

from email_validator import EmailNotValidError, validate_email

ACCOUNT_NAME_MAX_LENGTH = 255


def email_errors(value: str | None) -> list[str]:
    if not value or not value.strip():
        return ["Email is required"]
    try:
        validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError:
        return ["Invalid email format"]
    return []


def required(value: str | None, message: str) -> list[str]:
    return [] if value and value.strip() else [message]


def collect(**fields: list[str]) -> dict[str, list[str]]:
    """Drop fields without messages."""
    return {name: messages for name, messages in fields.items() if messages}
