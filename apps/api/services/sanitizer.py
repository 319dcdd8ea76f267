"""
Response sanitizer.

Free-text intake answers and staff-edited packet content are rendered back
into HTML (dashboard, emails, PDFs), so every string is entity-escaped before
it is persisted. Structure is preserved: list order and non-string scalars
(numbers, booleans, null) pass through unchanged.
"""
import html
from typing import Any, Optional


def sanitize_text(value: str) -> str:
    """Escape markup-significant characters, including the slash that closes tags."""
    return html.escape(value, quote=True).replace("/", "&#x2F;")


def sanitize_value(value: Any) -> Any:
    """Recursively sanitize every string inside lists and mappings."""
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {key: sanitize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item) for item in value]
    return value


def sanitize_responses(responses: dict) -> dict:
    """
    Sanitize an answer mapping before persistence.

    Top-level question keys are escaped as well as values, since keys come
    straight from the client.
    """
    return {sanitize_text(str(key)): sanitize_value(value) for key, value in responses.items()}


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()
