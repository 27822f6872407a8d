import re
from collections import OrderedDict

EMAIL_REGEX = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def normalize_email(value: str) -> str:
    return value.strip().lower()


def is_valid_email(email: str | None) -> bool:
    if not email:
        return False
    return bool(EMAIL_REGEX.match(email.strip()))


def is_allowed_source_url(url: str | None, pattern: str) -> bool:
    if not url:
        return False
    return bool(re.match(pattern, url.strip()))


def prepare_emails(raw: list[str]) -> list[tuple[str, bool]]:
    """Normalize, dedupe (first seen wins) and tag each email with its syntax check."""
    unique = OrderedDict.fromkeys(normalize_email(str(value)) for value in raw)
    return [(email, is_valid_email(email)) for email in unique]


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))
