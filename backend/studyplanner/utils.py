# backend/studyplanner/utils.py
import re
from datetime import datetime, timezone
from typing import Optional

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def utcnow() -> datetime:
    """Naive UTC now; the database stores naive UTC datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_email_valid(email: Optional[str]) -> bool:
    if not email:
        return False
    return EMAIL_RE.match(email) is not None


def is_password_valid(pw: Optional[str]) -> bool:
    # any non-blank password is accepted
    return bool(pw and pw.strip())


def parse_date(value) -> Optional[datetime]:
    """
    Parse an ISO date or datetime string into a naive UTC datetime.
    Returns None for empty or unparseable values.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
