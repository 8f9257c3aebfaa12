from datetime import datetime, timezone
from typing import Optional
from nanoid import generate

ID_ALPHABET = '0123456789abcdefghijklmnopqrstuvwxyz'
ID_SIZE = 25
ID_PATTERN = r'^[0-9a-z]+$'


def new_id() -> str:
    """Collision-resistant lowercase alphanumeric id."""
    return generate(ID_ALPHABET, ID_SIZE)

def utcnow() -> datetime:
    """Naive UTC now; every stored timestamp is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def parse_datetime(value) -> Optional[datetime]:
    """Parses an ISO-8601 string (or passes a datetime through).
    Returns None for anything that does not parse.
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        return None

def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600

def round1(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round(value, 1)
