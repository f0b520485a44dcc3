import secrets
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back for DateTime columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def generate_token(nbytes: int = 32) -> str:
    """Produces an unguessable URL-safe token from the OS CSPRNG."""
    return secrets.token_urlsafe(nbytes)


def normalize_email(email: str) -> str:
    return email.strip().lower()
