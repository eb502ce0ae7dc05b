import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from release_engine.errors import InvalidArgumentError, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Caller identity handed to mutating operations."""

    user_id: str
    email: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


def coerce_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise InvalidArgumentError(f"Invalid UUID: {value!r}") from exc


def as_utc(dt: datetime | None) -> datetime | None:
    """Ensure datetime is timezone-aware (UTC). SQLite doesn't preserve tz info."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def isoformat(dt: datetime | None) -> str | None:
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


def ensure_owner(owner_id: str, actor: Actor | None) -> None:
    if actor is None or actor.is_admin:
        return
    if str(owner_id) != str(actor.user_id):
        raise UnauthorizedError("Forbidden")


def percent(part: int, whole: int) -> int | None:
    """Integer percentage rounded half-up; ``None`` when ``whole`` is zero."""
    if whole <= 0:
        return None
    return (part * 200 + whole) // (whole * 2)


def apply_pagination(stmt: Any, limit: int, offset: int) -> Any:
    return stmt.limit(limit).offset(offset)
