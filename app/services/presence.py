from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.core.location_config import (
    ONLINE_THRESHOLD_MINUTES,
    RECENTLY_ACTIVE_THRESHOLD_MINUTES,
)
from app.schemas.enums import PresenceStatus


@dataclass(frozen=True)
class PresenceTag:
    status: PresenceStatus
    label: str
    color: str


_TAGS = {
    PresenceStatus.not_sharing: PresenceTag(PresenceStatus.not_sharing, "Not sharing", "gray"),
    PresenceStatus.online: PresenceTag(PresenceStatus.online, "Online", "green"),
    PresenceStatus.recently_active: PresenceTag(PresenceStatus.recently_active, "Recently active", "yellow"),
    PresenceStatus.offline: PresenceTag(PresenceStatus.offline, "Offline", "red"),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # sqlite hands timestamps back naive; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_since(last_updated: datetime, now: Optional[datetime] = None) -> float:
    now = as_utc(now or utcnow())
    return (now - as_utc(last_updated)).total_seconds() / 60


def classify(
    is_sharing: bool,
    last_updated: Optional[datetime],
    now: Optional[datetime] = None,
) -> PresenceStatus:
    """
    Derive presence from the sharing flag and the age of the last update.

    Evaluated fresh on every call: the result depends on wall-clock time and
    must not be cached past a single observation.
    """
    if not is_sharing:
        return PresenceStatus.not_sharing

    if last_updated is None:
        return PresenceStatus.offline

    age = minutes_since(last_updated, now)

    if age < ONLINE_THRESHOLD_MINUTES:
        return PresenceStatus.online
    if age < RECENTLY_ACTIVE_THRESHOLD_MINUTES:
        return PresenceStatus.recently_active
    return PresenceStatus.offline


def describe(status: PresenceStatus) -> PresenceTag:
    return _TAGS[status]


def format_last_seen(last_updated: datetime, now: Optional[datetime] = None) -> str:
    minutes = int(minutes_since(last_updated, now))
    hours = minutes // 60

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    return as_utc(last_updated).date().isoformat()
