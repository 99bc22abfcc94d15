from datetime import datetime, timedelta, timezone

import pytest

from app.schemas.enums import PresenceStatus
from app.services.presence import classify, describe, format_last_seen

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def ago(**kwargs):
    return NOW - timedelta(**kwargs)


def test_not_sharing_ignores_timestamp():
    assert classify(False, NOW, now=NOW) == PresenceStatus.not_sharing
    assert classify(False, ago(days=3), now=NOW) == PresenceStatus.not_sharing
    assert classify(False, None, now=NOW) == PresenceStatus.not_sharing


@pytest.mark.parametrize(
    "age,expected",
    [
        (timedelta(seconds=0), PresenceStatus.online),
        (timedelta(minutes=4, seconds=59), PresenceStatus.online),
        (timedelta(minutes=5), PresenceStatus.recently_active),
        (timedelta(minutes=29, seconds=59), PresenceStatus.recently_active),
        (timedelta(minutes=30), PresenceStatus.offline),
        (timedelta(minutes=31), PresenceStatus.offline),
    ],
)
def test_sharing_thresholds(age, expected):
    assert classify(True, NOW - age, now=NOW) == expected


def test_missing_timestamp_while_sharing_is_offline():
    assert classify(True, None, now=NOW) == PresenceStatus.offline


def test_naive_timestamp_is_treated_as_utc():
    naive = (NOW - timedelta(minutes=2)).replace(tzinfo=None)
    assert classify(True, naive, now=NOW) == PresenceStatus.online


def test_status_is_recomputed_as_time_passes():
    last = ago(minutes=1)
    assert classify(True, last, now=NOW) == PresenceStatus.online
    assert classify(True, last, now=NOW + timedelta(minutes=10)) == PresenceStatus.recently_active
    assert classify(True, last, now=NOW + timedelta(hours=1)) == PresenceStatus.offline


def test_describe_colors():
    assert describe(PresenceStatus.online).color == "green"
    assert describe(PresenceStatus.recently_active).color == "yellow"
    assert describe(PresenceStatus.offline).color == "red"
    assert describe(PresenceStatus.not_sharing).color == "gray"
    assert describe(PresenceStatus.recently_active).label == "Recently active"


def test_format_last_seen():
    assert format_last_seen(ago(seconds=30), now=NOW) == "Just now"
    assert format_last_seen(ago(minutes=12), now=NOW) == "12m ago"
    assert format_last_seen(ago(hours=3, minutes=5), now=NOW) == "3h ago"
    assert format_last_seen(ago(days=2), now=NOW) == "2026-10-16"
