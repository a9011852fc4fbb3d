"""
Marketing segments over the account collection.

Membership is recomputed from a full scan of ``users`` on every call; segments
may overlap.
"""
import csv
import io
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from database import Store, now_utc
from errors import NotFound

Account = Dict[str, Any]


def as_datetime(value) -> Optional[datetime]:
    """Timestamps may be stored as datetimes or ISO strings."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _tags(account: Account) -> List[str]:
    return account.get("tags") or []


def _within(value, days: int, now: datetime) -> bool:
    when = as_datetime(value)
    return when is not None and when > now - timedelta(days=days)


@dataclass(frozen=True)
class Segment:
    key: str
    name: str
    description: str
    predicate: Callable[[Account, datetime], bool]

    def contains(self, account: Account, now: datetime) -> bool:
        return self.predicate(account, now)


SEGMENTS: List[Segment] = [
    Segment(
        "beginnerTarotBuyers", "Beginner Tarot Buyers",
        "Users interested in tarot with beginner experience level",
        lambda u, now: "interest:tarot" in _tags(u) and "level:beginner" in _tags(u),
    ),
    Segment(
        "crystalEnthusiasts", "Crystal Enthusiasts (Intermediate+)",
        "Intermediate/advanced users interested in crystals",
        lambda u, now: "interest:crystals" in _tags(u)
        and ("level:intermediate" in _tags(u) or "level:advanced" in _tags(u)),
    ),
    Segment(
        "emailEngaged", "Email Engaged Users",
        "Users who opened emails in the last 30 days",
        lambda u, now: _within((u.get("emailEngagement") or {}).get("lastOpened"), 30, now),
    ),
    Segment(
        "cartAbandoners", "Cart Abandoners",
        "Users who abandoned cart 2+ times",
        lambda u, now: (u.get("cartAbandonedCount") or 0) >= 2,
    ),
    Segment(
        "highLTV", "High Lifetime Value",
        "Users with lifetime value > $100",
        lambda u, now: (u.get("lifetimeValue") or 0) > 100,
    ),
    Segment(
        "emailOptedIn", "Email Opted In",
        "Users who opted into email marketing",
        lambda u, now: u.get("emailOptIn") is True,
    ),
    Segment(
        "smsOptedIn", "SMS Opted In",
        "Users who opted into SMS marketing",
        lambda u, now: u.get("smsOptIn") is True,
    ),
    Segment(
        "hoodooInterest", "Hoodoo/Folk Magic Interest",
        "Users interested in Hoodoo or folk magic traditions",
        lambda u, now: "tradition:hoodoo" in _tags(u) or "tradition:folk-magic" in _tags(u),
    ),
    Segment(
        "newUsers", "New Users (Last 7 Days)",
        "Users who signed up in the last 7 days",
        lambda u, now: _within(u.get("createdAt"), 7, now),
    ),
]

SEGMENTS_BY_KEY: Dict[str, Segment] = {s.key: s for s in SEGMENTS}


def get_segment(key: str) -> Segment:
    segment = SEGMENTS_BY_KEY.get(key)
    if segment is None:
        raise NotFound("Segment not found")
    return segment


def _member(account: Account) -> Dict[str, Any]:
    return {
        "id": account.get("id"),
        "email": account.get("email"),
        "displayName": account.get("displayName"),
        "lifetimeValue": account.get("lifetimeValue") or 0,
        "tags": _tags(account),
    }


def compute_segments(accounts: List[Account], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or now_utc()
    result = {}
    for segment in SEGMENTS:
        members = [_member(a) for a in accounts if segment.contains(a, now)]
        result[segment.key] = {
            "name": segment.name,
            "description": segment.description,
            "count": len(members),
            "users": members,
        }
    return {"segments": result, "totalUsers": len(accounts)}


def segment_members(accounts: List[Account], key: str, now: Optional[datetime] = None) -> List[Account]:
    segment = get_segment(key)
    now = now or now_utc()
    return [a for a in accounts if segment.contains(a, now)]


def export_segment_csv(store: Store, key: str) -> str:
    """CSV with a single ``Email`` column for every member of the segment."""
    members = segment_members(store.find("users"), key)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Email"])
    for account in members:
        writer.writerow([account.get("email") or ""])
    return buf.getvalue()
