"""Marketing profile: preference tags, progressive profiling and behaviour tracking."""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from database import now_utc
from errors import ValidationError

PREFERENCE_FIELDS = [
    "emailOptIn", "smsOptIn", "trackingOptIn", "emailFrequency",
    "birthday", "location", "experienceLevel",
    "traditions", "interests", "favoriteProductTypes",
    "blogSubscription", "workshopInterest",
]

PROFILE_STEPS: List[Dict[str, Any]] = [
    {
        "step": 0,
        "message": "Help us personalize your experience!",
        "fields": [
            {"name": "experienceLevel", "label": "What is your experience level?", "type": "radio",
             "options": ["beginner", "intermediate", "advanced"]},
        ],
    },
    {
        "step": 1,
        "message": "Tell us about your interests",
        "fields": [
            {"name": "traditions", "label": "Which traditions resonate with you?", "type": "multi-select",
             "options": ["Witchcraft (Eclectic)", "Wicca", "Hermeticism", "Chaos Magic", "Hoodoo", "Folk Magic",
                         "Tarot", "Astrology"]},
            {"name": "interests", "label": "What are you most interested in?", "type": "multi-select",
             "options": ["Altar Supplies", "Crystals", "Herbs", "Incense", "Spell Kits", "Books/Grimoire",
                         "Jewelry", "Divination tools"]},
        ],
    },
    {
        "step": 2,
        "message": "A few more details",
        "fields": [
            {"name": "birthday", "label": "Your birthday (month & day only)", "type": "date",
             "privacy": "We only store month/day for astrology & birthday promos"},
            {"name": "location", "label": "Your location (city, country)", "type": "location",
             "privacy": "For local events & time zone"},
        ],
    },
    {
        "step": 3,
        "message": "Stay connected",
        "fields": [
            {"name": "blogSubscription", "label": "Subscribe to our blog?", "type": "boolean"},
            {"name": "workshopInterest", "label": "Interested in workshops & events?", "type": "boolean"},
            {"name": "emailFrequency", "label": "How often would you like to hear from us?", "type": "radio",
             "options": ["weekly", "monthly", "important-only"]},
        ],
    },
]

MAX_PROFILE_STEP = len(PROFILE_STEPS)

_WHITESPACE = re.compile(r"\s+")


# ---------------------- Tags ----------------------

def merge_tags(existing: Iterable[str], new: Iterable[str]) -> List[str]:
    """Set union that keeps first-seen order."""
    merged: List[str] = []
    for tag in list(existing) + list(new):
        if tag not in merged:
            merged.append(tag)
    return merged


def apply_tag_action(existing: Iterable[str], tags: Iterable[str], action: str) -> List[str]:
    tags = list(tags)
    if action == "add":
        return merge_tags(existing, tags)
    if action == "remove":
        return [t for t in existing if t not in tags]
    raise ValidationError(f"Unknown tag action: {action}")


def _tag_value(value: str) -> str:
    return _WHITESPACE.sub("-", value.lower())


def derive_preference_tags(updates: Dict[str, Any]) -> List[str]:
    tags = []
    if updates.get("experienceLevel"):
        tags.append(f"level:{updates['experienceLevel']}")
    for tradition in updates.get("traditions") or []:
        tags.append(f"tradition:{_tag_value(tradition)}")
    for interest in updates.get("interests") or []:
        tags.append(f"interest:{_tag_value(interest)}")
    if updates.get("emailOptIn"):
        tags.append("channel:email_opt_in")
    if updates.get("smsOptIn"):
        tags.append("channel:sms_opt_in")
    return tags


# ---------------------- Preferences ----------------------

def preferences_view(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "emailOptIn": user.get("emailOptIn") or False,
        "smsOptIn": user.get("smsOptIn") or False,
        "trackingOptIn": user.get("trackingOptIn") or False,
        "emailFrequency": user.get("emailFrequency") or "weekly",
        "birthday": user.get("birthday"),
        "location": user.get("location") or {"city": "", "country": ""},
        "experienceLevel": user.get("experienceLevel"),
        "traditions": user.get("traditions") or [],
        "interests": user.get("interests") or [],
        "favoriteProductTypes": user.get("favoriteProductTypes") or [],
        "blogSubscription": user.get("blogSubscription") or False,
        "workshopInterest": user.get("workshopInterest") or False,
        "profileCompletionStep": user.get("profileCompletionStep") or 0,
    }


def next_profile_step(current: Optional[int]) -> int:
    current = current or 0
    return current + 1 if current < MAX_PROFILE_STEP else current


def preference_updates(user: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Fields to write for a preferences update, including merged tags and the next profile step."""
    updates = {k: v for k, v in changes.items() if k in PREFERENCE_FIELDS}
    updates["tags"] = merge_tags(user.get("tags") or [], derive_preference_tags(updates))
    updates["profileCompletionStep"] = next_profile_step(user.get("profileCompletionStep"))
    updates["updatedAt"] = now_utc()
    return updates


def profile_prompt(step: Optional[int]) -> Dict[str, Any]:
    step = step or 0
    if step >= MAX_PROFILE_STEP:
        return {"completed": True, "message": "Profile complete! Thank you."}
    return {"completed": False, "prompt": PROFILE_STEPS[step]}


# ---------------------- Behaviour tracking ----------------------

def _purchase_amount(data: Dict[str, Any]) -> Decimal:
    raw = data.get("amount", 0)
    if isinstance(raw, bool):
        raise ValidationError("Purchase amount must be a number")
    try:
        amount = Decimal(str(raw if raw is not None else 0))
    except InvalidOperation:
        raise ValidationError("Purchase amount must be a number")
    if not amount.is_finite() or amount < 0:
        raise ValidationError("Purchase amount must be a non-negative number")
    return amount


def apply_tracking_event(user: Dict[str, Any], event: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the fields to write for a tracked event; unknown events produce no changes."""
    data = data or {}
    now = now_utc()
    updates: Dict[str, Any] = {}

    if event == "cart_abandoned":
        updates["cartAbandonedCount"] = int(user.get("cartAbandonedCount") or 0) + 1
    elif event == "purchase":
        amount = _purchase_amount(data)
        updates["lastPurchase"] = now
        updates["lifetimeValue"] = float(Decimal(str(user.get("lifetimeValue") or 0)) + amount)
        category = data.get("productCategory")
        if category:
            tags = user.get("tags") or []
            tag = f"interest:{category}"
            if tag not in tags:
                updates["tags"] = tags + [tag]
    elif event == "email_opened":
        updates["emailEngagement.lastOpened"] = now
    elif event == "email_clicked":
        updates["emailEngagement.clickedOffers"] = True

    if updates:
        updates["updatedAt"] = now
    return updates
