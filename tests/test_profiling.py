"""Tests for marketing tags, progressive profiling and behaviour tracking."""

import pytest

from errors import ValidationError
from profiling import (
    MAX_PROFILE_STEP,
    PROFILE_STEPS,
    apply_tag_action,
    apply_tracking_event,
    derive_preference_tags,
    merge_tags,
    next_profile_step,
    preference_updates,
    preferences_view,
    profile_prompt,
)


class TestTags:
    def test_add_existing_tag_is_noop(self):
        assert apply_tag_action(["interest:tarot"], ["interest:tarot"], "add") == ["interest:tarot"]

    def test_add_keeps_order(self):
        assert merge_tags(["a", "b"], ["c", "a", "c"]) == ["a", "b", "c"]

    def test_remove(self):
        assert apply_tag_action(["a", "b", "c"], ["b", "missing"], "remove") == ["a", "c"]

    def test_unknown_action(self):
        with pytest.raises(ValidationError):
            apply_tag_action([], ["a"], "toggle")

    def test_derived_tags(self):
        tags = derive_preference_tags({
            "experienceLevel": "beginner",
            "traditions": ["Folk Magic", "Wicca"],
            "interests": ["Divination tools"],
            "emailOptIn": True,
            "smsOptIn": False,
        })
        assert tags == [
            "level:beginner",
            "tradition:folk-magic",
            "tradition:wicca",
            "interest:divination-tools",
            "channel:email_opt_in",
        ]


class TestPreferences:
    def test_defaults_for_sparse_account(self):
        view = preferences_view({"id": "u1"})
        assert view["emailFrequency"] == "weekly"
        assert view["location"] == {"city": "", "country": ""}
        assert view["traditions"] == []
        assert view["profileCompletionStep"] == 0

    def test_update_filters_unknown_fields_and_advances_step(self):
        user = {"tags": ["interest:tarot"], "profileCompletionStep": 1}
        updates = preference_updates(user, {"interests": ["Tarot", "Crystals"], "role": "admin"})

        assert "role" not in updates
        assert updates["interests"] == ["Tarot", "Crystals"]
        assert updates["tags"] == ["interest:tarot", "interest:crystals"]
        assert updates["profileCompletionStep"] == 2
        assert updates["updatedAt"] is not None

    def test_step_is_capped(self):
        assert next_profile_step(None) == 1
        assert next_profile_step(MAX_PROFILE_STEP - 1) == MAX_PROFILE_STEP
        assert next_profile_step(MAX_PROFILE_STEP) == MAX_PROFILE_STEP

    def test_prompt_for_each_step(self):
        assert profile_prompt(0) == {"completed": False, "prompt": PROFILE_STEPS[0]}
        assert profile_prompt(2)["prompt"]["message"] == "A few more details"
        assert profile_prompt(MAX_PROFILE_STEP) == {"completed": True, "message": "Profile complete! Thank you."}


class TestTracking:
    def test_cart_abandoned(self):
        updates = apply_tracking_event({"cartAbandonedCount": 2}, "cart_abandoned")
        assert updates["cartAbandonedCount"] == 3
        assert "updatedAt" in updates

    def test_purchase(self):
        user = {"lifetimeValue": 10.5, "tags": ["level:beginner"]}
        updates = apply_tracking_event(user, "purchase", {"amount": 19.99, "productCategory": "tarot"})
        assert updates["lifetimeValue"] == 30.49
        assert updates["tags"] == ["level:beginner", "interest:tarot"]
        assert updates["lastPurchase"] is not None

    def test_purchase_existing_interest_not_duplicated(self):
        updates = apply_tracking_event({"tags": ["interest:tarot"]}, "purchase", {"amount": 5, "productCategory": "tarot"})
        assert "tags" not in updates

    @pytest.mark.parametrize("amount", [-1, "lots", True])
    def test_purchase_rejects_bad_amount(self, amount):
        with pytest.raises(ValidationError):
            apply_tracking_event({}, "purchase", {"amount": amount})

    def test_email_events(self):
        opened = apply_tracking_event({}, "email_opened")
        clicked = apply_tracking_event({}, "email_clicked")
        assert opened["emailEngagement.lastOpened"] is not None
        assert clicked["emailEngagement.clickedOffers"] is True

    def test_unknown_event_changes_nothing(self):
        assert apply_tracking_event({}, "page_view") == {}
