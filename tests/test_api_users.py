"""Tests for the signed-in account's own profile routes."""

from conftest import add_user


class TestPreferences:
    def test_defaults(self, client, customer):
        prefs = client.get("/users/me/preferences", headers=customer["headers"]).json()["preferences"]
        assert prefs["emailOptIn"] is False
        assert prefs["emailFrequency"] == "weekly"
        assert prefs["profileCompletionStep"] == 0

    def test_update_derives_tags_and_advances_step(self, client, store, customer):
        response = client.put("/users/me/preferences", headers=customer["headers"], json={
            "experienceLevel": "beginner",
            "interests": ["Tarot"],
            "emailOptIn": True,
        })

        assert response.status_code == 200
        assert response.json()["profileCompletionStep"] == 1
        stored = store.get("users", customer["id"])
        assert stored["experienceLevel"] == "beginner"
        assert stored["tags"] == ["level:beginner", "interest:tarot", "channel:email_opt_in"]
        assert stored["role"] == "customer"

    def test_rejects_unknown_enum(self, client, customer):
        response = client.put("/users/me/preferences", headers=customer["headers"], json={"emailFrequency": "hourly"})
        assert response.status_code == 400

    def test_prompt_follows_step(self, client, store):
        fresh = add_user(store, "customer")
        done = add_user(store, "customer", profileCompletionStep=4)
        assert client.get("/users/me/profile-prompt", headers=fresh["headers"]).json()["prompt"]["step"] == 0
        assert client.get("/users/me/profile-prompt", headers=done["headers"]).json() == {
            "completed": True, "message": "Profile complete! Thank you.",
        }


class TestTags:
    def test_add_is_idempotent(self, client, store):
        user = add_user(store, "customer", tags=["interest:tarot"])
        response = client.post("/users/me/tags", json={"tags": ["interest:tarot"], "action": "add"},
                               headers=user["headers"])
        assert response.status_code == 200
        assert response.json()["tags"] == ["interest:tarot"]
        assert store.get("users", user["id"])["tags"] == ["interest:tarot"]

    def test_remove(self, client, store):
        user = add_user(store, "customer", tags=["a", "b"])
        response = client.post("/users/me/tags", json={"tags": ["a", "zzz"], "action": "remove"},
                               headers=user["headers"])
        assert response.json() == {"message": "Tags removed successfully", "tags": ["b"]}

    def test_unknown_action(self, client, customer):
        response = client.post("/users/me/tags", json={"tags": ["a"], "action": "flip"}, headers=customer["headers"])
        assert response.status_code == 400


class TestTracking:
    def test_requires_opt_in(self, client, store, customer):
        response = client.post("/users/me/track", json={"event": "cart_abandoned"}, headers=customer["headers"])
        assert response.status_code == 403
        assert response.json()["message"] == "Tracking not enabled for this user"
        assert store.get("users", customer["id"])["cartAbandonedCount"] == 0

    def test_purchase(self, client, store):
        user = add_user(store, "customer", trackingOptIn=True, lifetimeValue=12.5)
        response = client.post("/users/me/track", headers=user["headers"], json={
            "event": "purchase", "data": {"amount": 7.5, "productCategory": "crystals"},
        })
        assert response.status_code == 200
        stored = store.get("users", user["id"])
        assert stored["lifetimeValue"] == 20.0
        assert "interest:crystals" in stored["tags"]

    def test_negative_purchase_rejected(self, client, store):
        user = add_user(store, "customer", trackingOptIn=True)
        response = client.post("/users/me/track", headers=user["headers"],
                               json={"event": "purchase", "data": {"amount": -5}})
        assert response.status_code == 400
        assert store.get("users", user["id"])["lifetimeValue"] == 0
