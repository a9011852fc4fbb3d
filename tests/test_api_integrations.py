"""Tests for image uploads, the video feed proxy and hosted checkout."""

import io
import os

import pytest
from PIL import Image

import config
import feeds
import payments


def image_bytes(fmt="PNG", size=(40, 20)):
    buf = io.BytesIO()
    Image.new("RGB", size, "purple").save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


class TestUploads:
    def test_upload_resize_list_delete(self, client, admin, upload_dir):
        response = client.post("/upload/image", params={"type": "products", "width": 10},
                               files={"image": ("moon.png", image_bytes(), "image/png")}, headers=admin["headers"])

        assert response.status_code == 200
        image = response.json()["image"]
        assert image["url"].startswith("/uploads/products/")
        assert image["originalName"] == "moon.png"
        path = upload_dir / "products" / image["filename"]
        with Image.open(path) as stored:
            assert stored.size == (10, 5)

        listed = client.get("/upload/images", params={"type": "products"}, headers=admin["headers"]).json()["images"]
        assert [i["url"] for i in listed] == [image["url"]]

        deleted = client.request("DELETE", "/upload/image", json={"url": image["url"]}, headers=admin["headers"])
        assert deleted.status_code == 200
        assert not path.exists()
        again = client.request("DELETE", "/upload/image", json={"url": image["url"]}, headers=admin["headers"])
        assert again.status_code == 404

    def test_small_images_are_not_enlarged(self, client, admin, upload_dir):
        response = client.post("/upload/image", params={"width": 400, "height": 400},
                               files={"image": ("a.jpg", image_bytes("JPEG"), "image/jpeg")}, headers=admin["headers"])
        image = response.json()["image"]
        with Image.open(upload_dir / "general" / image["filename"]) as stored:
            assert stored.size == (40, 20)

    def test_rejects_non_images(self, client, admin, upload_dir):
        response = client.post("/upload/image", files={"image": ("notes.txt", b"hello", "text/plain")},
                               headers=admin["headers"])
        assert response.status_code == 400
        response = client.post("/upload/image", files={"image": ("fake.png", b"not really", "image/png")},
                               headers=admin["headers"])
        assert response.status_code == 400
        assert response.json()["message"] == "File is not a valid image"
        assert not any(upload_dir.iterdir())

    def test_rejects_oversize(self, client, admin, upload_dir, monkeypatch):
        monkeypatch.setattr(config, "MAX_FILE_SIZE", 10)
        response = client.post("/upload/image", files={"image": ("moon.png", image_bytes(), "image/png")},
                               headers=admin["headers"])
        assert response.status_code == 400

    def test_bad_type_name(self, client, admin, upload_dir):
        response = client.post("/upload/image", params={"type": "../etc"},
                               files={"image": ("moon.png", image_bytes(), "image/png")}, headers=admin["headers"])
        assert response.status_code == 400

    def test_multiple(self, client, admin, upload_dir):
        files = [
            ("images", ("a.png", image_bytes(), "image/png")),
            ("images", ("b.gif", image_bytes("GIF"), "image/gif")),
        ]
        response = client.post("/upload/images", params={"type": "gallery"}, files=files, headers=admin["headers"])
        assert response.status_code == 200
        assert len(response.json()["images"]) == 2
        assert len(os.listdir(upload_dir / "gallery")) == 2

    def test_multiple_is_all_or_nothing(self, client, admin, upload_dir):
        files = [
            ("images", ("a.png", image_bytes(), "image/png")),
            ("images", ("b.txt", b"text", "text/plain")),
        ]
        response = client.post("/upload/images", files=files, headers=admin["headers"])
        assert response.status_code == 400
        assert not (upload_dir / "general").exists()

    def test_delete_outside_root(self, client, admin, upload_dir):
        response = client.request("DELETE", "/upload/image", json={"url": "/uploads/../../etc/passwd"},
                                  headers=admin["headers"])
        assert response.status_code == 400

    def test_admin_only(self, client, customer, upload_dir):
        response = client.post("/upload/image", files={"image": ("moon.png", image_bytes(), "image/png")},
                               headers=customer["headers"])
        assert response.status_code == 403


FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom" xmlns:yt="http://www.youtube.com/xml/schemas/2015"
      xmlns:media="http://search.yahoo.com/mrss/">
  <title>Channel</title>
  <entry>
    <yt:videoId>vid1</yt:videoId>
    <title>Full Moon Ritual</title>
    <published>2024-05-01T10:00:00+00:00</published>
    <updated>2024-05-02T10:00:00+00:00</updated>
    <media:group>
      <media:thumbnail url="https://i.ytimg.com/vi/vid1/hqdefault.jpg" width="480" height="360"/>
      <media:description>Tonight we gather.</media:description>
    </media:group>
  </entry>
  <entry>
    <yt:videoId>vid2</yt:videoId>
    <title>Tarot Basics</title>
  </entry>
</feed>
"""

CHANNEL = "UCabcdefghijklmnopqrstuv"


class FakeResponse:
    def __init__(self, status_code=200, content=b"", payload=None):
        self.status_code = status_code
        self.content = content
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload


class TestVideoFeed:
    def test_parses_entries(self, client, monkeypatch):
        calls = []

        def fake_get(url, **kwargs):
            calls.append((url, kwargs))
            return FakeResponse(content=FEED)

        monkeypatch.setattr(feeds.requests, "get", fake_get)

        data = client.get("/youtube-feed", params={"channel_id": CHANNEL}).json()

        assert data["success"] is True
        assert data["count"] == 2
        assert data["videos"][0] == {
            "videoId": "vid1",
            "title": "Full Moon Ritual",
            "published": "2024-05-01T10:00:00+00:00",
            "updated": "2024-05-02T10:00:00+00:00",
            "thumbnail": "https://i.ytimg.com/vi/vid1/hqdefault.jpg",
            "description": "Tonight we gather.",
        }
        assert data["videos"][1]["thumbnail"] == ""
        assert calls[0][0] == feeds.FEED_URL
        assert calls[0][1]["params"] == {"channel_id": CHANNEL}

    @pytest.mark.parametrize("channel, message", [
        ("", "Channel ID is required"),
        ("not-a-channel", "Invalid channel ID format"),
    ])
    def test_validates_channel(self, client, channel, message):
        response = client.get("/youtube-feed", params={"channel_id": channel})
        assert response.status_code == 400
        assert response.json()["message"] == message

    def test_upstream_failure(self, client, monkeypatch):
        monkeypatch.setattr(feeds.requests, "get", lambda url, **kwargs: FakeResponse(status_code=404))
        response = client.get("/youtube-feed", params={"channel_id": CHANNEL})
        assert response.status_code == 502

    def test_unparseable_feed(self, client, monkeypatch):
        monkeypatch.setattr(feeds.requests, "get", lambda url, **kwargs: FakeResponse(content=b"<feed"))
        assert client.get("/youtube-feed", params={"channel_id": CHANNEL}).status_code == 502


class TestCheckout:
    @pytest.fixture
    def square(self, monkeypatch):
        monkeypatch.setattr(config, "SQUARE_ACCESS_TOKEN", "sq-token")
        monkeypatch.setattr(config, "SQUARE_LOCATION_ID", "LOC1")
        monkeypatch.setattr(config, "SQUARE_ENVIRONMENT", "sandbox")
        calls = []

        def respond(response):
            def fake_post(url, **kwargs):
                calls.append((url, kwargs))
                return response
            monkeypatch.setattr(payments.requests, "post", fake_post)

        respond(FakeResponse(payload={"payment_link": {"id": "PL1", "url": "https://square.link/u/abc"}}))
        return calls, respond

    def test_creates_payment_link(self, client, square):
        calls, _ = square
        response = client.post("/checkout", json={
            "cart": [{"name": "Moon Deck", "price": 19.99, "quantity": 2}],
            "customerEmail": "buyer@example.com",
            "customerName": "Ada",
        })

        assert response.status_code == 200
        assert response.json() == {"success": True, "checkoutUrl": "https://square.link/u/abc", "orderId": "PL1"}
        url, kwargs = calls[0]
        assert url == "https://connect.squareupsandbox.com/v2/online-checkout/payment-links"
        assert kwargs["headers"]["Authorization"] == "Bearer sq-token"
        body = kwargs["json"]
        assert body["idempotency_key"].startswith("checkout_")
        assert body["order"]["location_id"] == "LOC1"
        assert body["order"]["line_items"] == [
            {"name": "Moon Deck", "quantity": "2", "base_price_money": {"amount": 1999, "currency": "USD"}},
        ]
        assert body["pre_populate_buyer_email"] == "buyer@example.com"
        assert body["pre_populate_shipping_address"]["first_name"] == "Ada"

    def test_provider_error(self, client, square):
        _, respond = square
        respond(FakeResponse(status_code=400, payload={"errors": [{"code": "BAD"}]}))
        response = client.post("/checkout", json={
            "cart": [{"name": "Moon Deck", "price": 19.99, "quantity": 1}],
            "customerEmail": "buyer@example.com",
        })
        assert response.status_code == 502

    def test_rejects_empty_cart(self, client, square):
        calls, _ = square
        response = client.post("/checkout", json={"cart": [], "customerEmail": "buyer@example.com"})
        assert response.status_code == 400
        assert calls == []

    def test_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(config, "SQUARE_ACCESS_TOKEN", "")
        response = client.post("/checkout", json={
            "cart": [{"name": "Moon Deck", "price": 19.99, "quantity": 1}],
            "customerEmail": "buyer@example.com",
        })
        assert response.status_code == 500
        assert response.json()["message"] == "Payment provider is not configured"


def test_to_cents_rounds_half_up():
    assert payments.to_cents("0.005") == 1
    assert payments.to_cents(19.99) == 1999
