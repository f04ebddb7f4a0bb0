"""
HTTP surface tests against the in-memory remote.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from community_hub.errors import NetworkError, RejectedError
from community_hub.main import app


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        services = test_client.app.state.services
        services.remote.seed("marketplace_listings", [
            {"title": "Desk", "category": "furniture", "price": 40, "is_favorited": False, "favorite_count": 0},
            {"title": "Phone", "category": "electronics", "price": 200, "is_favorited": False, "favorite_count": 1},
        ])
        services.remote.seed("posts", [{"content": "hello", "likes_count": 0, "has_liked": False}])
        services.remote.seed("messages", [{"conversation_id": "c1", "sender_id": "other", "content": "hi"}])
        yield test_client


@pytest.fixture
def remote(client):
    return client.app.state.services.remote


class TestListings:

    def test_list_returns_data_and_cache_meta(self, client):
        data = client.get("/listings").json()
        assert data["count"] == 2
        assert data["meta"]["cacheSource"] == "upstream"
        assert data["meta"]["_debug"]["collection"] == "marketplace_listings"

    def test_second_list_is_cached(self, client):
        client.get("/listings")
        data = client.get("/listings").json()
        assert data["meta"]["cacheSource"] == "fresh"

    def test_force_refresh(self, client, remote):
        client.get("/listings")
        data = client.get("/listings", params={"forceRefresh": "true"}).json()
        assert data["meta"]["cacheSource"] == "upstream"
        assert remote.calls["list"] == 2

    def test_filter_by_category(self, client):
        data = client.get("/listings", params={"category": "electronics"}).json()
        assert [l["title"] for l in data["data"]] == ["Phone"]

    def test_get_one(self, client):
        response = client.get("/listings/1")
        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Desk"

    def test_missing_listing_is_404(self, client):
        assert client.get("/listings/999").status_code == 404

    def test_create(self, client):
        response = client.post("/listings", json={"title": "Bike", "price": 120, "category": "sports"})
        assert response.status_code == 201
        listing = response.json()["data"]
        assert listing["title"] == "Bike"
        assert listing["seller_id"] == client.app.state.services.marketplace.user_id

        titles = [l["title"] for l in client.get("/listings").json()["data"]]
        assert titles[0] == "Bike"

    def test_create_validates_body(self, client):
        assert client.post("/listings", json={"title": "", "price": 1}).status_code == 422
        assert client.post("/listings", json={"title": "Bike", "price": -1}).status_code == 422

    def test_update(self, client):
        response = client.patch("/listings/1", json={"price": 35})
        assert response.status_code == 200
        assert response.json()["data"]["price"] == 35

    def test_empty_update_is_400(self, client):
        assert client.patch("/listings/1", json={}).status_code == 400

    def test_rejected_update_is_409(self, client, remote):
        remote.fail_next("update", RejectedError("listing is locked"))
        response = client.patch("/listings/1", json={"price": 35})
        assert response.status_code == 409

    def test_rejected_with_own_status(self, client, remote):
        remote.fail_next("update", RejectedError("forbidden", status_code=403))
        assert client.post("/listings/1/sold").status_code == 403

    def test_mark_sold(self, client):
        assert client.post("/listings/2/sold").json()["data"]["status"] == "sold"

    def test_favorite_toggle(self, client):
        first = client.post("/listings/2/favorite").json()["data"]
        second = client.post("/listings/2/favorite").json()["data"]
        assert (first["is_favorited"], first["favorite_count"]) == (True, 2)
        assert (second["is_favorited"], second["favorite_count"]) == (False, 1)

    def test_delete(self, client):
        client.get("/listings")
        assert client.delete("/listings/1").status_code == 204
        ids = [l["id"] for l in client.get("/listings").json()["data"]]
        assert ids == ["2"]

    def test_remote_down_without_cache_is_502(self, client, remote):
        remote.fail_next("list", NetworkError("offline"))
        assert client.get("/listings").status_code == 502


class TestFeedAndMessages:

    def test_posts_and_like(self, client):
        posts = client.get("/posts").json()
        assert posts["count"] == 1
        liked = client.post("/posts/1/like").json()["data"]
        assert liked["has_liked"] is True
        assert liked["likes_count"] == 1

    def test_create_post(self, client):
        response = client.post("/posts", json={"content": "new post"})
        assert response.status_code == 201
        assert client.get("/posts").json()["data"][0]["content"] == "new post"

    def test_messages(self, client):
        sent = client.post("/conversations/c1/messages", json={"content": "hello back"})
        assert sent.status_code == 201
        messages = client.get("/conversations/c1/messages").json()
        assert [m["content"] for m in messages["data"]] == ["hi", "hello back"]
        assert messages["meta"]["_debug"]["ttl"] == 120

    def test_blank_message_is_400(self, client):
        assert client.post("/conversations/c1/messages", json={"content": "   "}).status_code == 400


class TestCacheEndpoints:

    def test_stats(self, client):
        client.get("/listings")
        stats = client.get("/cache/stats").json()
        assert stats["store"]["entries"] >= 1
        assert "marketplace_listings" in stats["features"]

    def test_clear(self, client):
        client.get("/listings")
        cleared = client.delete("/cache").json()["cleared"]
        assert cleared >= 1
        assert client.get("/listings").json()["meta"]["cacheSource"] == "upstream"


class TestRealtime:

    def test_marketplace_and_feed_follow_changes_from_startup(self, client, remote):
        services = client.app.state.services
        assert services.marketplace.realtime_active
        assert services.feed.realtime_active
        assert not services.messaging.realtime_active

        client.get("/posts")
        client.portal.call(remote.create, "posts", {"content": "from another member"})
        client.portal.call(asyncio.sleep, 0.01)

        assert services.feed.snapshot()[0]["content"] == "from another member"

    def test_opening_a_conversation_follows_it(self, client, remote):
        services = client.app.state.services
        client.get("/conversations/c1/messages")
        client.get("/conversations/c1/messages")

        stats = client.get("/cache/stats").json()["features"]["messages"]
        assert stats["realtime_active"] is True
        assert stats["realtime_filters"] == {"conversation_id": "c1"}
        assert remote.subscriber_count("messages") == 1

        client.portal.call(remote.create, "messages", {"conversation_id": "c1", "content": "live"})
        client.portal.call(asyncio.sleep, 0.01)

        assert [m["content"] for m in services.messaging.snapshot()] == ["hi", "live"]
