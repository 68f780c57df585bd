"""
Tests for the /feeds routes.
"""

from .helpers import FEED_URL, OWNER_HEADERS


def register(client, url=FEED_URL, title="Example", headers=OWNER_HEADERS):
    return client.post("/feeds", json={"url": url, "title": title}, headers=headers)


class TestFeedRoutes:
    """Tests for feed registration endpoints."""

    def test_add_feed(self, client):
        """POST /feeds registers a feed."""
        response = register(client)
        assert response.status_code == 201
        data = response.json()
        assert data["url"] == FEED_URL
        assert data["title"] == "Example"
        assert data["lastFetchedAt"] is None

    def test_list_feeds(self, client):
        """GET /feeds lists only the caller's feeds."""
        register(client)
        register(client, url="https://other.example.com/rss", headers={"X-Owner-Key": "someone-else"})

        response = client.get("/feeds", headers=OWNER_HEADERS)
        assert response.status_code == 200
        assert [feed["url"] for feed in response.json()] == [FEED_URL]

    def test_duplicate_feed(self, client):
        """Registering the same URL twice is a conflict."""
        register(client)
        assert register(client).status_code == 409

    def test_invalid_url(self, client):
        """Non-HTTP URLs are rejected."""
        assert register(client, url="ftp://example.com/feed").status_code == 400
        assert register(client, url="not a url").status_code == 400

    def test_delete_feed(self, client):
        """DELETE /feeds/{id} removes the feed."""
        feed_id = register(client).json()["id"]
        response = client.delete(f"/feeds/{feed_id}", headers=OWNER_HEADERS)
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert client.get("/feeds", headers=OWNER_HEADERS).json() == []

    def test_delete_other_owners_feed(self, client):
        """Another owner's feed looks missing."""
        feed_id = register(client).json()["id"]
        response = client.delete(f"/feeds/{feed_id}", headers={"X-Owner-Key": "intruder"})
        assert response.status_code == 404

    def test_missing_owner(self, client):
        """Requests without X-Owner-Key are unauthorized."""
        assert client.get("/feeds").status_code == 401

    def test_owner_too_long(self, client):
        """Oversized owner keys are rejected."""
        assert client.get("/feeds", headers={"X-Owner-Key": "x" * 201}).status_code == 400
