"""
Shared feed builders and fakes for tests.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

OWNER = "owner-1"
OWNER_HEADERS = {"X-Owner-Key": OWNER}
FEED_URL = "https://example.com/feed.xml"

# Fixed reference time shared by the refresh and listing tests
NOW = datetime(2024, 5, 10, 12, 0, 0, tzinfo=timezone.utc)


def rfc822(value: datetime) -> str:
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def rss_item(
    title: str = "Story",
    description: str = "<p>Body text</p>",
    published: datetime | None = None,
    guid: str | None = None,
    link: str | None = None,
    extra: str = "",
) -> str:
    """One <item> element for rss_document()."""
    parts = [f"<title>{title}</title>"]
    if link:
        parts.append(f"<link>{link}</link>")
    if guid:
        parts.append(f"<guid>{guid}</guid>")
    parts.append(f"<pubDate>{rfc822(published or NOW - timedelta(hours=1))}</pubDate>")
    parts.append(f"<description><![CDATA[{description}]]></description>")
    parts.append(extra)
    return f"<item>{''.join(parts)}</item>"


def rss_document(*items: str, title: str = "Example Feed") -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/" '
        'xmlns:media="http://search.yahoo.com/mrss/" '
        'xmlns:dc="http://purl.org/dc/elements/1.1/">'
        f"<channel><title>{title}</title><link>https://example.com</link>"
        f"{''.join(items)}</channel></rss>"
    )


class FakeFetcher:
    """Serves canned feed bodies by URL and counts calls."""

    def __init__(self, bodies: dict | None = None):
        self.bodies = dict(bodies or {})
        self.calls: list[str] = []

    async def fetch(self, url: str, timeout_ms: int | None = None) -> str:
        self.calls.append(url)
        body = self.bodies.get(url)
        if isinstance(body, Exception):
            raise body
        if body is None:
            raise AssertionError(f"Unexpected fetch: {url}")
        return body
