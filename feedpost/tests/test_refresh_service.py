"""
Tests for the feed refresh orchestrator.
"""

import asyncio
import sqlite3
from datetime import timedelta
from unittest.mock import patch

import pytest

from feedpost.config import RssConfig
from feedpost.exceptions import FeedFetchHttpError
from feedpost.feed_parser import parse_feed
from feedpost.normalizer import NormalizationError
from feedpost.selector import select_body_and_lead
from feedpost.services.ingestion_service import IngestionCandidate
from feedpost.services.refresh_service import (
    RefreshLocks,
    RefreshService,
    cooldown_seconds_remaining,
    filter_within_window,
)

from .helpers import FEED_URL, NOW, OWNER, FakeFetcher, rss_document, rss_item

OTHER_FEED_URL = "https://other.example.com/rss"


def stored_articles(db, owner_key=OWNER):
    rows = db.articles.find_recent_for_owner(owner_key, window_start=NOW - timedelta(days=365), limit=100)
    return sorted(rows, key=lambda row: row.article.id)


@pytest.fixture
def feed_id(test_db):
    return test_db.add_feed(OWNER, FEED_URL, "Example")


@pytest.fixture
def make_service(test_db, metrics, diagnostics):
    def factory(bodies: dict, policy: str = "if-empty-or-changed", fetcher=None):
        return RefreshService(
            db=test_db,
            fetcher=fetcher or FakeFetcher(bodies),
            rss=RssConfig(reprocess_policy=policy),
            metrics=metrics,
            diagnostics=diagnostics,
        )
    return factory


async def refresh(service, **kwargs):
    kwargs.setdefault("now", NOW)
    kwargs.setdefault("cooldown_seconds", 0)
    kwargs.setdefault("window_days", 7)
    return await service.refresh_owner_feeds(OWNER, **kwargs)


class TestRefreshBasics:
    """Tests for a plain refresh."""

    @pytest.mark.asyncio
    async def test_creates_articles_with_pending_posts(self, test_db, feed_id, make_service):
        """Each item becomes an article with a PENDING post."""
        service = make_service({FEED_URL: rss_document(
            rss_item(title="First", guid="g-1", published=NOW - timedelta(hours=2)),
            rss_item(title="Second", guid="g-2", published=NOW - timedelta(hours=1)),
        )})
        result = await refresh(service)

        assert result.now == NOW
        summary = result.feeds[0]
        assert summary.feed_id == feed_id
        assert summary.items_read == 2
        assert summary.items_within_window == 2
        assert summary.articles_created == 2
        assert summary.duplicates == 0
        assert summary.error is None

        rows = stored_articles(test_db)
        assert [row.article.title for row in rows] == ["First", "Second"]
        assert all(row.post.status == "PENDING" for row in rows)
        assert rows[0].article.dedupe_key == "guid:g-1"
        assert rows[0].article.content_snippet == "Body text"
        assert "<p>Body text</p>" in rows[0].article.article_html

    @pytest.mark.asyncio
    async def test_last_fetched_at_advanced(self, test_db, feed_id, make_service):
        """The feed's last fetch time is set to the refresh time."""
        service = make_service({FEED_URL: rss_document(rss_item(guid="g-1"))})
        await refresh(service)
        assert test_db.get_feed(feed_id).last_fetched_at == NOW

    @pytest.mark.asyncio
    async def test_minimal_rss(self, test_db, feed_id, make_service):
        """An item with only a title and date is ingested."""
        xml = ("<rss><channel><item><title>Only title</title>"
               "<pubDate>Fri, 10 May 2024 10:00:00 GMT</pubDate></item></channel></rss>")
        service = make_service({FEED_URL: xml})
        summary = (await refresh(service)).feeds[0]

        assert summary.articles_created == 1
        article = stored_articles(test_db)[0].article
        assert article.title == "Only title"
        assert article.content_snippet == "Only title"
        assert "Only title" in article.article_html

    @pytest.mark.asyncio
    async def test_invalid_items_counted(self, test_db, feed_id, make_service):
        """Items without a date, or without title and text, are invalid."""
        xml = rss_document(
            "<item><title>No date</title></item>",
            "<item><pubDate>Fri, 10 May 2024 10:00:00 GMT</pubDate></item>",
            rss_item(title="Valid", guid="g-1"),
        )
        summary = (await refresh(make_service({FEED_URL: xml}))).feeds[0]
        assert summary.items_read == 3
        assert summary.invalid_items == 2
        assert summary.articles_created == 1

    @pytest.mark.asyncio
    async def test_empty_owner_rejected(self, make_service):
        """An empty owner key raises ValueError."""
        with pytest.raises(ValueError):
            await make_service({}).refresh_owner_feeds("")

    @pytest.mark.asyncio
    async def test_owner_without_feeds(self, make_service):
        """No feeds means no summaries."""
        result = await refresh(make_service({}))
        assert result.feeds == []

    @pytest.mark.asyncio
    async def test_other_owners_feeds_untouched(self, test_db, feed_id, make_service):
        """Only the caller's feeds are fetched."""
        test_db.add_feed("someone-else", OTHER_FEED_URL)
        fetcher = FakeFetcher({FEED_URL: rss_document(rss_item(guid="g-1"))})
        await refresh(make_service({}, fetcher=fetcher))
        assert fetcher.calls == [FEED_URL]

    @pytest.mark.asyncio
    async def test_nested_promo_container_removed(self, test_db, feed_id, make_service):
        """A promo container is dropped whole, nested elements included."""
        encoded = (
            "<p>Real story text.</p>"
            '<div class="outpost-pub-container"><div class="inner">Promo header</div>'
            "<p>Subscribe to our newsletter</p></div>"
        )
        service = make_service({FEED_URL: rss_document(rss_item(
            guid="g-1", extra=f"<content:encoded><![CDATA[{encoded}]]></content:encoded>",
        ))})
        await refresh(service)

        html = stored_articles(test_db)[0].article.article_html
        assert "Real story text." in html
        assert "Promo header" not in html
        assert "Subscribe to our newsletter" not in html

    @pytest.mark.asyncio
    async def test_tolerates_stray_ampersands_and_html_entities(self, test_db, feed_id, make_service):
        """Publisher XML slips do not cost the whole feed."""
        service = make_service({FEED_URL: rss_document(
            rss_item(title="Caf&eacute; news", link="https://example.com/a?x=1&y=2"),
        )})
        summary = (await refresh(service)).feeds[0]

        assert summary.error is None
        article = stored_articles(test_db)[0].article
        assert article.title == "Café news"
        assert article.dedupe_key == "link:https://example.com/a?x=1&y=2"


class TestIdempotence:
    """Refreshing the same feed twice creates nothing new."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("item_kwargs", [
        {"guid": "g-1"},
        {"link": "https://example.com/posts/1"},
        {},
    ], ids=["guid", "link", "hash"])
    async def test_second_refresh_creates_nothing(self, test_db, feed_id, make_service, item_kwargs):
        """Items keyed by guid, link or content hash are recognized."""
        service = make_service({FEED_URL: rss_document(rss_item(**item_kwargs))})

        first = (await refresh(service)).feeds[0]
        second = (await refresh(service, now=NOW + timedelta(minutes=1))).feeds[0]

        assert first.articles_created == 1
        assert second.articles_created == 0
        assert second.duplicates == 1
        assert len(stored_articles(test_db)) == 1

    @pytest.mark.asyncio
    async def test_hash_key_prefix(self, test_db, feed_id, make_service):
        """Items without guid or link get a hash key."""
        await refresh(make_service({FEED_URL: rss_document(rss_item())}))
        assert stored_articles(test_db)[0].article.dedupe_key.startswith("hash:")

    @pytest.mark.asyncio
    async def test_concurrent_insert_counts_as_duplicate(self, test_db, feed_id, make_service, metrics):
        """A uniqueness violation on insert is a duplicate, not an error."""
        service = make_service({FEED_URL: rss_document(rss_item(guid="g-1"))})
        with patch.object(test_db.articles, "create", side_effect=sqlite3.IntegrityError("UNIQUE")):
            summary = (await refresh(service)).feeds[0]

        assert summary.error is None
        assert summary.duplicates == 1
        assert summary.articles_created == 0
        assert metrics.registry.get_sample_value(
            "rss_items_skipped_total", {"policy": "if-empty-or-changed"}
        ) == 1


class TestReprocessPolicy:
    """Tests for updating existing articles."""

    ORIGINAL = "<p>Original body text</p>"
    REWRITTEN = "<p>Completely rewritten article content with many more words than before</p>"

    @pytest.mark.asyncio
    async def test_never_keeps_stored_html(self, test_db, feed_id, make_service, metrics):
        """'never' skips existing articles."""
        await refresh(make_service({FEED_URL: rss_document(rss_item(guid="g-1", description=self.ORIGINAL))}))
        service = make_service(
            {FEED_URL: rss_document(rss_item(guid="g-1", description=self.REWRITTEN))}, policy="never"
        )
        summary = (await refresh(service)).feeds[0]

        assert summary.articles_updated == 0
        assert summary.duplicates == 1
        assert "Original body text" in stored_articles(test_db)[0].article.article_html
        assert metrics.registry.get_sample_value("rss_items_skipped_total", {"policy": "never"}) == 1

    @pytest.mark.asyncio
    async def test_if_empty_or_changed_updates(self, test_db, feed_id, make_service, diagnostics):
        """Substantial changes overwrite the stored HTML."""
        await refresh(make_service({FEED_URL: rss_document(rss_item(guid="g-1", description=self.ORIGINAL))}))
        service = make_service({FEED_URL: rss_document(rss_item(guid="g-1", description=self.REWRITTEN))})
        summary = (await refresh(service)).feeds[0]

        assert summary.articles_updated == 1
        assert summary.articles_created == 0
        rows = stored_articles(test_db)
        assert len(rows) == 1
        assert "Completely rewritten" in rows[0].article.article_html
        assert diagnostics.get_recent()[0].article_id == rows[0].article.id

    @pytest.mark.asyncio
    async def test_if_empty_fills_blank(self, test_db, feed_id, make_service):
        """'if-empty' fills articles whose HTML is blank."""
        await refresh(make_service({FEED_URL: rss_document(rss_item(guid="g-1"))}))
        article_id = stored_articles(test_db)[0].article.id
        test_db.articles.update_article_html_by_id(article_id, "")

        summary = (await refresh(make_service({FEED_URL: rss_document(rss_item(guid="g-1"))}, policy="if-empty"))).feeds[0]
        assert summary.articles_updated == 1
        assert "Body text" in test_db.articles.find_by_id(article_id).article_html

    @pytest.mark.asyncio
    async def test_whitespace_only_change_not_rewritten(self, test_db, feed_id, make_service):
        """Re-ingesting HTML that only differs in whitespace leaves the article alone."""
        await refresh(make_service({FEED_URL: rss_document(rss_item(guid="g-1", description=self.ORIGINAL))}))
        before = stored_articles(test_db)[0].article.article_html

        reflowed = "<p>\n  Original   body\n\ttext  </p>\n"
        summary = (await refresh(
            make_service({FEED_URL: rss_document(rss_item(guid="g-1", description=reflowed))}),
            now=NOW + timedelta(minutes=1),
        )).feeds[0]

        assert summary.articles_updated == 0
        assert summary.duplicates == 1
        assert stored_articles(test_db)[0].article.article_html == before


class TestWindow:
    """Tests for the time window filter."""

    @pytest.mark.asyncio
    async def test_window_boundaries(self, test_db, feed_id, make_service):
        """Items from window start to now are kept, others dropped."""
        service = make_service({FEED_URL: rss_document(
            rss_item(title="Edge", guid="edge", published=NOW - timedelta(days=7)),
            rss_item(title="Too old", guid="old", published=NOW - timedelta(days=7, seconds=1)),
            rss_item(title="Future", guid="future", published=NOW + timedelta(minutes=5)),
            rss_item(title="Now", guid="now", published=NOW),
        )})
        summary = (await refresh(service)).feeds[0]

        assert summary.items_read == 4
        assert summary.items_within_window == 2
        assert sorted(row.article.title for row in stored_articles(test_db)) == ["Edge", "Now"]

    @pytest.mark.asyncio
    async def test_window_from_app_params(self, test_db, feed_id, make_service):
        """The stored window parameter applies without an override."""
        test_db.set_app_param("posts_time_window_days", "1")
        service = make_service({FEED_URL: rss_document(
            rss_item(guid="recent", published=NOW - timedelta(hours=3)),
            rss_item(guid="older", published=NOW - timedelta(days=2)),
        )})
        summary = (await service.refresh_owner_feeds(OWNER, now=NOW, cooldown_seconds=0)).feeds[0]
        assert summary.items_within_window == 1

    def test_filter_millisecond_edges(self):
        """Window start and now are inclusive down to the millisecond."""
        window_start = NOW - timedelta(days=7)

        def candidate(published_at):
            return IngestionCandidate(
                title="t", content_snippet="s", published_at=published_at,
                guid=None, link=None, article_html="<p>t</p>",
            )

        edges = [
            candidate(window_start - timedelta(milliseconds=1)),
            candidate(window_start),
            candidate(NOW),
            candidate(NOW + timedelta(milliseconds=1)),
        ]
        kept = filter_within_window(edges, window_start, NOW)
        assert [c.published_at for c in kept] == [window_start, NOW]


class TestCooldown:
    """Tests for the refresh cooldown."""

    @pytest.mark.asyncio
    async def test_skipped_during_cooldown(self, test_db, feed_id, make_service):
        """A recently fetched feed is not fetched again."""
        test_db.mark_feed_fetched(feed_id, NOW - timedelta(minutes=10))
        fetcher = FakeFetcher({FEED_URL: rss_document(rss_item(guid="g-1"))})
        summary = (await refresh(make_service({}, fetcher=fetcher), cooldown_seconds=3600)).feeds[0]

        assert summary.skipped_by_cooldown is True
        assert summary.cooldown_seconds_remaining == 3000
        assert fetcher.calls == []
        assert test_db.get_feed(feed_id).last_fetched_at == NOW - timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_allowed_at_boundary(self, test_db, feed_id, make_service):
        """The feed is refreshed once exactly the cooldown has passed."""
        test_db.mark_feed_fetched(feed_id, NOW - timedelta(seconds=3600))
        summary = (await refresh(
            make_service({FEED_URL: rss_document(rss_item(guid="g-1"))}), cooldown_seconds=3600
        )).feeds[0]
        assert summary.skipped_by_cooldown is False
        assert summary.articles_created == 1

    def test_remaining_rounds_up(self):
        """Partial seconds round up and never report zero while active."""
        cooldown = timedelta(seconds=60)
        assert cooldown_seconds_remaining(NOW - timedelta(seconds=59.5), NOW, cooldown) == 1
        assert cooldown_seconds_remaining(NOW - timedelta(seconds=10.2), NOW, cooldown) == 50
        assert cooldown_seconds_remaining(None, NOW, cooldown) == 0
        assert cooldown_seconds_remaining(NOW - cooldown, NOW, cooldown) == 0


class TestFailures:
    """One feed failing does not stop the others."""

    @pytest.mark.asyncio
    async def test_malformed_xml_isolated(self, test_db, feed_id, make_service):
        """A parse error is reported for its feed only."""
        other_id = test_db.add_feed(OWNER, OTHER_FEED_URL, "Other")
        service = make_service({
            FEED_URL: "<",
            OTHER_FEED_URL: rss_document(rss_item(guid="g-1")),
        })
        result = await refresh(service)
        by_id = {summary.feed_id: summary for summary in result.feeds}

        assert by_id[feed_id].error == {"message": "Failed to parse feed XML"}
        assert by_id[feed_id].articles_created == 0
        assert by_id[other_id].error is None
        assert by_id[other_id].articles_created == 1
        assert test_db.get_feed(feed_id).last_fetched_at == NOW
        assert test_db.get_feed(other_id).last_fetched_at == NOW

    @pytest.mark.asyncio
    async def test_http_error_reported(self, test_db, feed_id, make_service):
        """Fetch failures become the summary's error message."""
        summary = (await refresh(make_service({FEED_URL: FeedFetchHttpError(404)}))).feeds[0]
        assert summary.error == {"message": "Failed to fetch feed: HTTP 404"}

    @pytest.mark.asyncio
    async def test_normalizer_failure_falls_back(self, test_db, feed_id, make_service, metrics):
        """A normalizer exception stores a minimal article and counts a failure."""
        service = make_service({FEED_URL: rss_document(
            rss_item(title="Broken", guid="g-1", link="https://example.com/broken")
        )})
        with patch(
            "feedpost.services.ingestion_service.normalize_item",
            side_effect=NormalizationError("boom"),
        ):
            summary = (await refresh(service)).feeds[0]

        assert summary.articles_created == 1
        article = stored_articles(test_db)[0].article
        assert article.article_html == '<p>Broken <a href="https://example.com/broken">https://example.com/broken</a></p>'
        assert metrics.registry.get_sample_value("rss_items_failed_total") == 1

    @pytest.mark.asyncio
    async def test_any_item_exception_falls_back(self, test_db, feed_id, make_service, metrics):
        """Unexpected item errors degrade to the minimal article too."""
        service = make_service({FEED_URL: rss_document(
            rss_item(title="Odd", guid="g-1", link="https://example.com/odd"),
            rss_item(title="Fine", guid="g-2"),
        )})

        def select(item, *args, **kwargs):
            if item.title == "Odd":
                raise RecursionError("maximum recursion depth exceeded")
            return select_body_and_lead(item, *args, **kwargs)

        with patch("feedpost.services.ingestion_service.select_body_and_lead", side_effect=select):
            summary = (await refresh(service)).feeds[0]

        assert summary.error is None
        assert summary.articles_created == 2
        html_by_title = {row.article.title: row.article.article_html for row in stored_articles(test_db)}
        assert html_by_title["Odd"] == '<p>Odd <a href="https://example.com/odd">https://example.com/odd</a></p>'
        assert "Body text" in html_by_title["Fine"]
        assert metrics.registry.get_sample_value("rss_items_failed_total") == 1

    @pytest.mark.asyncio
    async def test_deeply_nested_item_isolated(self, test_db, feed_id, make_service):
        """Pathologically nested item HTML does not stop the refresh."""
        other_id = test_db.add_feed(OWNER, OTHER_FEED_URL, "Other")
        nested = "<span>" * 600 + "x" + "</span>" * 600
        service = make_service({
            FEED_URL: rss_document(rss_item(title="Deep", guid="deep", description=nested)),
            OTHER_FEED_URL: rss_document(rss_item(guid="g-1")),
        })
        result = await refresh(service)
        by_id = {summary.feed_id: summary for summary in result.feeds}

        assert by_id[feed_id].error is None
        assert by_id[feed_id].articles_created == 1
        assert by_id[other_id].articles_created == 1
        assert test_db.get_feed(feed_id).last_fetched_at == NOW
        assert test_db.get_feed(other_id).last_fetched_at == NOW

    @pytest.mark.asyncio
    async def test_unexpected_feed_error_isolated(self, test_db, feed_id, make_service):
        """A non-fetch error is reported for its feed and the others still run."""
        other_id = test_db.add_feed(OWNER, OTHER_FEED_URL, "Other")
        broken = rss_document(rss_item(guid="broken"), title="Broken")

        def parse(body):
            if body == broken:
                raise RuntimeError("boom")
            return parse_feed(body)

        service = make_service({
            FEED_URL: broken,
            OTHER_FEED_URL: rss_document(rss_item(guid="g-1")),
        })
        with patch("feedpost.services.refresh_service.parse_feed", side_effect=parse):
            result = await refresh(service)
        by_id = {summary.feed_id: summary for summary in result.feeds}

        assert by_id[feed_id].error == {"message": "Failed to process feed: boom"}
        assert by_id[other_id].error is None
        assert by_id[other_id].articles_created == 1
        assert test_db.get_feed(feed_id).last_fetched_at == NOW

    @pytest.mark.asyncio
    async def test_database_errors_propagate(self, test_db, feed_id, make_service):
        """A persistence failure aborts the refresh."""
        service = make_service({FEED_URL: rss_document(rss_item(guid="g-1"))})
        with patch.object(
            test_db.articles, "find_existing_dedupe_keys", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            with pytest.raises(sqlite3.OperationalError):
                await refresh(service)


class TestConcurrency:
    """Concurrent refreshes for one owner share a single run."""

    @pytest.mark.asyncio
    async def test_single_fetch_for_concurrent_refreshes(self, test_db, feed_id, make_service):
        """The second caller joins the in-flight refresh."""
        release = asyncio.Event()
        calls = []

        class GatedFetcher:
            async def fetch(self, url, timeout_ms=None):
                calls.append(url)
                await release.wait()
                return rss_document(rss_item(guid="g-1"))

        service = make_service({}, fetcher=GatedFetcher())
        first = asyncio.ensure_future(refresh(service))
        second = asyncio.ensure_future(refresh(service))
        await asyncio.sleep(0.01)
        assert service.locks.is_running(OWNER)
        release.set()

        results = await asyncio.gather(first, second)
        assert calls == [FEED_URL]
        assert results[0] is results[1]
        assert len(stored_articles(test_db)) == 1
        assert not service.locks.is_running(OWNER)

    @pytest.mark.asyncio
    async def test_failed_run_releases_lock(self):
        """A failing run does not leave the owner locked."""
        locks = RefreshLocks()

        async def boom():
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await locks.run(OWNER, boom)
        await asyncio.sleep(0)
        assert not locks.is_running(OWNER)


class TestMetricsAndDiagnostics:
    """Per-item metrics and diagnostics snapshots."""

    @pytest.mark.asyncio
    async def test_counters(self, test_db, feed_id, make_service, metrics):
        """Items, sources and durations are recorded."""
        await refresh(make_service({FEED_URL: rss_document(
            rss_item(guid="g-1"), rss_item(guid="g-2", published=NOW - timedelta(days=30)),
        )}))
        sample = metrics.registry.get_sample_value
        assert sample("rss_items_total") == 2
        assert sample("rss_items_processed_total") == 1
        assert sample("rss_chosen_source_total", {"source": "descriptionOrSummary"}) == 2
        assert sample("rss_item_duration_ms_count") == 2

    @pytest.mark.asyncio
    async def test_diagnostics_recorded(self, test_db, feed_id, make_service, diagnostics):
        """Each created article is snapshotted."""
        await refresh(make_service({FEED_URL: rss_document(rss_item(title="Snap", guid="g-1"))}))
        entry = diagnostics.get_recent()[0]

        assert entry.feed_id == feed_id
        assert entry.feed_title == "Example"
        assert entry.item_title == "Snap"
        assert entry.chosen_source == "descriptionOrSummary"
        assert entry.has_block_tags is True
        assert entry.weak_content is True
        assert entry.article_html_preview.startswith("<p>Body text</p>")
        assert entry.excerpt == "Body text"
        assert entry.main_image_url is None

    @pytest.mark.asyncio
    async def test_diagnostics_carry_main_image(self, test_db, feed_id, make_service, diagnostics):
        """The chosen top image is kept on the snapshot."""
        media = '<media:content url="https://cdn.example.com/lead.jpg" width="800" height="600"/>'
        await refresh(make_service({FEED_URL: rss_document(rss_item(guid="g-1", extra=media))}))
        assert diagnostics.get_recent()[0].main_image_url == "https://cdn.example.com/lead.jpg"
