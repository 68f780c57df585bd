"""
Ingestion Diagnostics - bounded in-memory record of recent article snapshots.

Entries are keyed by article id. Re-recording an article moves it to the
most recent position; when the buffer is full the oldest entry is evicted.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone

MAX_ENTRIES = 200
DEFAULT_LIMIT = 25


@dataclass
class IngestionDiagnosticEntry:
    article_id: int
    feed_id: int | None = None
    feed_title: str | None = None
    item_title: str | None = None
    canonical_url: str | None = None
    published_at: datetime | None = None
    chosen_source: str = "empty"
    raw_description_length: int = 0
    body_html_raw_length: int = 0
    article_html_length: int = 0
    has_block_tags: bool = False
    looks_escaped_html: bool = False
    weak_content: bool = False
    article_html_preview: str = ""
    excerpt: str = ""
    main_image_url: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        for name in ("raw_description_length", "body_html_raw_length", "article_html_length"):
            value = getattr(self, name)
            setattr(self, name, max(0, int(value)) if isinstance(value, (int, float)) else 0)
        if not isinstance(self.article_html_preview, str):
            self.article_html_preview = ""


def clamp_limit(limit, capacity: int = MAX_ENTRIES) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    try:
        numeric = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return max(1, min(capacity, numeric))


class IngestionDiagnostics:
    """Ring buffer of IngestionDiagnosticEntry, newest first on read."""

    def __init__(self, capacity: int = MAX_ENTRIES):
        self.capacity = capacity
        self._entries: OrderedDict[int, IngestionDiagnosticEntry] = OrderedDict()
        self._lock = threading.Lock()

    def record(self, entry: IngestionDiagnosticEntry | None) -> None:
        if entry is None or entry.article_id is None:
            return
        with self._lock:
            self._entries.pop(entry.article_id, None)
            self._entries[entry.article_id] = entry
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def get_recent(self, limit=None, feed_id: int | None = None) -> list[IngestionDiagnosticEntry]:
        safe_limit = clamp_limit(limit, self.capacity)
        with self._lock:
            entries = list(reversed(self._entries.values()))

        items = []
        for entry in entries:
            if feed_id is not None and entry.feed_id != feed_id:
                continue
            items.append(entry)
            if len(items) >= safe_limit:
                break
        return items

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
