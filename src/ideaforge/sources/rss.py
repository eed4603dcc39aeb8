"""RSS/Atom source adapter built on feedparser."""

from __future__ import annotations

import logging
from typing import Any

import feedparser

from .base import BaseAdapter, Candidate, NormalizedItem, as_text, parse_datetime

logger = logging.getLogger(__name__)


class RSSAdapter(BaseAdapter):
    kind = "rss"

    async def fetch(self) -> list[Candidate]:
        """Fetch the feed and return one candidate per entry."""
        feed_url = self._require_url()
        result = await self._get(feed_url)
        if result.not_modified:
            return []

        candidates = []
        for idx, item in enumerate(parse_feed(result.body)):
            ext_id = item.get("guid") or item.get("link") or f"{self.source.get('id')}-{idx}"
            candidates.append(
                Candidate(
                    external_id=ext_id,
                    url=item.get("link") or "",
                    raw=item,
                    title=item.get("title") or "",
                )
            )
        return candidates

    def normalize(self, raw: dict[str, Any]) -> NormalizedItem:
        categories = raw.get("category") or []
        if not isinstance(categories, list):
            categories = [categories]

        return NormalizedItem(
            title=as_text(raw.get("title")),
            url=as_text(raw.get("link")),
            summary=as_text(raw.get("description")),
            author=raw.get("author") or None,
            posted_at=parse_datetime(raw.get("pubDate")),
            tags=[str(c) for c in categories if c],
        )


def parse_feed(body: str) -> list[dict[str, Any]]:
    """Flatten feed entries into JSON-safe payloads.

    Malformed feeds are parsed leniently; whatever entries feedparser
    recovers are kept.
    """
    data = feedparser.parse(body.encode("utf-8"))
    if data.bozo:
        logger.debug("Feed parsed leniently: %s", data.get("bozo_exception"))

    items = []
    for entry in data.entries:
        item: dict[str, Any] = {
            "title": entry.get("title"),
            "link": entry.get("link"),
            "description": entry.get("summary"),
            "guid": entry.get("id"),
            "pubDate": entry.get("published") or entry.get("updated"),
            "author": entry.get("author"),
        }
        categories = [t.get("term") for t in entry.get("tags", []) if t.get("term")]
        if categories:
            item["category"] = categories
        items.append({k: v for k, v in item.items() if v})
    return items
