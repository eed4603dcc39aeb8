"""Scrape runner — dedupes and persists what enabled sources return, then publishes it."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import aiohttp

from .config import load_config, section
from .db import IdeaforgeDB
from .events import EventChannel, ItemNormalized
from .sources import BaseAdapter, Candidate, RetryPolicy, content_hash, create_adapter

logger = logging.getLogger(__name__)


class ScrapeRunner:
    """Runs one pass over some or all enabled sources.

    Sources are processed one after another. A source that fails to build
    or fetch is logged and skipped; a candidate that fails is logged and
    skipped. Neither aborts the run.
    """

    def __init__(
        self,
        db: IdeaforgeDB,
        channel: EventChannel,
        config: dict[str, Any] | None = None,
        policy: RetryPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.db = db
        self.channel = channel
        self._scraper_cfg = section(config or {}, "scraper")
        self.policy = policy or RetryPolicy.from_config(self._scraper_cfg)
        self.session = session

    def build_adapter(self, source: dict[str, Any]) -> BaseAdapter:
        return create_adapter(
            source,
            policy=self.policy,
            session=self.session,
            timeout=self._scraper_cfg.get("request_timeout_seconds", 30),
            user_agent=self._scraper_cfg.get(
                "user_agent", "Mozilla/5.0 (compatible; IdeaScraperBot/1.0)"
            ),
        )

    async def run(self, source_name: str | None = None) -> dict[str, Any]:
        """Scrape every enabled source, or just the one named.

        Returns aggregate counts. ``sources_processed`` counts every matched
        source, including ones that failed.
        """
        # a failing source query is a request-level error and propagates
        sources = self.db.list_sources(enabled_only=True, name=source_name)
        results: dict[str, Any] = {
            "sources_processed": len(sources),
            "items_found": 0,
            "items_normalized": 0,
            "sources": {},
        }

        for source in sources:
            summary = await self.scrape_source(source)
            results["sources"][source["name"]] = summary
            results["items_found"] += summary["found"]
            results["items_normalized"] += summary["normalized"]

        logger.info(
            "Scrape complete: %d sources, %d found, %d normalized",
            results["sources_processed"],
            results["items_found"],
            results["items_normalized"],
        )
        return results

    async def scrape_source(self, source: dict[str, Any]) -> dict[str, Any]:
        name = source["name"]
        summary: dict[str, Any] = {"found": 0, "normalized": 0}
        try:
            adapter = self.build_adapter(source)
            logger.info("Scraping %s (%s)", name, source["kind"])
            candidates = await adapter.fetch()
        except Exception as e:
            logger.error("Error scraping %s: %s", name, e)
            summary["error"] = str(e)
            self.db.log_scrape(name, 0, 0, error=str(e))
            return summary

        summary["found"] = len(candidates)
        logger.info("%s returned %d candidates", name, len(candidates))

        for candidate in candidates:
            try:
                if self._ingest(source, adapter, candidate):
                    summary["normalized"] += 1
            except Exception as e:
                logger.error(
                    "Error ingesting %s from %s: %s", candidate.url or candidate.external_id, name, e
                )

        self.db.record_fetch(
            source["id"],
            etag=adapter.cache_tokens.get("etag"),
            last_modified=adapter.cache_tokens.get("last_modified"),
        )
        self.db.log_scrape(name, summary["found"], summary["normalized"])
        return summary

    def _ingest(self, source: dict[str, Any], adapter: BaseAdapter, candidate: Candidate) -> bool:
        """Persist, normalize and publish one candidate. False when it was already seen."""
        hashed = content_hash(candidate.url, candidate.title)
        if self.db.raw_item_exists(hashed):
            return False

        item_id = self.db.insert_raw_item(
            source_id=source["id"],
            ext_id=candidate.external_id,
            url=candidate.url,
            raw=candidate.raw,
            content_hash=hashed,
        )
        if item_id is None:
            # lost a race with an overlapping run
            return False

        normalized = adapter.normalize(candidate.raw)
        self.db.mark_normalized(item_id)

        event = ItemNormalized(item_id=item_id, title=normalized.title, url=normalized.url)
        try:
            self.channel.publish(event)
        except Exception as e:
            # the stored item stays; the backfill path picks it up
            logger.error("Failed to publish normalization of item %d: %s", item_id, e)
        return True


async def run_once(
    config: dict | None = None, session: aiohttp.ClientSession | None = None
) -> dict:
    """Run a single scrape, enrich whatever it produced, and exit."""
    from .runtime import build_runtime

    if config is None:
        config = load_config()

    runtime = build_runtime(config, session=session)
    logger.info("Ideaforge scrape starting (one-shot)")
    try:
        results = await runtime.runner.run()
        await runtime.channel.drain()
        results["enrichment"] = await runtime.pipeline.run_queued()
        return results
    finally:
        runtime.db.close()


def main() -> None:
    """CLI entry point — runs a single scrape and exits."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    config_path = sys.argv[1] if len(sys.argv) > 1 else None
    results = asyncio.run(run_once(load_config(config_path)))
    logger.info(
        "Done: %d sources, %d found, %d normalized",
        results["sources_processed"],
        results["items_found"],
        results["items_normalized"],
    )
