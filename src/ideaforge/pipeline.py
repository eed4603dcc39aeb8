"""Enrichment pipeline — fan a normalized item out to the signal extractors and
fold the results into an idea record.

Each item gets an enrichment job that moves ``queued -> running -> done`` or
``queued -> running -> failed``. Jobs are independent: one item failing never
touches another. Failed jobs are not retried automatically.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import traceback
from typing import Any, Callable

import aiohttp

from .config import section
from .db import IdeaforgeDB
from .enrichers import (
    analyze_sentiment,
    detect_language,
    enrich_with_readability,
    extract_entities,
    extract_keyphrases,
)
from .enrichers.embedding import generate_embedding, vector_to_bytes
from .errors import NotFoundError
from .events import ItemNormalized
from .sources import NormalizedItem, create_adapter

logger = logging.getLogger(__name__)

SIGNAL_NAMES = ("readability", "language", "keyphrases", "entities", "sentiment", "embedding")
IDEA_SOURCE_LABEL = "scraper"


def title_hash(title: str) -> str:
    """Corpus-wide duplicate key for an idea title."""
    return hashlib.sha256(title.lower().strip().encode("utf-8")).hexdigest()


def merge_tags(adapter_tags: list[str], keyphrases: list[dict], limit: int = 5) -> list[str]:
    """Adapter tags first, then the top keyphrases, without repeats."""
    tags: list[str] = []
    for tag in list(adapter_tags) + [kp["phrase"] for kp in keyphrases[:limit]]:
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class EnrichmentPipeline:
    """Consumes item-normalized events and explicit enqueue requests."""

    def __init__(
        self,
        db: IdeaforgeDB,
        config: dict[str, Any] | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.db = db
        self.session = session
        cfg = section(config or {}, "enrichment")
        self.readability_timeout: float = cfg.get("readability_timeout_seconds", 5)
        self.backfill_limit: int = cfg.get("backfill_limit", 100)
        self.tag_keyphrases: int = cfg.get("tag_keyphrases", 5)

    # ── Entry points ────────────────────────────────────────────────

    async def handle_event(self, event: ItemNormalized) -> str:
        """Enqueue-and-run for one delivered event. Safe under redelivery."""
        if self.db.has_job(event.item_id, ("done",)):
            logger.debug("Item %d already enriched, ignoring redelivery", event.item_id)
            return "skipped"

        job_id = self.db.create_job(event.item_id)
        if job_id is None:
            logger.debug("Item %d already has a job in flight", event.item_id)
            return "skipped"
        return await self.process_job(job_id, event=event)

    def enqueue_item(self, item_id: int) -> int:
        """Queue one item. Returns 1 if a job was created, 0 if one is already in flight."""
        if self.db.get_raw_item(item_id) is None:
            raise NotFoundError("Raw item", item_id)
        job_id = self.db.create_job(item_id)
        if job_id is None:
            logger.info("Item %d already queued or running", item_id)
            return 0
        return 1

    def enqueue_backfill(self, limit: int | None = None) -> int:
        """Queue normalized items that were never enriched (catch-up path)."""
        queued = 0
        for item_id in self.db.list_unenriched_item_ids(limit or self.backfill_limit):
            if self.db.create_job(item_id) is not None:
                queued += 1
        logger.info("Backfill queued %d items", queued)
        return queued

    async def run_queued(self, limit: int | None = None) -> dict[str, int]:
        """Process queued jobs oldest first."""
        summary = {"done": 0, "failed": 0, "skipped": 0}
        for job_id in self.db.list_queued_job_ids(limit):
            status = await self.process_job(job_id)
            summary[status] += 1
        return summary

    def get_signals(self, idea_id: int) -> dict[str, Any]:
        signals = self.db.get_idea_signals(idea_id)
        if signals is None:
            raise NotFoundError("Idea", idea_id)
        return signals

    # ── Job processing ──────────────────────────────────────────────

    async def process_job(self, job_id: int, event: ItemNormalized | None = None) -> str:
        """Run one job to a terminal state. Returns done, failed or skipped."""
        if not self.db.claim_job(job_id):
            return "skipped"
        job = self.db.get_job(job_id)
        item_id = job["item_id"]

        try:
            result = await self._enrich(item_id, event)
        except Exception as e:
            logger.error("Enrichment failed for item %d: %s", item_id, e)
            self.db.fail_job(
                job_id,
                {"message": str(e), "type": type(e).__name__, "stack": traceback.format_exc()},
            )
            return "failed"

        self.db.complete_job(job_id, result)
        logger.info("Item %d enriched into idea %d", item_id, result["idea_id"])
        return "done"

    async def _enrich(self, item_id: int, event: ItemNormalized | None) -> dict[str, Any]:
        item = self.db.get_raw_item(item_id)
        if item is None:
            raise NotFoundError("Raw item", item_id)

        normalized = self._normalize(item)
        raw = item["raw"]
        title = normalized.title or (event.title if event else "")
        url = (event.url if event else "") or normalized.url or item["url"]
        summary = normalized.summary or raw.get("summary") or raw.get("description") or ""

        extracted = await self.extract_signals(url, f"{title} {summary}")

        hashed = title_hash(title)
        is_duplicate = self.db.find_idea_by_title_hash(hashed) is not None
        embedding = extracted["embedding"]
        signals = {
            "readability": extracted["readability"],
            "language": extracted["language"],
            "keyphrases": extracted["keyphrases"],
            "entities": extracted["entities"],
            "sentiment": extracted["sentiment"],
            "embedding": {"model": embedding["model"], "dimensions": len(embedding["vector"])},
            "isDuplicate": is_duplicate,
        }
        tags = merge_tags(normalized.tags, extracted["keyphrases"], self.tag_keyphrases)

        # title-hash collisions are flagged, not suppressed
        idea_id = self.db.insert_idea(
            title=title,
            description=summary,
            source=IDEA_SOURCE_LABEL,
            source_url=url,
            raw_data=raw,
            signals=signals,
            tags=tags,
            title_hash=hashed,
            embedding=vector_to_bytes(embedding["vector"]),
            status="completed",
        )
        return {"idea_id": idea_id, "signals": signals}

    def _normalize(self, item: dict[str, Any]) -> NormalizedItem:
        source = self.db.get_source(item["source_id"])
        if source is None:
            raise NotFoundError("Source", item["source_id"])
        return create_adapter(source).normalize(item["raw"])

    async def extract_signals(self, url: str, text: str) -> dict[str, Any]:
        """Run all six extractors concurrently and join.

        Every extractor settles before the join; if any of them raised, the
        first error is re-raised and nothing is merged.
        """

        async def run_sync(fn: Callable[[str], Any]) -> Any:
            return fn(text)

        results = await asyncio.gather(
            enrich_with_readability(url, session=self.session, timeout=self.readability_timeout),
            run_sync(detect_language),
            run_sync(extract_keyphrases),
            run_sync(extract_entities),
            run_sync(analyze_sentiment),
            run_sync(generate_embedding),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return dict(zip(SIGNAL_NAMES, results))
