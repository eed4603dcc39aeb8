"""Wiring shared by the CLI, the HTTP app and the MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from .config import get_db_path, get_source_definitions, section
from .db import IdeaforgeDB
from .events import InMemoryEventChannel
from .pipeline import EnrichmentPipeline
from .scanner import ScrapeRunner
from .sources import ADAPTER_CLASSES

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: dict[str, Any]
    db: IdeaforgeDB
    channel: InMemoryEventChannel
    runner: ScrapeRunner
    pipeline: EnrichmentPipeline


def sync_sources(db: IdeaforgeDB, config: dict[str, Any]) -> int:
    """Insert configured sources that the store does not know yet."""
    added = 0
    known = {s["name"] for s in db.list_sources()}
    for definition in get_source_definitions(config, kinds=ADAPTER_CLASSES):
        if definition["name"] in known:
            continue
        db.upsert_source(
            name=definition["name"],
            kind=definition["kind"],
            config=definition.get("config") or {},
            enabled=definition.get("enabled", True),
        )
        added += 1
    return added


def build_runtime(
    config: dict[str, Any],
    db: IdeaforgeDB | None = None,
    session: aiohttp.ClientSession | None = None,
) -> Runtime:
    """Open the store, register configured sources and connect the pipeline to the channel.

    Without a ``session`` each scrape and enrichment run opens its own.
    """
    if db is None:
        db = IdeaforgeDB(get_db_path(config))
        db.connect()
    added = sync_sources(db, config)
    if added:
        logger.info("Registered %d new sources from config", added)

    channel = InMemoryEventChannel(
        max_deliveries=section(config, "events").get("max_deliveries", 3)
    )
    runner = ScrapeRunner(db, channel, config, session=session)
    pipeline = EnrichmentPipeline(db, config, session=session)
    channel.subscribe(pipeline.handle_event)
    return Runtime(config=config, db=db, channel=channel, runner=runner, pipeline=pipeline)
