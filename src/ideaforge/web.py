"""HTTP API over the scraper and the enrichment pipeline."""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictBool, StrictInt

from .config import load_config, section
from .errors import IdeaforgeError, NotFoundError, ValidationError
from .runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)


class ScrapeRunRequest(BaseModel):
    source: str | None = None


class SourcePatch(BaseModel):
    enabled: StrictBool | None = None
    config: dict[str, Any] | None = None


class EnrichmentRunRequest(BaseModel):
    item_id: StrictInt | None = None


def get_runtime(request: Request) -> Runtime:
    """Dependency to get the shared runtime."""
    return request.app.state.runtime


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]


# ── Scraper ─────────────────────────────────────────────────────────

scraper = APIRouter(prefix="/scraper", tags=["scraper"])


@scraper.post("/run")
async def run_scraper(runtime: RuntimeDep, body: ScrapeRunRequest | None = None):
    """Scrape every enabled source, or the one named in the body."""
    return await runtime.runner.run(body.source if body else None)


@scraper.get("/sources")
async def list_sources(runtime: RuntimeDep):
    sources = [
        {
            "id": s["id"],
            "name": s["name"],
            "kind": s["kind"],
            "enabled": s["enabled"],
            "last_fetch_at": s["last_fetch_at"],
        }
        for s in runtime.db.list_sources()
    ]
    return {"sources": sources}


@scraper.patch("/sources/{source_id}")
async def update_source(source_id: int, patch: SourcePatch, runtime: RuntimeDep):
    """Enable/disable a source or replace its config."""
    if runtime.db.get_source(source_id) is None:
        raise NotFoundError("Source", source_id)
    success = runtime.db.update_source(source_id, enabled=patch.enabled, config=patch.config)
    return {"success": success}


# ── Enrichment ──────────────────────────────────────────────────────

enrichment = APIRouter(prefix="/enrichment", tags=["enrichment"])


@enrichment.post("/run")
async def run_enrichment(
    runtime: RuntimeDep,
    background: BackgroundTasks,
    body: EnrichmentRunRequest | None = None,
):
    """Queue one item, or backfill unenriched items, then process the queue.

    Jobs run after the response is sent.
    """
    item_id = body.item_id if body else None
    if item_id is not None:
        queued = runtime.pipeline.enqueue_item(item_id)
        message = "Item queued for enrichment"
    else:
        queued = runtime.pipeline.enqueue_backfill()
        message = "Items queued for enrichment"

    background.add_task(runtime.pipeline.run_queued)
    return {"message": message, "items_queued": queued}


@enrichment.get("/ideas/{idea_id}/signals")
async def get_signals(idea_id: int, runtime: RuntimeDep):
    return {"signals": runtime.pipeline.get_signals(idea_id)}


@enrichment.get("/items/{item_id}/jobs")
async def list_jobs(item_id: int, runtime: RuntimeDep):
    """Job history for a raw item, newest last."""
    return {"item_id": item_id, "jobs": runtime.db.list_jobs(item_id)}


health = APIRouter(tags=["health"])


@health.get("/status")
async def status(runtime: RuntimeDep):
    return {
        "store": runtime.db.get_stats(),
        "scrapes": runtime.db.get_scrape_stats(),
        "pending_events": runtime.channel.pending,
        "dropped_events": [e.to_dict() for e in runtime.channel.dropped],
    }


# ── Errors ──────────────────────────────────────────────────────────


async def handle_ideaforge_error(request: Request, exc: IdeaforgeError) -> JSONResponse:
    return JSONResponse({"error": jsonable_encoder(exc.to_dict())}, status_code=exc.status)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    field = str(errors[0]["loc"][-1]) if errors and errors[0].get("loc") else None
    error = ValidationError(
        f"Invalid request: {errors[0]['msg']}" if errors else "Invalid request",
        field=field,
        errors=jsonable_encoder(errors),
    )
    return await handle_ideaforge_error(request, error)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        {"error": {"code": "INTERNAL_ERROR", "message": str(exc)}}, status_code=500
    )


# ── App ─────────────────────────────────────────────────────────────


def create_app(runtime: Runtime, consume_events: bool = True) -> FastAPI:
    """Build the app around a runtime. The event consumer runs for the app's lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        consumer = asyncio.create_task(runtime.channel.run()) if consume_events else None
        try:
            yield
        finally:
            if consumer is not None:
                consumer.cancel()
                await asyncio.gather(consumer, return_exceptions=True)

    app = FastAPI(
        title="Ideaforge API",
        description="Scrape idea sources and read enrichment signals",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.include_router(scraper)
    app.include_router(enrichment)
    app.include_router(health)

    app.add_exception_handler(IdeaforgeError, handle_ideaforge_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    return app


def main() -> None:
    """Entry point for the ideaforge-web command."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    config = load_config(sys.argv[1] if len(sys.argv) > 1 else None)
    runtime = build_runtime(config)
    server_cfg = section(config, "server")
    try:
        uvicorn.run(
            create_app(runtime),
            host=server_cfg.get("host", "127.0.0.1"),
            port=server_cfg.get("port", 8080),
        )
    finally:
        runtime.db.close()
