"""Ideaforge MCP server — the scraper and enrichment pipeline as tools."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import load_config
from .errors import IdeaforgeError
from .runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)

TOOLS = [
    Tool(
        name="ideaforge_scrape",
        description="Run a scrape pass over enabled sources and enrich what it finds.",
        inputSchema={
            "type": "object",
            "properties": {
                "source": {
                    "type": "string",
                    "description": "Scrape only the source with this name. Omit for all.",
                },
            },
        },
    ),
    Tool(
        name="ideaforge_sources",
        description="List configured sources, or enable/disable one.",
        inputSchema={
            "type": "object",
            "properties": {
                "source_id": {"type": "integer"},
                "enabled": {"type": "boolean"},
            },
        },
    ),
    Tool(
        name="ideaforge_enqueue",
        description="Queue one raw item, or up to 100 unenriched items, for enrichment and run them.",
        inputSchema={
            "type": "object",
            "properties": {
                "item_id": {"type": "integer"},
            },
        },
    ),
    Tool(
        name="ideaforge_signals",
        description="Get the merged signal bundle for an idea.",
        inputSchema={
            "type": "object",
            "properties": {"idea_id": {"type": "integer"}},
            "required": ["idea_id"],
        },
    ),
    Tool(
        name="ideaforge_status",
        description="Health check with store counts and the scrape log.",
        inputSchema={"type": "object", "properties": {}},
    ),
]


async def dispatch(runtime: Runtime, name: str, args: dict[str, Any]) -> dict[str, Any]:
    """Run one tool call against the runtime."""
    if name == "ideaforge_scrape":
        results = await runtime.runner.run(args.get("source"))
        await runtime.channel.drain()
        return results

    if name == "ideaforge_sources":
        source_id = args.get("source_id")
        if source_id is not None and "enabled" in args:
            return {"success": runtime.db.update_source(source_id, enabled=args["enabled"])}
        return {
            "sources": [
                {k: s[k] for k in ("id", "name", "kind", "enabled", "last_fetch_at")}
                for s in runtime.db.list_sources()
            ]
        }

    if name == "ideaforge_enqueue":
        item_id = args.get("item_id")
        if item_id is not None:
            queued = runtime.pipeline.enqueue_item(item_id)
        else:
            queued = runtime.pipeline.enqueue_backfill()
        return {"items_queued": queued, "processed": await runtime.pipeline.run_queued()}

    if name == "ideaforge_signals":
        return {"signals": runtime.pipeline.get_signals(args["idea_id"])}

    if name == "ideaforge_status":
        return {
            "store": runtime.db.get_stats(),
            "scrapes": runtime.db.get_scrape_stats(),
            "pending_events": runtime.channel.pending,
            "dropped_events": [e.to_dict() for e in runtime.channel.dropped],
        }

    return {"error": f"Unknown tool: {name}"}


def create_server(config: dict | None = None) -> tuple[Server, Runtime]:
    """Create and configure the MCP server with all tools."""
    if config is None:
        config = load_config()

    server = Server("ideaforge")
    runtime = build_runtime(config)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        try:
            result = await dispatch(runtime, name, arguments or {})
        except IdeaforgeError as e:
            result = {"error": e.to_dict()}
        except Exception as e:
            logger.error("Tool %s failed: %s", name, e)
            result = {"error": str(e)}

        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    return server, runtime


async def run_server() -> None:
    """Run the MCP server on stdio."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    server, runtime = create_server()

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        runtime.db.close()


def main() -> None:
    """Entry point for the ideaforge-mcp command."""
    asyncio.run(run_server())
