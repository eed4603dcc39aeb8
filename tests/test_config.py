"""Tests for configuration loading, runtime wiring and the MCP tool dispatch."""

import asyncio
import json

import pytest

from conftest import add_source
from ideaforge.config import (
    get_db_path,
    get_source_definitions,
    load_config,
    overlay,
    section,
)
from ideaforge.errors import ConfigurationError
from ideaforge.events import ItemNormalized
from ideaforge.runtime import build_runtime, sync_sources
from ideaforge.server import TOOLS, dispatch


class TestConfig:
    def test_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml", environ={})
        assert section(config, "scraper")["max_retries"] == 3
        assert config["events"]["max_deliveries"] == 3
        assert get_source_definitions(config) == []

    def test_user_override_merges(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "scraper:\n  max_retries: 5\n"
            "sources:\n  - name: hn\n    kind: rss\n    config:\n      url: http://hn.test/rss\n"
        )
        config = load_config(path, environ={})
        scraper = section(config, "scraper")
        assert scraper["max_retries"] == 5
        assert scraper["base_delay_seconds"] == 1.0
        assert get_source_definitions(config)[0]["name"] == "hn"

    def test_path_and_db_from_environment(self, tmp_path):
        path = tmp_path / "env.yaml"
        path.write_text("server:\n  port: 9000\n")
        environ = {"IDEAFORGE_CONFIG": str(path), "IDEAFORGE_DB_PATH": str(tmp_path / "env.db")}

        config = load_config(environ=environ)

        assert section(config, "server") == {"host": "127.0.0.1", "port": 9000}
        assert get_db_path(config) == tmp_path / "env.db"

    def test_explicit_path_beats_environment(self, tmp_path):
        env_path = tmp_path / "env.yaml"
        env_path.write_text("server:\n  port: 9000\n")
        arg_path = tmp_path / "arg.yaml"
        arg_path.write_text("server:\n  port: 9001\n")

        config = load_config(arg_path, environ={"IDEAFORGE_CONFIG": str(env_path)})
        assert section(config, "server")["port"] == 9001

    def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_config(path, environ={})

    def test_overlay_does_not_mutate(self):
        base = {"a": {"b": 1, "c": 2}}
        merged = overlay(base, {"a": {"b": 9}})
        assert merged == {"a": {"b": 9, "c": 2}}
        assert base == {"a": {"b": 1, "c": 2}}

    def test_overlay_merges_sources_by_name(self):
        base = {
            "sources": [
                {"name": "hn", "kind": "rss", "config": {"url": "http://hn.test"}},
                {"name": "page", "kind": "html", "config": {"url": "http://page.test"}},
            ]
        }
        merged = overlay(base, {
            "sources": [
                {"name": "hn", "enabled": False},
                {"name": "api", "kind": "api", "config": {"url": "http://api.test"}},
            ]
        })

        hn, page, api = merged["sources"]
        assert hn == {"name": "hn", "kind": "rss", "config": {"url": "http://hn.test"},
                      "enabled": False}
        assert page == base["sources"][1]
        assert api["kind"] == "api"
        assert "enabled" not in base["sources"][0]

    def test_db_path_expands_user(self):
        assert "~" not in str(get_db_path({"db_path": "~/x.db"}))

    def test_empty_sections(self):
        assert section({"scraper": None}, "scraper") == {}
        assert get_source_definitions({}) == []

    def test_source_definitions_filtered(self):
        config = {
            "sources": [
                {"name": "hn", "kind": "rss"},
                {"name": "odd", "kind": "gopher"},
                {"kind": "rss"},
                "not-a-mapping",
            ]
        }
        assert [d["name"] for d in get_source_definitions(config)] == ["hn", "odd"]
        assert [d["name"] for d in get_source_definitions(config, kinds={"rss"})] == ["hn"]


class TestSyncSources:
    def test_adds_valid_definitions(self, db):
        config = {
            "sources": [
                {"name": "hn", "kind": "rss", "config": {"url": "http://hn.test"}},
                {"name": "odd", "kind": "gopher"},
                {"kind": "rss"},
                {"name": "page", "kind": "html", "enabled": False},
            ]
        }
        assert sync_sources(db, config) == 2
        sources = {s["name"]: s for s in db.list_sources()}
        assert set(sources) == {"hn", "page"}
        assert sources["page"]["enabled"] is False

    def test_keeps_operator_edits(self, db):
        source = add_source(db, "hn")
        db.update_source(source["id"], enabled=False)
        config = {"sources": [{"name": "hn", "kind": "rss", "config": {"url": "http://other"}}]}

        assert sync_sources(db, config) == 0
        row = db.get_source(source["id"])
        assert row["enabled"] is False
        assert row["config"]["url"] == "http://hn.test/feed"

    def test_build_runtime_wires_consumer(self, db):
        runtime = build_runtime({"events": {"max_deliveries": 5}}, db=db)
        assert runtime.channel.max_deliveries == 5
        assert runtime.channel._handlers == [runtime.pipeline.handle_event]


class TestMCPDispatch:
    def test_tool_names(self):
        assert {t.name for t in TOOLS} == {
            "ideaforge_scrape",
            "ideaforge_sources",
            "ideaforge_enqueue",
            "ideaforge_signals",
            "ideaforge_status",
        }

    def test_sources_toggle(self, db):
        runtime = build_runtime({}, db=db)
        source = add_source(db, "hn")

        result = asyncio.run(
            dispatch(runtime, "ideaforge_sources", {"source_id": source["id"], "enabled": False})
        )
        assert result == {"success": True}

        listing = asyncio.run(dispatch(runtime, "ideaforge_sources", {}))
        assert listing["sources"][0]["enabled"] is False

    def test_status(self, db):
        runtime = build_runtime({}, db=db)
        result = asyncio.run(dispatch(runtime, "ideaforge_status", {}))
        json.dumps(result, default=str)
        assert result["store"]["ideas"] == 0
        assert result["dropped_events"] == []

    def test_status_reports_dropped_events(self, db):
        runtime = build_runtime({"events": {"max_deliveries": 1}}, db=db)

        async def broken(event):
            raise RuntimeError("permanent")

        runtime.channel._handlers = [broken]
        runtime.channel.publish(ItemNormalized(item_id=404, title="Gone", url="http://x/404"))
        asyncio.run(runtime.channel.drain())

        result = asyncio.run(dispatch(runtime, "ideaforge_status", {}))
        assert result["dropped_events"] == [{"item_id": 404, "title": "Gone", "url": "http://x/404"}]

    def test_unknown_tool(self, db):
        runtime = build_runtime({}, db=db)
        assert "error" in asyncio.run(dispatch(runtime, "nope", {}))
