"""Shared fixtures: a temp store and an in-process stand-in for aiohttp sessions."""

from __future__ import annotations

from typing import Any

import pytest

from ideaforge.db import IdeaforgeDB
from ideaforge.sources import RetryPolicy


class FakeResponse:
    def __init__(self, status: int = 200, body: str = "", headers: dict | None = None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    async def text(self) -> str:
        return self.body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc) -> bool:
        return False


class FakeSession:
    """Answers ``get`` from a script of responses or exceptions.

    ``script`` is either a list (served in order, last one repeats) or a
    mapping of URL to such a list.
    """

    def __init__(self, script: Any):
        self.script = script
        self.calls: list[tuple[str, dict]] = []

    def _next(self, url: str) -> Any:
        queue = self.script.get(url, []) if isinstance(self.script, dict) else self.script
        if not queue:
            raise AssertionError(f"No scripted response for {url}")
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def get(self, url: str, headers: dict | None = None, **kwargs) -> FakeResponse:
        self.calls.append((url, dict(headers or {})))
        outcome = self._next(url)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


RSS_ONE_ITEM = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Ideas</title>
<item><title>Foo</title><link>http://x/1</link><guid>g1</guid></item>
</channel></rss>"""


@pytest.fixture
def db(tmp_path):
    instance = IdeaforgeDB(tmp_path / "test.db")
    instance.connect()
    yield instance
    instance.close()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def policy(sleeper):
    return RetryPolicy(max_retries=3, base_delay=1.0, max_jitter=0.0, sleep=sleeper)


def add_source(db: IdeaforgeDB, name: str = "feed", kind: str = "rss", **config) -> dict:
    config.setdefault("url", f"http://{name}.test/feed")
    source_id = db.upsert_source(name=name, kind=kind, config=config)
    return db.get_source(source_id)
