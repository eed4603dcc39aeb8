"""Tests for the enrichment pipeline and its job state machine."""

import asyncio
from unittest.mock import patch

import pytest

from conftest import FakeResponse, FakeSession, add_source
from ideaforge.errors import NotFoundError
from ideaforge.events import InMemoryEventChannel, ItemNormalized
from ideaforge.pipeline import EnrichmentPipeline, merge_tags, title_hash
from ideaforge.sources import content_hash

PAGE = "<html><body><p>Hello world</p></body></html>"


@pytest.fixture
def source(db):
    return add_source(db, "feed")


@pytest.fixture
def pipeline(db):
    return EnrichmentPipeline(db, session=FakeSession([FakeResponse(body=PAGE)]))


def _item(db, source, title="Foo", url="http://x/1", **extra):
    raw = {"title": title, "link": url, "description": "A great tool for remote teams", **extra}
    item_id = db.insert_raw_item(
        source_id=source["id"], ext_id=url, url=url, raw=raw, content_hash=content_hash(url, title)
    )
    db.mark_normalized(item_id)
    return item_id


def _event(item_id, title="Foo", url="http://x/1"):
    return ItemNormalized(item_id=item_id, title=title, url=url)


class TestHelpers:
    def test_title_hash_ignores_case_and_padding(self):
        assert title_hash("  Foo Bar ") == title_hash("foo bar")
        assert title_hash("foo") != title_hash("bar")

    def test_merge_tags(self):
        keyphrases = [{"phrase": p, "score": 1.0} for p in ("saas", "tool", "team", "b2b", "ai", "x")]
        assert merge_tags(["saas", "devtools"], keyphrases, limit=5) == [
            "saas", "devtools", "tool", "team", "b2b", "ai",
        ]


class TestEnrichment:
    def test_done_job_and_signals(self, db, source, pipeline):
        item_id = _item(db, source, category=["remote"])

        status = asyncio.run(pipeline.handle_event(_event(item_id)))

        assert status == "done"
        [job] = db.list_jobs(item_id)
        assert job["status"] == "done"
        assert job["result"]["signals"]["isDuplicate"] is False

        signals = pipeline.get_signals(job["result"]["idea_id"])
        assert set(signals) == {
            "readability", "language", "keyphrases", "entities", "sentiment", "embedding",
            "isDuplicate",
        }
        assert signals["readability"]["content"] == "Hello world"
        assert signals["language"]["language"] == "en"
        assert signals["sentiment"]["label"] == "positive"
        assert signals["embedding"] == {"model": "simple-hash-v1", "dimensions": 1536}
        assert signals["isDuplicate"] is False

        idea = db.get_idea(job["result"]["idea_id"])
        assert idea["title"] == "Foo"
        assert idea["status"] == "completed"
        assert idea["source_url"] == "http://x/1"
        assert idea["tags"][0] == "remote"
        assert "great" in idea["tags"]

    def test_duplicate_title_flagged(self, db, source, pipeline):
        first = _item(db, source, title="Same Idea", url="http://x/1")
        second = _item(db, source, title="same idea ", url="http://y/2")

        asyncio.run(pipeline.handle_event(_event(first, "Same Idea")))
        asyncio.run(pipeline.handle_event(_event(second, "same idea ", "http://y/2")))

        [job] = db.list_jobs(second)
        assert job["result"]["signals"]["isDuplicate"] is True
        assert pipeline.get_signals(job["result"]["idea_id"])["isDuplicate"] is True
        assert db.count_ideas() == 2

    def test_extractor_failure_fails_job(self, db, source, pipeline):
        item_id = _item(db, source)

        with patch("ideaforge.pipeline.analyze_sentiment", side_effect=RuntimeError("boom")):
            status = asyncio.run(pipeline.handle_event(_event(item_id)))

        assert status == "failed"
        [job] = db.list_jobs(item_id)
        assert job["status"] == "failed"
        assert job["attempts"] == 1
        assert job["errors"]["message"] == "boom"
        assert job["errors"]["type"] == "RuntimeError"
        assert "Traceback" in job["errors"]["stack"]
        assert db.count_ideas() == 0

    def test_readability_failure_still_completes(self, db, source):
        pipeline = EnrichmentPipeline(db, session=FakeSession([FakeResponse(status=500)]))
        item_id = _item(db, source)

        assert asyncio.run(pipeline.handle_event(_event(item_id))) == "done"

        [job] = db.list_jobs(item_id)
        signals = pipeline.get_signals(job["result"]["idea_id"])
        assert signals["readability"]["word_count"] == 0
        assert signals["readability"]["content"] is None

    def test_missing_item_fails_job(self, db, pipeline):
        job_id = db.create_job(999)

        summary = asyncio.run(pipeline.run_queued())

        assert summary == {"done": 0, "failed": 1, "skipped": 0}
        job = db.get_job(job_id)
        assert job["status"] == "failed"
        assert job["errors"]["type"] == "NotFoundError"

    def test_failure_is_isolated(self, db, source, pipeline):
        good = _item(db, source, title="Good", url="http://x/good")
        db.create_job(999)
        db.create_job(good)

        summary = asyncio.run(pipeline.run_queued())

        assert summary["done"] == 1
        assert summary["failed"] == 1
        assert db.list_jobs(good)[0]["status"] == "done"


class TestJobLifecycle:
    def test_redelivery_after_done_is_skipped(self, db, source, pipeline):
        item_id = _item(db, source)

        asyncio.run(pipeline.handle_event(_event(item_id)))
        status = asyncio.run(pipeline.handle_event(_event(item_id)))

        assert status == "skipped"
        assert len(db.list_jobs(item_id)) == 1
        assert db.count_ideas() == 1

    def test_event_while_job_in_flight_is_skipped(self, db, source, pipeline):
        item_id = _item(db, source)
        db.create_job(item_id)

        assert asyncio.run(pipeline.handle_event(_event(item_id))) == "skipped"
        assert len(db.list_jobs(item_id)) == 1

    def test_at_most_one_active_job(self, db, source, pipeline):
        item_id = _item(db, source)

        assert pipeline.enqueue_item(item_id) == 1
        assert pipeline.enqueue_item(item_id) == 0
        assert len(db.list_jobs(item_id)) == 1

    def test_failed_job_can_be_requeued(self, db, source, pipeline):
        item_id = _item(db, source)
        with patch("ideaforge.pipeline.extract_keyphrases", side_effect=ValueError("bad")):
            asyncio.run(pipeline.handle_event(_event(item_id)))

        assert pipeline.enqueue_item(item_id) == 1
        assert asyncio.run(pipeline.run_queued()) == {"done": 1, "failed": 0, "skipped": 0}
        assert [j["status"] for j in db.list_jobs(item_id)] == ["failed", "done"]

    def test_enqueue_unknown_item(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.enqueue_item(12345)

    def test_claimed_job_not_processed_twice(self, db, source, pipeline):
        item_id = _item(db, source)
        job_id = db.create_job(item_id)
        db.claim_job(job_id)

        assert asyncio.run(pipeline.process_job(job_id)) == "skipped"


class TestBackfill:
    def test_queues_unenriched_items(self, db, source, pipeline):
        ids = [_item(db, source, title=f"Idea {i}", url=f"http://x/{i}") for i in range(3)]
        asyncio.run(pipeline.handle_event(_event(ids[0], "Idea 0", "http://x/0")))

        assert pipeline.enqueue_backfill() == 2
        assert pipeline.enqueue_backfill() == 0

        summary = asyncio.run(pipeline.run_queued())
        assert summary["done"] == 2
        assert db.count_ideas() == 3

    def test_limit(self, db, source, pipeline):
        for i in range(3):
            _item(db, source, title=f"Idea {i}", url=f"http://x/{i}")
        assert pipeline.enqueue_backfill(limit=2) == 2


class TestSignals:
    def test_unknown_idea(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.get_signals(404)


def test_channel_drives_pipeline(db, source, pipeline):
    channel = InMemoryEventChannel()
    channel.subscribe(pipeline.handle_event)
    item_id = _item(db, source)
    channel.publish(_event(item_id))
    channel.publish(_event(item_id))

    asyncio.run(channel.drain())

    assert [j["status"] for j in db.list_jobs(item_id)] == ["done"]
    assert db.count_ideas() == 1
