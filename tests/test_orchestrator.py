from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import pytest

from newsfill.cursor import MessageCursor
from newsfill.errors import BackfillError
from newsfill.hashing import content_hash
from newsfill.models import FeedItem, TextRecord
from newsfill.orchestrator import BackfillOrchestrator, BackfillState
from newsfill.store import MemoryStore

from conftest import FakeProvider, hourly_feed, ts

pytestmark = pytest.mark.asyncio

TODAY = date(2024, 3, 10)


def make_orchestrator(store, provider, start=TODAY - timedelta(days=4), **kwargs):
    return BackfillOrchestrator(
        store,
        MessageCursor(provider, "S2UndergroundWire"),
        start,
        today=lambda: TODAY,
        **kwargs,
    )


class RecordingSummarizer:
    def __init__(self):
        self.submitted = []

    async def submit(self, source, data):
        self.submitted.append((source, data))
        return True


async def test_creates_table_and_fills_every_day_inclusive():
    store = MemoryStore()
    provider = FakeProvider(hourly_feed(TODAY, days=10, per_day=2))

    report = await make_orchestrator(store, provider).run()

    assert report.state is BackfillState.DONE
    assert report.table == "s2undergroundwire"
    assert report.days == 5
    assert report.inserted == 10
    rows = store.rows("s2undergroundwire")
    assert len(rows) == 10
    stamps = sorted({row.date for row in rows.values()})
    assert stamps == [
        datetime.combine(TODAY - timedelta(days=d), time.min, tzinfo=timezone.utc) for d in range(4, -1, -1)
    ]


async def test_rows_are_keyed_by_hash_of_serialized_record():
    store = MemoryStore()
    provider = FakeProvider([FeedItem(ts(TODAY, 9), "hello")])

    await make_orchestrator(store, provider, start=TODAY).run()

    data = TextRecord("hello").serialize()
    rows = store.rows("S2UndergroundWire")
    assert list(rows) == [content_hash(data)]
    assert rows[content_hash(data)].data == data


async def test_second_run_inserts_nothing():
    store = MemoryStore()
    items = hourly_feed(TODAY, days=10, per_day=3)

    first = await make_orchestrator(store, FakeProvider(items)).run()
    second = await make_orchestrator(store, FakeProvider(items)).run()

    assert first.inserted == 15
    assert second.inserted == 0
    assert second.skipped == 15
    assert second.state is BackfillState.DONE
    assert len(store.rows("s2undergroundwire")) == 15


async def test_existing_table_is_refilled_by_default():
    store = MemoryStore()
    await store.create_table("S2UndergroundWire")
    orchestrator = make_orchestrator(store, FakeProvider(hourly_feed(TODAY, days=5, per_day=1)))

    states = []
    original = orchestrator._set_state

    def track(state):
        states.append(state)
        original(state)

    orchestrator._set_state = track
    report = await orchestrator.run()

    assert BackfillState.FILL_ONLY in states
    assert BackfillState.CREATE_AND_FILL not in states
    assert report.inserted == 5


async def test_existing_table_skipped_when_refill_disabled():
    store = MemoryStore()
    await store.create_table("S2UndergroundWire")
    provider = FakeProvider(hourly_feed(TODAY, days=5))

    report = await make_orchestrator(store, provider, refill_existing=False).run()

    assert report.state is BackfillState.SKIPPED
    assert provider.calls == []


async def test_identical_content_on_different_days_is_stored_once():
    store = MemoryStore()
    items = [
        FeedItem(ts(TODAY, 9), "same"),
        FeedItem(ts(TODAY - timedelta(days=1), 9), "same"),
        FeedItem(ts(TODAY - timedelta(days=2), 9), "different"),
    ]

    report = await make_orchestrator(store, FakeProvider(items)).run()

    assert report.inserted == 2
    assert report.skipped == 1


async def test_failure_reports_the_day():
    store = MemoryStore()
    bad_day = TODAY - timedelta(days=2)
    items = [
        FeedItem(ts(TODAY, 9), "ok"),
        FeedItem(ts(bad_day, 9), "boom"),
    ]

    def formatter(body):
        if body == "boom":
            raise RuntimeError("unexpected layout")
        return TextRecord(body)

    orchestrator = make_orchestrator(store, FakeProvider(items), formatter=formatter)
    with pytest.raises(BackfillError) as excinfo:
        await orchestrator.run()

    assert excinfo.value.day == bad_day
    assert excinfo.value.source == "S2UndergroundWire"
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert orchestrator.state is BackfillState.FAILED
    assert len(store.rows("s2undergroundwire")) == 1


async def test_summarizer_receives_only_new_records():
    store = MemoryStore()
    items = hourly_feed(TODAY, days=3, per_day=1)
    summarizer = RecordingSummarizer()

    await make_orchestrator(store, FakeProvider(items), summarizer=summarizer).run()
    await make_orchestrator(store, FakeProvider(items), summarizer=summarizer).run()

    assert len(summarizer.submitted) == 3
    assert {source for source, _ in summarizer.submitted} == {"S2UndergroundWire"}


async def test_stop_is_honoured_at_day_boundary():
    store = MemoryStore()
    orchestrator = make_orchestrator(store, FakeProvider(hourly_feed(TODAY, days=5, per_day=1)))

    class StoppingSummarizer(RecordingSummarizer):
        async def submit(self, source, data):
            orchestrator.stop()
            return await super().submit(source, data)

    orchestrator.summarizer = StoppingSummarizer()
    report = await orchestrator.run()

    assert report.days == 1
    assert report.inserted == 1
    assert report.state is BackfillState.DONE


async def test_history_shorter_than_range_still_terminates():
    store = MemoryStore()
    provider = FakeProvider(hourly_feed(TODAY, days=2, per_day=1))

    report = await make_orchestrator(store, provider, start=TODAY - timedelta(days=30)).run()

    assert report.days == 31
    assert report.inserted == 2
    assert len(provider.calls) == 1


async def test_summarizer_errors_do_not_abort_the_fill():
    class BrokenSummarizer(RecordingSummarizer):
        async def submit(self, source, data):
            await super().submit(source, data)
            raise ValueError("summarizer is misconfigured")

    store = MemoryStore()
    summarizer = BrokenSummarizer()

    report = await make_orchestrator(
        store, FakeProvider(hourly_feed(TODAY, days=5, per_day=2)), summarizer=summarizer
    ).run()

    assert report.state is BackfillState.DONE
    assert report.inserted == 10
    assert len(store.rows("s2undergroundwire")) == 10
    assert len(summarizer.submitted) == 10
