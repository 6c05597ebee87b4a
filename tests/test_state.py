"""Tests for scan state and checkpointing."""

import asyncio
import json

import pytest

from http_desync.core.exceptions import PersistenceError
from http_desync.core.models import SmuggleTestRecord, Target, TestStatus
from http_desync.state.checkpoint import Checkpointer
from http_desync.state.store import (
    CounterMap,
    RecordLog,
    ScanState,
    StateDocument,
    load_document,
)


def resolved(url: str, method: str, mutation: str, status: TestStatus) -> SmuggleTestRecord:
    record = SmuggleTestRecord(Target.parse(url), method, mutation, 1.0)
    return record.resolve(status)


class TestDocument:
    """Tests for the persisted document format."""

    def test_blank_is_empty(self):
        document = load_document("  \n")
        assert document == StateDocument()

    def test_parse(self):
        text = json.dumps({
            "baselines": {"http://a.test": 0.12},
            "results": [
                {"url": "http://a.test", "method": "GET", "mutation": "standard", "status": "CL.TE"},
            ],
            "errors": {"http://a.test": 2},
        })
        document = load_document(text)
        assert document.baselines == {"http://a.test": 0.12}
        assert document.results[0].status is TestStatus.CLTE
        assert document.errors == {"http://a.test": 2}

    @pytest.mark.parametrize("text", [
        "not json",
        '{"baselines": {"u": "fast"}}',
        '{"results": [{"url": "u"}]}',
        '{"results": [{"url": "u", "method": "GET", "mutation": "m", "status": "bogus"}]}',
    ])
    def test_invalid(self, text):
        with pytest.raises(PersistenceError):
            load_document(text, "state.json")


class TestSections:
    """Tests for the lockable state sections."""

    @pytest.mark.asyncio
    async def test_counter(self):
        counter = CounterMap()
        assert await counter.increment("u") == 1
        assert await counter.increment("u", 2) == 3
        assert await counter.reached("u", 3)
        assert not await counter.reached("u", 4)
        assert not await counter.reached("u", 0)

    @pytest.mark.asyncio
    async def test_concurrent_increments(self):
        counter = CounterMap()
        await asyncio.gather(*(counter.increment("u") for _ in range(100)))
        assert await counter.get("u") == 100

    @pytest.mark.asyncio
    async def test_record_log_dedup(self):
        log = RecordLog()
        record = resolved("http://a.test", "GET", "standard", TestStatus.SAFE)
        assert await log.append(record)
        assert not await log.append(record)
        assert len(log) == 1
        assert await log.keys() == {("http://a.test", "GET", "standard")}

    @pytest.mark.asyncio
    async def test_record_log_rejects_unknown(self):
        log = RecordLog()
        record = SmuggleTestRecord(Target.parse("http://a.test"), "GET", "standard", 1.0)
        with pytest.raises(ValueError):
            await log.append(record)


class TestScanState:
    """Tests for merge, serialization and derived counts."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        state = ScanState()
        await state.baselines.set("http://a.test", 0.25)
        await state.results.append(resolved("http://a.test", "POST", "standard", TestStatus.TECL))
        await state.errors.increment("http://b.test")

        document = load_document(await state.serialize())
        restored = ScanState.from_document(document)
        assert await restored.baselines.snapshot() == {"http://a.test": 0.25}
        assert await restored.results.keys() == {("http://a.test", "POST", "standard")}
        assert await restored.errors.snapshot() == {"http://b.test": 1}

    @pytest.mark.asyncio
    async def test_merge_existing_wins(self):
        state = ScanState()
        await state.baselines.set("http://a.test", 0.1)
        await state.errors.increment("http://a.test", 5)
        document = StateDocument(
            baselines={"http://a.test": 9.0, "http://b.test": 0.2},
            errors={"http://a.test": 2, "http://b.test": 3},
        )
        await state.merge(document)
        assert await state.baselines.snapshot() == {"http://a.test": 0.1, "http://b.test": 0.2}
        assert await state.errors.snapshot() == {"http://a.test": 5, "http://b.test": 3}

    @pytest.mark.asyncio
    async def test_confirmed_counts(self):
        state = ScanState()
        for mutation, status in (
            ("m1", TestStatus.CLTE),
            ("m2", TestStatus.TECL),
            ("m3", TestStatus.SAFE),
            ("m4", TestStatus.ERROR),
        ):
            await state.results.append(resolved("http://a.test", "GET", mutation, status))
        assert await state.confirmed_counts() == {"http://a.test": 2}

    @pytest.mark.asyncio
    async def test_serialize_waits_for_section_lock(self):
        state = ScanState()
        async with state.errors.lock:
            task = asyncio.ensure_future(state.serialize())
            await asyncio.sleep(0.01)
            assert not task.done()
        assert json.loads(await task)["errors"] == {}


class TestCheckpointer:
    """Tests for state file persistence."""

    @pytest.mark.asyncio
    async def test_creates_missing_file(self, tmp_path):
        path = tmp_path / "new.state"
        checkpointer = Checkpointer(ScanState(), str(path))
        await checkpointer.open()
        await checkpointer.close()
        assert path.exists()

    @pytest.mark.asyncio
    async def test_save_truncates(self, tmp_path):
        """A shorter document fully replaces a longer one."""
        path = tmp_path / "smuggles.state"
        state = ScanState()
        for i in range(20):
            await state.baselines.set(f"http://host{i}.test", 0.5)

        checkpointer = Checkpointer(state, str(path))
        await checkpointer.open()
        await checkpointer.save()
        long_size = path.stat().st_size

        state.baselines = type(state.baselines)({"http://x.test": 0.1})
        await checkpointer.save()
        await checkpointer.close()

        text = path.read_text(encoding="utf-8")
        assert len(text) < long_size
        assert json.loads(text)["baselines"] == {"http://x.test": 0.1}
        assert checkpointer.saves == 2

    @pytest.mark.asyncio
    async def test_open_merges_existing(self, tmp_path):
        path = tmp_path / "smuggles.state"
        path.write_text(json.dumps({
            "baselines": {"http://a.test": 0.3},
            "results": [],
            "errors": {},
        }), encoding="utf-8")

        state = ScanState()
        checkpointer = Checkpointer(state, str(path))
        await checkpointer.open()
        await checkpointer.close()
        assert await state.baselines.get("http://a.test") == 0.3

    @pytest.mark.asyncio
    async def test_open_invalid_is_fatal(self, tmp_path):
        path = tmp_path / "smuggles.state"
        path.write_text("{broken", encoding="utf-8")
        checkpointer = Checkpointer(ScanState(), str(path))
        with pytest.raises(PersistenceError):
            await checkpointer.open()
        await checkpointer.close()

    @pytest.mark.asyncio
    async def test_try_save_unopened(self, tmp_path):
        checkpointer = Checkpointer(ScanState(), str(tmp_path / "x.state"))
        error = await checkpointer.try_save()
        assert isinstance(error, PersistenceError)
        assert checkpointer.failures == 1

    @pytest.mark.asyncio
    async def test_periodic_run(self, tmp_path):
        checkpointer = Checkpointer(ScanState(), str(tmp_path / "x.state"), interval=0.01)
        await checkpointer.open()
        task = asyncio.ensure_future(checkpointer.run())
        await asyncio.sleep(0.1)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await checkpointer.close()
        assert checkpointer.saves >= 2
