"""
Unit tests for the debounced answer writer.
"""
import asyncio

import pytest

from app.services import save_scheduler
from app.services.save_scheduler import SaveScheduler


class RecordingWriter:
    def __init__(self, fail_times=0, delay=0.0):
        self.calls = []
        self.fail_times = fail_times
        self.delay = delay

    async def __call__(self, key, value):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((key, value))
        if self.fail_times:
            self.fail_times -= 1
            raise RuntimeError("database unavailable")
        return {"version": len(self.calls)}


class TestDebounce:
    @pytest.mark.asyncio
    async def test_rapid_edits_are_written_once(self):
        writer = RecordingWriter()
        scheduler = SaveScheduler(writer, default_delay=0.05)

        for text in ("A", "Ac", "Acm", "Acme"):
            scheduler.schedule((1, 10), text)
        assert scheduler.status((1, 10)).state == "pending"

        await asyncio.sleep(0.15)

        assert writer.calls == [((1, 10), "Acme")]
        status = scheduler.status((1, 10))
        assert status.state == "saved"
        assert status.saved_at is not None

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        writer = RecordingWriter()
        scheduler = SaveScheduler(writer, default_delay=0.02)

        scheduler.schedule((1, 10), "Acme")
        scheduler.schedule((1, 11), True)
        await asyncio.sleep(0.1)

        assert sorted(writer.calls) == [((1, 10), "Acme"), ((1, 11), True)]

    @pytest.mark.asyncio
    async def test_flush_writes_immediately(self):
        writer = RecordingWriter()
        scheduler = SaveScheduler(writer, default_delay=10)

        scheduler.schedule("k", "value")
        status = await scheduler.flush("k")

        assert writer.calls == [("k", "value")]
        assert status.state == "saved"
        assert status.result == {"version": 1}
        assert scheduler.pending_keys() == []

    @pytest.mark.asyncio
    async def test_flush_of_unknown_key_is_idle(self):
        scheduler = SaveScheduler(RecordingWriter())
        assert (await scheduler.flush("missing")).state == "idle"

    @pytest.mark.asyncio
    async def test_value_scheduled_during_a_write_is_written_after_it(self):
        writer = RecordingWriter(delay=0.05)
        scheduler = SaveScheduler(writer, default_delay=0)

        scheduler.schedule("k", "first")
        await asyncio.sleep(0.02)
        assert scheduler.status("k").state == "saving"
        scheduler.schedule("k", "second", delay=0)
        await asyncio.sleep(0.2)

        assert [value for _, value in writer.calls] == ["first", "second"]
        assert scheduler.status("k").state == "saved"


class TestRelease:
    @pytest.mark.asyncio
    async def test_saved_keys_are_forgotten(self):
        writer = RecordingWriter()
        scheduler = SaveScheduler(writer, default_delay=10)
        for question_id in range(5):
            scheduler.schedule((1, question_id), {"answer": question_id, "ctx": object()})

        await scheduler.flush_all()

        assert scheduler._entries == {}
        status = scheduler.status((1, 3))
        assert status.state == "saved"
        assert status.value is None
        assert status.result == {"version": 4}

    @pytest.mark.asyncio
    async def test_failed_keys_are_kept(self):
        scheduler = SaveScheduler(RecordingWriter(fail_times=1), default_delay=10)
        scheduler.schedule("k", "Acme")

        await scheduler.flush_all()

        assert list(scheduler._entries) == ["k"]
        assert scheduler.status("k").value == "Acme"

    @pytest.mark.asyncio
    async def test_recent_saves_are_bounded(self, monkeypatch):
        monkeypatch.setattr(save_scheduler, "RECENT_SAVES_LIMIT", 2)
        scheduler = SaveScheduler(RecordingWriter(), default_delay=10)
        for key in ("a", "b", "c"):
            scheduler.schedule(key, 1)
            await scheduler.flush(key)

        assert scheduler.status("a").state == "idle"
        assert [scheduler.status(k).state for k in ("b", "c")] == ["saved", "saved"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_write_keeps_the_value(self):
        writer = RecordingWriter(fail_times=1)
        scheduler = SaveScheduler(writer, default_delay=0.01)

        scheduler.schedule("k", "Acme")
        await asyncio.sleep(0.05)

        status = scheduler.status("k")
        assert status.state == "error"
        assert status.value == "Acme"
        assert status.last_error == "database unavailable"
        assert scheduler.pending_keys() == ["k"]

        status = await scheduler.flush("k")
        assert status.state == "saved"
        assert status.last_error is None
        assert [value for _, value in writer.calls] == ["Acme", "Acme"]

    @pytest.mark.asyncio
    async def test_flush_raises_the_writer_error(self):
        scheduler = SaveScheduler(RecordingWriter(fail_times=1), default_delay=10)
        scheduler.schedule("k", "Acme")

        with pytest.raises(RuntimeError, match="database unavailable"):
            await scheduler.flush("k")
        assert scheduler.status("k").state == "error"


class TestClose:
    @pytest.mark.asyncio
    async def test_close_flushes_and_refuses_new_values(self):
        writer = RecordingWriter()
        scheduler = SaveScheduler(writer, default_delay=10)
        scheduler.schedule("a", 1)
        scheduler.schedule("b", 2)

        await scheduler.close()

        assert sorted(writer.calls) == [("a", 1), ("b", 2)]
        with pytest.raises(RuntimeError):
            scheduler.schedule("a", 3)
