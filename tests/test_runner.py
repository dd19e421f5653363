"""Tests for the SequentialRunner."""
import pytest

from job_queue.item import QueueItem
from job_queue.runner import SequentialRunner


def make(n: int) -> QueueItem:
    return QueueItem.create_work_queue({"n": n}, id=f"item{n:04d}")


class TestSequentialRunner:
    def test_fifo_order(self):
        processed = []
        runner = SequentialRunner(processed.append)
        for n in range(3):
            runner.enqueue(make(n))
        while runner.advance():
            pass
        assert [item.data["n"] for item in processed] == [0, 1, 2]

    def test_priority_goes_to_head(self):
        runner = SequentialRunner(lambda item: None)
        runner.enqueue(make(1))
        runner.enqueue(make(2))
        runner.enqueue(make(3), priority=True)
        assert [item.data["n"] for item in runner.items()] == [3, 1, 2]
        assert runner.peek().data["n"] == 3

    def test_readiness_gate(self):
        ready = False
        processed = []
        runner = SequentialRunner(processed.append, ready=lambda: ready)
        runner.enqueue(make(1))
        assert runner.advance() is False
        assert runner.pending == 1

        ready = True
        assert runner.advance() is True
        assert processed[0].data["n"] == 1
        assert runner.pending == 0

    def test_ungated_advance_skips_readiness(self):
        processed = []
        runner = SequentialRunner(processed.append, ready=lambda: False)
        runner.enqueue(make(1))
        assert runner.advance(gated=False) is True
        assert len(processed) == 1

    def test_no_reentrant_admission(self):
        processed = []

        def processor(item):
            processed.append(item)
            # nested advance during a dispatch is refused
            assert runner.advance() is False

        runner = SequentialRunner(processor)
        runner.enqueue(make(1))
        runner.enqueue(make(2))
        assert runner.advance() is True
        assert len(processed) == 1
        assert not runner.active

    def test_active_cleared_when_processor_raises(self):
        def processor(item):
            raise RuntimeError("boom")

        runner = SequentialRunner(processor)
        runner.enqueue(make(1))
        with pytest.raises(RuntimeError):
            runner.advance()
        assert not runner.active

    def test_idle_signal_when_empty(self):
        idle = []
        runner = SequentialRunner(lambda item: None, on_idle=lambda: idle.append(True))
        runner.enqueue(make(1))
        runner.advance()
        assert idle == []
        runner.advance()
        assert idle == [True]
