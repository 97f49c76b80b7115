"""
Tests for progress events and sinks.
"""

import logging

import pytest

from flowgraph.events import (
    CallbackSink,
    CompositeSink,
    EventKind,
    LoggingSink,
    NullSink,
    ProgressEvent,
    QueueSink,
    deliver,
)


def make_event(kind=EventKind.INFO, message="hello", node_id="n1"):
    return ProgressEvent(kind=kind, message=message, node_id=node_id, run_id="run1")


class TestProgressEvent:
    def test_to_dict(self):
        data = make_event(EventKind.SUCCESS).to_dict()
        assert data["kind"] == "success"
        assert data["node_id"] == "n1"
        assert data["run_id"] == "run1"
        assert data["timestamp"].endswith("+00:00")


class TestSinks:
    def test_callback_sink_filters_by_severity(self):
        received = []
        sink = CallbackSink(received.append, min_kind=EventKind.WARNING)
        for kind in EventKind:
            sink(make_event(kind))
        assert [e.kind for e in received] == [EventKind.ERROR, EventKind.WARNING]

    @pytest.mark.asyncio
    async def test_queue_sink_drops_when_full(self):
        sink = QueueSink(maxsize=2)
        for i in range(5):
            sink(make_event(message=str(i)))

        assert sink.queue.qsize() == 2
        assert sink.dropped == 3
        assert (await sink.queue.get()).message == "0"

    def test_composite_sink_isolates_failures(self):
        received = []

        def broken(event):
            raise RuntimeError("down")

        sink = CompositeSink([broken, received.append, NullSink()])
        sink(make_event())
        assert len(received) == 1

    def test_logging_sink(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="flowgraph.progress"):
            LoggingSink()(make_event(EventKind.ERROR, "went wrong"))
        assert "[n1] went wrong" in caplog.text
        assert caplog.records[0].levelno == logging.ERROR

    def test_deliver_ignores_none_and_logs_failures(self, caplog):
        deliver(None, make_event())

        def broken(event):
            raise ValueError("nope")

        with caplog.at_level(logging.ERROR, logger="flowgraph.events"):
            deliver(broken, make_event())
        assert "Progress sink" in caplog.text
