import json

from src.kernel.logging.file_log_sink import FileLogSink
from src.kernel.logging.log_manager import LogManager, Logger, null_logger
from src.kernel.logging.log_severity import LogSeverity
from src.kernel.logging.message_context import MessageContext
from src.kernel.logging.queue_log_sink import QueueLogSink

import pytest


class ExplodingSink:
    def emit(self, entry) -> None:
        raise RuntimeError("sink is broken")


def test_entries_below_min_severity_are_dropped() -> None:
    sink = QueueLogSink()
    manager = LogManager(min_severity=LogSeverity.WARNING)
    manager.register_sink(sink)
    log = Logger("ROUTER", manager)

    log.info(event_type="REQUEST_RECEIVED", message="ignored")
    log.error(event_type="REQUEST_HANDLER_ERROR", message="kept")

    entries = sink.drain()
    assert [e.event_type for e in entries] == ["REQUEST_HANDLER_ERROR"]
    assert entries[0].source_module == "ROUTER"


def test_failing_sink_does_not_stop_other_sinks() -> None:
    sink = QueueLogSink()
    manager = LogManager(min_severity=LogSeverity.TRACE)
    manager.register_sink(ExplodingSink())
    manager.register_sink(sink)

    Logger("ENGINE", manager).trace(event_type="X", message="still delivered")

    assert len(sink.drain()) == 1


def test_child_logger_shares_manager() -> None:
    sink = QueueLogSink()
    manager = LogManager(min_severity=LogSeverity.DEBUG)
    manager.register_sink(sink)

    Logger("KERNEL", manager).child("STDIN").debug(event_type="INPUT_REQUESTED", message="sent")

    assert sink.drain()[0].source_module == "STDIN"


def test_null_logger_emits_nothing_visible() -> None:
    null_logger("ANY").critical(event_type="KERNEL_CRASH", message="nobody listens")


def test_file_sink_writes_jsonl_with_context(tmp_path) -> None:
    path = tmp_path / "logs" / "kernel.jsonl"
    sink = FileLogSink(str(path))
    manager = LogManager(min_severity=LogSeverity.INFO)
    manager.register_sink(sink)

    ctx = MessageContext.from_header(
        {"msg_id": "m1", "session": "s1", "msg_type": "execute_request"},
        {"msg_id": "p0"},
    )
    Logger("ROUTER", manager).info(event_type="REQUEST_RECEIVED", message="execute_request", context=ctx)
    manager.close()

    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert len(records) == 1
    assert records[0]["severity"] == "INFO"
    assert records[0]["context"]["msg_id"] == "m1"
    assert records[0]["context"]["parent_msg_id"] == "p0"


def test_severity_from_name() -> None:
    assert LogSeverity.from_name(" debug ") is LogSeverity.DEBUG
    with pytest.raises(ValueError):
        LogSeverity.from_name("LOUD")
