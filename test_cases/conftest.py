import pytest

from src.kernel.engine.execution_engine import ExecutionEngine
from src.kernel.history.history_store import HistoryStore
from src.kernel.logging.log_manager import LogManager, Logger
from src.kernel.logging.log_severity import LogSeverity
from src.kernel.logging.queue_log_sink import QueueLogSink
from src.kernel.messages.envelope import Envelope
from src.kernel.messages.session import Session


class RecordingBroadcaster:
    """Broadcaster that keeps every published envelope in memory."""

    def __init__(self, session: Session | None = None):
        self.session = session or Session(username="kernel")
        self.sent: list[Envelope] = []

    def publish(self, msg_type, content, parent=None) -> Envelope:
        envelope = self.session.msg(msg_type, content, parent=parent)
        self.sent.append(envelope)
        return envelope

    def of_type(self, msg_type: str) -> list[Envelope]:
        return [e for e in self.sent if e.msg_type == msg_type]

    def types(self) -> list[str]:
        return [e.msg_type for e in self.sent]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def log_sink() -> QueueLogSink:
    return QueueLogSink()


@pytest.fixture
def logger(log_sink) -> Logger:
    manager = LogManager(min_severity=LogSeverity.TRACE)
    manager.register_sink(log_sink)
    return Logger("TEST", manager)


@pytest.fixture
def engine(broadcaster, logger) -> ExecutionEngine:
    return ExecutionEngine(broadcaster=broadcaster, history=HistoryStore(), logger=logger)


@pytest.fixture
def client_session() -> Session:
    return Session(username="frontend")


def pytest_unconfigure(config) -> None:
    # CPython marks a KeyboardInterrupt escaping eval() of a source string as
    # unhandled even when caught, then re-kills itself with SIGINT at exit
    # (exit status 130). Evaluating a fresh string clears that stale flag.
    eval("None")
