import pytest

from src.kernel.channels.kernel_config import KernelConfig
from src.kernel.kernel_app import KernelApp
from src.kernel.logging.log_manager import LogManager
from src.kernel.logging.log_severity import LogSeverity
from src.kernel.logging.queue_log_sink import QueueLogSink


@pytest.fixture
def app(broadcaster):
    manager = LogManager(min_severity=LogSeverity.DEBUG)
    sink = QueueLogSink()
    manager.register_sink(sink)
    kernel = KernelApp(KernelConfig(), log_manager=manager)
    kernel.sink = sink
    kernel.broadcaster = broadcaster
    yield kernel
    kernel.close()


def test_sockets_bound_to_random_ports(app) -> None:
    assert app.config.shell_port > 0
    assert app.config.iopub_port > 0
    assert app.config.stdin_port > 0
    assert len({app.config.shell_port, app.config.iopub_port, app.config.stdin_port}) == 3


def test_gateway_exposes_kernel_attributes(app) -> None:
    assert app.gateway.list_names() == [
        "engine.autocall",
        "engine.execution_count",
        "engine.state",
        "history.entry_count",
        "history.session_number",
        "kernel.session",
        "kernel.username",
    ]
    assert app.gateway.handle_getattr({"name": "kernel.session"})["value"] == app.session.session


def test_sigint_while_idle_is_ignored(app) -> None:
    app._on_sigint(2, None)
    assert "SIGINT_IGNORED" in [e.event_type for e in app.sink.drain()]


def test_sigint_while_busy_interrupts(app) -> None:
    app.engine._sm.on_begin("m1")
    with pytest.raises(KeyboardInterrupt):
        app._on_sigint(2, None)


def test_crash_is_reported_once(app, broadcaster) -> None:
    try:
        raise RuntimeError("socket exploded")
    except RuntimeError as e:
        app.crash(e)
        app.crash(e)

    crashes = broadcaster.of_type("crash")
    assert len(crashes) == 1
    content = crashes[0].content
    assert content["ename"] == "RuntimeError"
    assert content["evalue"] == "socket exploded"
    assert content["traceback"]
    assert content["info"]["session"] == app.session.session

    critical = [e for e in app.sink.drain() if e.severity is LogSeverity.CRITICAL]
    assert [e.event_type for e in critical] == ["KERNEL_CRASH"]
