import json
import signal
import threading
import time

import pytest

from src.kernel.channels.kernel_config import KernelConfig
from src.kernel.frontend.kernel_client import KernelClient
from src.kernel.kernel_app import KernelApp
from src.kernel.logging.log_manager import LogManager
from src.kernel.logging.log_severity import LogSeverity
from src.kernel.logging.queue_log_sink import QueueLogSink

TIMEOUT = 5.0


class RunningKernel:
    def __init__(self, app: KernelApp):
        self.app = app
        self.exit_codes = []
        self.thread = threading.Thread(target=lambda: self.exit_codes.append(app.run()), daemon=True)

    def start(self) -> None:
        self.thread.start()
        deadline = time.monotonic() + TIMEOUT
        while not self.app.router.connection_info and time.monotonic() < deadline:
            time.sleep(0.01)
        assert self.app.router.connection_info, "kernel did not start"


@pytest.fixture
def kernel(tmp_path):
    manager = LogManager(min_severity=LogSeverity.DEBUG)
    sink = QueueLogSink()
    manager.register_sink(sink)
    config = KernelConfig(connection_file=str(tmp_path / "kernel.json"), poll_timeout_ms=20)
    running = RunningKernel(KernelApp(config, log_manager=manager))
    running.sink = sink
    running.start()
    yield running
    if running.thread.is_alive():
        running.app.router.stop()
        running.thread.join(TIMEOUT)


@pytest.fixture
def client(kernel):
    c = KernelClient.from_connection_file(kernel.app.config.connection_file)
    c.start()
    # Wait until the broadcast subscription is live
    deadline = time.monotonic() + TIMEOUT
    while time.monotonic() < deadline:
        c.get_reply(c.execute("", silent=True).msg_id, timeout=TIMEOUT)
        if c.get_iopub(timeout=0.1) is not None:
            break
    time.sleep(0.1)
    c.drain_iopub()
    yield c
    c.stop()


def _collect_until_idle(client, parent_msg_id: str) -> list:
    seen = []
    deadline = time.monotonic() + TIMEOUT
    while time.monotonic() < deadline:
        msg = client.get_iopub(timeout=0.2)
        if msg is None or msg.parent_msg_id != parent_msg_id:
            continue
        seen.append(msg)
        if msg.msg_type == "status" and msg.content["execution_state"] == "idle":
            break
    return seen


def test_connection_file_has_bound_ports(kernel) -> None:
    data = json.loads(open(kernel.app.config.connection_file, encoding="utf-8").read())
    for key in ("shell_port", "iopub_port", "stdin_port", "hb_port"):
        assert data[key] > 0


def test_execute_round_trip(client) -> None:
    request = client.execute("x = 6 * 7\nx")
    reply = client.get_reply(request.msg_id, timeout=TIMEOUT)

    assert reply.msg_type == "execute_reply"
    assert reply.parent_header == request.header
    assert reply.content["status"] == "ok"

    broadcasts = _collect_until_idle(client, request.msg_id)
    assert [m.msg_type for m in broadcasts] == ["status", "pyin", "pyout", "status"]
    assert broadcasts[2].content["data"]["text/plain"] == "42"


def test_connect_request_reports_ports(kernel, client) -> None:
    reply = client.get_reply(client.connect().msg_id, timeout=TIMEOUT)
    assert reply.content == {
        key: getattr(kernel.app.config, key) for key in ("shell_port", "iopub_port", "stdin_port", "hb_port")
    }


def test_input_goes_to_requesting_frontend(client) -> None:
    request = client.execute("name = input('who? ')", user_variables=["name"])

    input_request = client.get_input_request(timeout=TIMEOUT)
    assert input_request is not None
    assert input_request.content["prompt"] == "who? "
    assert input_request.parent_header == request.header
    client.input("ada", input_request)

    reply = client.get_reply(request.msg_id, timeout=TIMEOUT)
    assert reply.content["status"] == "ok"
    assert reply.content["user_variables"] == {"name": "'ada'"}


def test_gateway_over_the_wire(kernel, client) -> None:
    session = client.get_reply(client.getattr("kernel.session").msg_id, timeout=TIMEOUT)
    assert session.content["value"] == kernel.app.session.session

    renamed = client.get_reply(client.setattr("kernel.username", "lab").msg_id, timeout=TIMEOUT)
    assert renamed.content["status"] == "ok"
    empty = client.get_reply(client.setattr("kernel.username", "").msg_id, timeout=TIMEOUT)
    assert empty.content["status"] == "ValueError"

    reply = client.get_reply(client.connect().msg_id, timeout=TIMEOUT)
    assert reply.header["username"] == "lab"


def test_heartbeat_survives_long_execution(client) -> None:
    monitor = client.start_heartbeat(period=0.1, max_misses=3)
    request = client.execute("import time\ntime.sleep(0.8)")
    time.sleep(0.5)
    beats_during = monitor.beats

    reply = client.get_reply(request.msg_id, timeout=TIMEOUT)
    assert reply.content["status"] == "ok"
    assert beats_during >= 2
    assert not monitor.dead


def test_shutdown_ends_the_kernel(kernel, client) -> None:
    request = client.shutdown(restart=False)
    reply = client.get_reply(request.msg_id, timeout=TIMEOUT)
    assert reply.content == {"restart": False}

    kernel.thread.join(TIMEOUT)
    assert not kernel.thread.is_alive()
    assert kernel.exit_codes == [0]

    notice = client.get_iopub(timeout=TIMEOUT)
    assert notice.msg_type == "shutdown_reply"
    assert notice.content == {"restart": False}
    assert notice.parent_msg_id == request.msg_id

    # Nothing answers after shutdown
    late = client.execute("1")
    assert client.get_reply(late.msg_id, timeout=0.5) is None

    events = [e.event_type for e in kernel.sink.drain()]
    assert "KERNEL_SHUTDOWN" in events
    assert "KERNEL_EXIT" in events


def test_terminate_abandons_pending_input(kernel, client) -> None:
    request = client.execute("name = input('who? ')")
    assert client.get_input_request(timeout=TIMEOUT) is not None

    kernel.app._on_sigterm(signal.SIGTERM, None)

    reply = client.get_reply(request.msg_id, timeout=TIMEOUT)
    assert reply.content["status"] == "error"
    assert reply.content["ename"] == "InputAbandoned"

    kernel.thread.join(TIMEOUT)
    assert not kernel.thread.is_alive()
    assert kernel.exit_codes == [0]
    events = [e.event_type for e in kernel.sink.drain()]
    assert "SIGTERM_RECEIVED" in events
    assert "INPUT_ABANDONED" in events
