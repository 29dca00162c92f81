import subprocess
import sys
import threading
import time

import zmq

from src.kernel.channels.heartbeat import Heart
from src.kernel.frontend.heart_monitor import HeartbeatMonitor

# Runs in its own interpreter so its pings do not wait on this process's GIL.
# Prints "ready" after the first echo, then the worst echo latency seen.
PINGER = """
import sys, time, zmq
sock = zmq.Context().socket(zmq.DEALER)
sock.linger = 0
sock.connect(sys.argv[1])
worst, end, n = 0.0, None, 0
while end is None or time.monotonic() < end:
    n += 1
    payload = str(n).encode()
    sent = time.monotonic()
    sock.send(payload)
    if not sock.poll(10000) or sock.recv() != payload:
        sys.exit(1)
    if end is None:
        end = time.monotonic() + float(sys.argv[2])
        print("ready", flush=True)
    else:
        worst = max(worst, time.monotonic() - sent)
    time.sleep(0.05)
print(worst, flush=True)
"""


def _ping(port: int, payload: bytes, timeout_ms: int = 2000) -> list:
    ctx = zmq.Context.instance()
    sock = ctx.socket(zmq.ROUTER)
    sock.linger = 0
    sock.setsockopt(zmq.PROBE_ROUTER, 1)
    sock.connect(f"tcp://127.0.0.1:{port}")
    try:
        if not sock.poll(timeout_ms):
            return []
        token, _ = sock.recv_multipart()
        sock.send_multipart([token, payload])
        if not sock.poll(timeout_ms):
            return []
        return sock.recv_multipart()
    finally:
        sock.close()


def _unused_port() -> int:
    ctx = zmq.Context.instance()
    sock = ctx.socket(zmq.ROUTER)
    port = sock.bind_to_random_port("tcp://127.0.0.1")
    sock.close(0)
    return port


def test_heart_echoes_with_identity_token() -> None:
    heart = Heart("tcp://127.0.0.1", b"kernel-session")
    heart.start()
    try:
        assert heart.port > 0
        assert _ping(heart.port, b"12.5") == [b"kernel-session", b"12.5"]
    finally:
        heart.stop()
    assert not heart.is_alive()


def test_dealer_peer_gets_bare_echo() -> None:
    heart = Heart("tcp://127.0.0.1", b"k")
    heart.start()
    sock = zmq.Context.instance().socket(zmq.DEALER)
    sock.linger = 0
    sock.connect(f"tcp://127.0.0.1:{heart.port}")
    try:
        sock.send(b"ping")
        assert sock.poll(2000)
        assert sock.recv_multipart() == [b"ping"]
    finally:
        sock.close()
        heart.stop()


def test_heart_answers_while_engine_is_blocked(engine) -> None:
    heart = Heart("tcp://127.0.0.1", b"k")
    heart.start()
    worker = threading.Thread(target=engine.execute, args=("import time\ntime.sleep(1.0)",))
    try:
        worker.start()
        time.sleep(0.1)
        assert engine.busy
        assert _ping(heart.port, b"during", timeout_ms=500) == [b"k", b"during"]
    finally:
        worker.join(5)
        heart.stop()


def test_heart_answers_while_user_code_holds_the_gil(engine) -> None:
    heart = Heart("tcp://127.0.0.1", b"k")
    heart.start()
    pinger = subprocess.Popen(
        [sys.executable, "-c", PINGER, f"tcp://127.0.0.1:{heart.port}", "2.0"],
        stdout=subprocess.PIPE,
        text=True,
    )
    try:
        assert pinger.stdout.readline().strip() == "ready"
        # One C-level call that never releases the GIL
        reply = engine.execute("sum(range(60_000_000))")
        out, _ = pinger.communicate(timeout=30)
    finally:
        if pinger.poll() is None:
            pinger.kill()
            pinger.wait()
        heart.stop()

    assert reply["status"] == "ok"
    assert pinger.returncode == 0
    assert float(out.strip()) < 0.5


def test_stop_without_start_is_harmless() -> None:
    heart = Heart("tcp://127.0.0.1", b"k")
    heart.stop()
    assert not heart.is_alive()


def test_monitor_sees_beats() -> None:
    heart = Heart("tcp://127.0.0.1", b"k")
    heart.start()
    dead = threading.Event()
    monitor = HeartbeatMonitor(f"tcp://127.0.0.1:{heart.port}", period=0.1, max_misses=3, on_dead=dead.set)
    try:
        monitor.start()
        deadline = time.monotonic() + 3
        while monitor.beats < 3 and time.monotonic() < deadline:
            time.sleep(0.05)
        assert monitor.beats >= 3
        assert monitor.beating
        assert monitor.kernel_token == b"k"
        assert not dead.is_set()
    finally:
        monitor.stop()
        heart.stop()


def test_monitor_declares_dead_once() -> None:
    calls = []
    dead = threading.Event()

    def on_dead():
        calls.append(1)
        dead.set()

    monitor = HeartbeatMonitor(f"tcp://127.0.0.1:{_unused_port()}", period=0.05, max_misses=2, on_dead=on_dead)
    monitor.start()
    try:
        assert dead.wait(3)
        time.sleep(0.3)
    finally:
        monitor.stop()

    assert calls == [1]
    assert monitor.dead
    assert monitor.misses >= 2
