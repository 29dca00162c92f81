"""
Module: heart_monitor.py
Location: src/kernel/frontend/

Frontend-side liveness loop.

The monitor talks to the kernel's heartbeat from a ROUTER socket with
ZMQ_PROBE_ROUTER set. The empty message the socket sends on connect comes back
from the kernel's echo prefixed with the kernel's identity token, which
is then used to address every ping.

Every ``period`` seconds the monitor sends its uptime and waits up to one
period for ``[token, same bytes]`` to come back. Anything else (silence, a
stale echo) is a miss; ``max_misses`` consecutive misses declare the
kernel dead and call ``on_dead`` once. After a miss the socket is thrown
away and reconnected, so a stale reply can never be mistaken for a fresh
one.
"""

import threading
import time
from typing import Callable, List, Optional

import zmq

from src.kernel.logging.log_manager import Logger, null_logger


class HeartbeatMonitor(threading.Thread):
    def __init__(
        self,
        addr: str,
        *,
        period: float = 1.0,
        max_misses: int = 3,
        on_dead: Optional[Callable[[], None]] = None,
        context: Optional[zmq.Context] = None,
        logger: Optional[Logger] = None,
    ):
        if period <= 0:
            raise ValueError("period must be positive")
        if max_misses < 1:
            raise ValueError("max_misses must be at least 1")
        super().__init__(daemon=True, name="HeartbeatMonitor")
        self.addr = addr
        self.period = period
        self.max_misses = max_misses
        self._on_dead = on_dead
        self._ctx = context or zmq.Context.instance()
        self._log = logger or null_logger("HB_MONITOR")

        self._stop_evt = threading.Event()
        self._started_at = time.monotonic()
        self.misses = 0
        self.beats = 0
        self.dead = False
        self.kernel_token: Optional[bytes] = None
        self._peer: Optional[bytes] = None

    @property
    def beating(self) -> bool:
        return not self.dead and self.misses == 0 and self.beats > 0

    def stop(self, join_timeout: float = 2.0) -> None:
        self._stop_evt.set()
        if self.is_alive():
            self.join(timeout=join_timeout)

    # --------------------------
    # Thread internals
    # --------------------------

    def _new_socket(self) -> zmq.Socket:
        sock = self._ctx.socket(zmq.ROUTER)
        sock.linger = 0
        sock.setsockopt(zmq.PROBE_ROUTER, 1)
        sock.connect(self.addr)
        self._peer = None
        return sock

    def run(self) -> None:
        sock = self._new_socket()
        poller = zmq.Poller()
        poller.register(sock, zmq.POLLIN)
        try:
            while not self._stop_evt.is_set():
                sent_at = time.monotonic()
                if self._beat(sock, poller, sent_at):
                    self._on_beat()
                    remaining = self.period - (time.monotonic() - sent_at)
                    if remaining > 0:
                        self._stop_evt.wait(remaining)
                    continue

                self._on_miss()
                poller.unregister(sock)
                sock.close(0)
                sock = self._new_socket()
                poller.register(sock, zmq.POLLIN)
        finally:
            sock.close(0)

    def _beat(self, sock: zmq.Socket, poller: zmq.Poller, sent_at: float) -> bool:
        deadline = sent_at + self.period
        if self._peer is None:
            # Echo of the empty connect message: [token, b""]
            frames = self._await(sock, poller, deadline, lambda f: len(f) == 2 and f[1] == b"")
            if frames is None:
                return False
            self._peer = frames[0]
            self.kernel_token = frames[0]

        payload = f"{sent_at - self._started_at:.6f}".encode("ascii")
        sock.send_multipart([self._peer, payload])
        return self._await(sock, poller, deadline, lambda f: f == [self._peer, payload]) is not None

    def _await(
        self,
        sock: zmq.Socket,
        poller: zmq.Poller,
        deadline: float,
        matches: Callable[[List[bytes]], bool],
    ) -> Optional[List[bytes]]:
        while not self._stop_evt.is_set():
            timeout_ms = int((deadline - time.monotonic()) * 1000)
            if timeout_ms <= 0:
                return None
            events = dict(poller.poll(timeout_ms))
            if sock not in events:
                return None
            frames = sock.recv_multipart()
            if matches(frames):
                return frames
            # Stale echo from an earlier ping; keep waiting
        return None

    def _on_beat(self) -> None:
        if self.misses:
            self._log.info(
                event_type="HEARTBEAT_RECOVERED",
                message="Kernel heartbeat recovered",
                payload={"misses": self.misses},
            )
        self.misses = 0
        self.beats += 1

    def _on_miss(self) -> None:
        self.misses += 1
        self._log.warning(
            event_type="HEARTBEAT_MISSED",
            message="No heartbeat echo within one period",
            payload={"misses": self.misses, "max_misses": self.max_misses},
        )
        if self.misses >= self.max_misses and not self.dead:
            self.dead = True
            self._log.error(event_type="KERNEL_DEAD", message="Kernel declared dead")
            if self._on_dead is not None:
                self._on_dead()
