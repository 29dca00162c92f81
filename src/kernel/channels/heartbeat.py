"""
Module: heartbeat.py
Location: src/kernel/channels/

Kernel-side liveness echo.

The heart runs on its own thread with its own zmq.Context and shares
nothing with the router or the engine. The echo itself is ``zmq.proxy``
with the ROUTER socket on both sides, so it runs inside libzmq with the
GIL released and keeps answering while user code holds the interpreter.

The socket's routing id is the kernel's identity token. A frontend that
pings from a ROUTER socket receives every echo as ``[identity_token,
payload]``; a DEALER peer receives just ``[payload]``.
"""

import errno
import threading
from typing import Optional

import zmq

from src.kernel.logging.log_manager import Logger, null_logger


class Heart(threading.Thread):
    def __init__(
        self,
        addr: str,
        identity_token: bytes,
        *,
        port: int = 0,
        logger: Optional[Logger] = None,
    ):
        """
        addr: ``tcp://ip`` interface to bind; ``port`` 0 picks a random port.
        identity_token: stable per kernel, tells frontends which kernel answered.
        """
        super().__init__(daemon=True, name="Heartbeat")
        self.addr = addr
        self.identity_token = identity_token
        self.port = port
        self._log = logger or null_logger("HEARTBEAT")

        self._ctx = zmq.Context()
        self._term_lock = threading.Lock()
        self._ready = threading.Event()
        self._bind_error: Optional[BaseException] = None

    def start(self, ready_timeout: float = 5.0) -> None:
        """Start the thread and wait until its socket is bound."""
        super().start()
        if not self._ready.wait(ready_timeout):
            raise TimeoutError("Heartbeat socket did not bind in time")
        if self._bind_error is not None:
            raise self._bind_error

    def stop(self, join_timeout: float = 2.0) -> None:
        # Terminating the context is the only way out of zmq.proxy
        self._terminate()
        if self.is_alive():
            self.join(timeout=join_timeout)

    def _terminate(self) -> None:
        with self._term_lock:
            if not self._ctx.closed:
                self._ctx.term()

    def run(self) -> None:
        sock = self._ctx.socket(zmq.ROUTER)
        sock.linger = 0
        sock.setsockopt(zmq.ROUTING_ID, self.identity_token)
        try:
            try:
                if self.port:
                    sock.bind(f"{self.addr}:{self.port}")
                else:
                    self.port = sock.bind_to_random_port(self.addr)
            except zmq.ZMQError as e:
                self._bind_error = e
                return
            finally:
                self._ready.set()

            self._log.info(
                event_type="HEARTBEAT_START",
                message="Heartbeat listening",
                payload={"port": self.port},
            )
            self._echo(sock)
        finally:
            sock.close(0)
            self._log.info(event_type="HEARTBEAT_STOP", message="Heartbeat stopped")

    def _echo(self, sock: zmq.Socket) -> None:
        while True:
            try:
                zmq.proxy(sock, sock)
            except zmq.ContextTerminated:
                return
            except zmq.ZMQError as e:
                if e.errno == errno.EINTR:
                    continue
                raise
