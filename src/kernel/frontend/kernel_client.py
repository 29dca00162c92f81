# kernel_client.py
from __future__ import annotations

import queue
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import zmq

from src.kernel.channels.kernel_config import KernelConfig
from src.kernel.frontend.heart_monitor import HeartbeatMonitor
from src.kernel.kernel_exceptions import MessageFormatError
from src.kernel.logging.log_manager import Logger, null_logger
from src.kernel.messages.envelope import Envelope, deserialize, serialize
from src.kernel.messages.message_types import Channel, MessageType
from src.kernel.messages.session import Session


class KernelClient:
    """
    KernelClient: frontend transport + queues boundary.

    Thread ownership model:
      - start() spins a thread
      - thread creates the sockets and runs the poll loop
      - callers never touch zmq sockets

    Queues:
      - _send_q: caller -> client thread (outbound envelopes, per channel)
      - _shell_q: client thread -> caller (replies)
      - _iopub_q: client thread -> caller (broadcasts)
      - _stdin_q: client thread -> caller (input requests)

    The shell and stdin DEALER sockets both use the session id as routing
    identity, so the kernel can address input requests to this frontend.
    """

    def __init__(
        self,
        config: KernelConfig,
        *,
        session: Optional[Session] = None,
        logger: Optional[Logger] = None,
        poll_timeout_ms: int = 50,
    ):
        self.cfg = config
        self.session = session or Session()
        self._log = logger or null_logger("CLIENT")
        self._poll_timeout_ms = poll_timeout_ms

        self._send_q: "queue.Queue[tuple[Channel, Envelope]]" = queue.Queue()
        self._shell_q: "queue.Queue[Envelope]" = queue.Queue()
        self._iopub_q: "queue.Queue[Envelope]" = queue.Queue()
        self._stdin_q: "queue.Queue[Envelope]" = queue.Queue()
        self._held_replies: Dict[str, Envelope] = {}

        self._stop_evt = threading.Event()
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.heart: Optional[HeartbeatMonitor] = None

        # These exist only in the client thread
        self._ctx: Optional[zmq.Context] = None
        self._shell_sock = None
        self._stdin_sock = None
        self._iopub_sock = None
        self._poller = None

    @classmethod
    def from_connection_file(cls, path: str, **kwargs) -> "KernelClient":
        return cls(KernelConfig.from_file(path), **kwargs)

    # --------------------------
    # Lifecycle
    # --------------------------

    def start(self, ready_timeout: float = 5.0) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name=f"KernelClient[{self.session.session[:8]}]", daemon=True)
        self._thread.start()
        if not self._ready.wait(ready_timeout):
            raise TimeoutError("Kernel client sockets not ready")
        self._log.info(event_type="CLIENT_START", message="Client connected", payload=self.cfg.connection_info())

    def start_heartbeat(
        self,
        *,
        period: float = 1.0,
        max_misses: int = 3,
        on_dead: Optional[Callable[[], None]] = None,
    ) -> HeartbeatMonitor:
        self.heart = HeartbeatMonitor(
            self.cfg.addr(self.cfg.hb_port),
            period=period,
            max_misses=max_misses,
            on_dead=on_dead,
            logger=self._log.child("HB_MONITOR"),
        )
        self.heart.start()
        return self.heart

    def stop(self, join_timeout: float = 2.0) -> None:
        if self.heart is not None:
            self.heart.stop(join_timeout)
        self._stop_evt.set()
        if self._thread:
            self._thread.join(timeout=join_timeout)
        self._log.info(event_type="CLIENT_STOP", message="Client stopped")

    # --------------------------
    # Requests
    # --------------------------

    def request(self, msg_type: str, content: Optional[dict] = None) -> Envelope:
        envelope = self.session.msg(msg_type, content)
        self._send_q.put((Channel.SHELL, envelope))
        return envelope

    def execute(
        self,
        code: str,
        *,
        silent: bool = False,
        user_variables: Optional[List[str]] = None,
        user_expressions: Optional[Dict[str, str]] = None,
    ) -> Envelope:
        return self.request(
            MessageType.EXECUTE_REQUEST.value,
            {
                "code": code,
                "silent": silent,
                "user_variables": list(user_variables or []),
                "user_expressions": dict(user_expressions or {}),
            },
        )

    def object_info(self, oname: str) -> Envelope:
        return self.request(MessageType.OBJECT_INFO_REQUEST.value, {"oname": oname})

    def complete(self, text: str, line: str = "", cursor_pos: Optional[int] = None) -> Envelope:
        return self.request(
            MessageType.COMPLETE_REQUEST.value,
            {"text": text, "line": line, "cursor_pos": cursor_pos if cursor_pos is not None else len(line)},
        )

    def history(self, hist_access_type: str = "tail", *, raw: bool = False, output: bool = False, **kwargs: Any) -> Envelope:
        content = {"hist_access_type": hist_access_type, "raw": raw, "output": output}
        content.update(kwargs)
        return self.request(MessageType.HISTORY_REQUEST.value, content)

    def connect(self) -> Envelope:
        return self.request(MessageType.CONNECT_REQUEST.value)

    def shutdown(self, restart: bool = False) -> Envelope:
        return self.request(MessageType.SHUTDOWN_REQUEST.value, {"restart": restart})

    def getattr(self, name: str) -> Envelope:
        return self.request(MessageType.GETATTR_REQUEST.value, {"name": name})

    def setattr(self, name: str, value: Any) -> Envelope:
        return self.request(MessageType.SETATTR_REQUEST.value, {"name": name, "value": value})

    def input(self, value: str, request: Envelope) -> Envelope:
        """Answer an input_request received on the stdin channel."""
        reply = self.session.msg(MessageType.INPUT_REPLY.value, {"value": value}, parent=request)
        self._send_q.put((Channel.STDIN, reply))
        return reply

    # --------------------------
    # Receiving
    # --------------------------

    def get_reply(self, msg_id: Optional[str] = None, timeout: Optional[float] = None) -> Optional[Envelope]:
        """
        Next reply, or the reply to ``msg_id`` when given.

        Replies to other requests that arrive meanwhile are held for later
        calls.
        """
        if msg_id is not None and msg_id in self._held_replies:
            return self._held_replies.pop(msg_id)

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                reply = self._shell_q.get(timeout=remaining)
            except queue.Empty:
                return None
            if msg_id is None or reply.parent_msg_id == msg_id:
                return reply
            self._held_replies[reply.parent_msg_id] = reply

    def get_iopub(self, timeout: Optional[float] = None) -> Optional[Envelope]:
        try:
            return self._iopub_q.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain_iopub(self, max_items: int = 1000) -> List[Envelope]:
        items = []
        for _ in range(max_items):
            try:
                items.append(self._iopub_q.get_nowait())
            except queue.Empty:
                break
        return items

    def get_input_request(self, timeout: Optional[float] = None) -> Optional[Envelope]:
        try:
            return self._stdin_q.get(timeout=timeout)
        except queue.Empty:
            return None

    # --------------------------
    # Client thread internals
    # --------------------------

    def _run(self) -> None:
        try:
            self._setup_zmq()
            self._ready.set()
            self._loop()
        except Exception as e:
            self._log.error(event_type="CLIENT_ERROR", message=f"{type(e).__name__}: {e}")
        finally:
            self._teardown_zmq()

    def _setup_zmq(self) -> None:
        self._ctx = zmq.Context.instance()
        identity = self.session.bsession

        self._shell_sock = self._ctx.socket(zmq.DEALER)
        self._shell_sock.setsockopt(zmq.IDENTITY, identity)
        self._shell_sock.connect(self.cfg.addr(self.cfg.shell_port))

        self._stdin_sock = self._ctx.socket(zmq.DEALER)
        self._stdin_sock.setsockopt(zmq.IDENTITY, identity)
        self._stdin_sock.connect(self.cfg.addr(self.cfg.stdin_port))

        self._iopub_sock = self._ctx.socket(zmq.SUB)
        self._iopub_sock.setsockopt(zmq.SUBSCRIBE, b"")
        self._iopub_sock.connect(self.cfg.addr(self.cfg.iopub_port))

        self._poller = zmq.Poller()
        for sock in (self._shell_sock, self._stdin_sock, self._iopub_sock):
            self._poller.register(sock, zmq.POLLIN)

    def _teardown_zmq(self) -> None:
        for s in (self._shell_sock, self._stdin_sock, self._iopub_sock):
            if s is not None:
                s.close(linger=0)
        self._shell_sock = None
        self._stdin_sock = None
        self._iopub_sock = None
        self._poller = None

        # Do NOT terminate Context.instance() here; other clients may use it.
        self._ctx = None

    def _loop(self) -> None:
        targets = {
            self._shell_sock: self._shell_q,
            self._stdin_sock: self._stdin_q,
            self._iopub_sock: self._iopub_q,
        }
        while not self._stop_evt.is_set():
            self._flush_outbound(max_per_tick=50)

            events = dict(self._poller.poll(self._poll_timeout_ms))
            for sock, inbox in targets.items():
                if sock in events:
                    self._handle_inbound(sock, inbox)

    def _flush_outbound(self, max_per_tick: int) -> None:
        for _ in range(max_per_tick):
            try:
                channel, envelope = self._send_q.get_nowait()
            except queue.Empty:
                return
            sock = self._stdin_sock if channel is Channel.STDIN else self._shell_sock
            sock.send_multipart(serialize(envelope))

    def _handle_inbound(self, sock: zmq.Socket, inbox: "queue.Queue[Envelope]") -> None:
        frames = sock.recv_multipart()
        try:
            _, envelope = deserialize(frames)
        except MessageFormatError as e:
            self._log.warning(event_type="CLIENT_BAD_FRAME", message=str(e))
            return
        inbox.put(envelope)
