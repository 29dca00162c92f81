"""
Module: input_channel.py
Location: src/kernel/channels/

The exclusive input channel.

When user code asks for interactive input, the kernel leases the "virtual
keyboard" to exactly one frontend, sends it an input_request, and blocks
until that frontend answers. The lease is released on reply, on interrupt,
or when the kernel shuts down while waiting.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import zmq

from src.kernel.kernel_exceptions import InputAbandoned, InputChannelBusy, MessageFormatError
from src.kernel.logging.log_manager import Logger, null_logger
from src.kernel.logging.message_context import MessageContext
from src.kernel.messages.envelope import Envelope, deserialize, serialize
from src.kernel.messages.session import Session

FocusPolicy = Callable[[List[bytes]], List[bytes]]


def requester_has_focus(idents: List[bytes]) -> List[bytes]:
    """Default focus policy: the frontend that sent the running request."""
    return list(idents)


@dataclass(frozen=True)
class KeyboardLease:
    idents: tuple              # Routing identity of the addressed frontend
    parent_header: dict        # Header of the execute_request being served
    request_msg_id: str        # msg_id of the input_request sent
    acquired_at: float = field(default_factory=time.monotonic)


class VirtualKeyboard:
    """
    Holder of the single input lease.

    At most one lease exists at a time; acquiring while one is held raises
    InputChannelBusy.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._lease: Optional[KeyboardLease] = None

    def acquire(self, idents: List[bytes], parent_header: dict, request_msg_id: str) -> KeyboardLease:
        with self._lock:
            if self._lease is not None:
                raise InputChannelBusy(
                    "Virtual keyboard already leased",
                    details={"request_msg_id": self._lease.request_msg_id},
                )
            self._lease = KeyboardLease(
                idents=tuple(idents),
                parent_header=dict(parent_header),
                request_msg_id=request_msg_id,
            )
            return self._lease

    def release(self, lease: KeyboardLease) -> bool:
        with self._lock:
            if self._lease is not lease:
                return False
            self._lease = None
            return True

    @property
    def holder(self) -> Optional[KeyboardLease]:
        with self._lock:
            return self._lease

    def accepts(self, idents: List[bytes], reply: Envelope) -> bool:
        """True when ``reply`` answers the current lease from the leased frontend."""
        with self._lock:
            lease = self._lease
        if lease is None or reply.msg_type != "input_reply":
            return False
        return tuple(idents) == lease.idents and reply.parent_msg_id == lease.request_msg_id


class InputChannel:
    def __init__(
        self,
        socket: zmq.Socket,
        session: Session,
        *,
        stop_event: Optional[threading.Event] = None,
        focus_policy: FocusPolicy = requester_has_focus,
        keyboard: Optional[VirtualKeyboard] = None,
        logger: Optional[Logger] = None,
        poll_timeout_ms: int = 100,
    ):
        self._socket = socket
        self._session = session
        self._stop_event = stop_event or threading.Event()
        self._focus_policy = focus_policy
        self.keyboard = keyboard or VirtualKeyboard()
        self._log = logger or null_logger("STDIN")
        self._poll_timeout_ms = poll_timeout_ms

    def request_input(self, prompt: str, parent: Envelope, idents: List[bytes], *, password: bool = False) -> str:
        """
        Ask the focused frontend for one line of input and block for it.

        Raises InputAbandoned if the kernel is stopping, and lets
        KeyboardInterrupt through; the lease is released either way.
        """
        target = self._focus_policy(list(idents))
        request = self._session.msg("input_request", {"prompt": prompt, "password": password}, parent=parent)
        lease = self.keyboard.acquire(target, parent.header, request.msg_id)
        ctx = MessageContext.from_header(request.header, parent.header)

        try:
            self._socket.send_multipart(serialize(request, target))
            self._log.debug(event_type="INPUT_REQUESTED", message="input_request sent", context=ctx)
            return self._wait_for_reply(lease, ctx)
        finally:
            self.keyboard.release(lease)

    def _wait_for_reply(self, lease: KeyboardLease, ctx: MessageContext) -> str:
        poller = zmq.Poller()
        poller.register(self._socket, zmq.POLLIN)

        while True:
            if self._stop_event.is_set():
                self._log.warning(event_type="INPUT_ABANDONED", message="Kernel stopping, input abandoned", context=ctx)
                raise InputAbandoned("Input request abandoned: kernel is shutting down")

            events = dict(poller.poll(self._poll_timeout_ms))
            if self._socket not in events:
                continue

            frames = self._socket.recv_multipart()
            try:
                idents, reply = deserialize(frames)
            except MessageFormatError as e:
                self._log.warning(event_type="INPUT_BAD_FRAME", message=str(e), context=ctx)
                continue

            if not self.keyboard.accepts(idents, reply):
                self._log.warning(
                    event_type="INPUT_REPLY_DROPPED",
                    message="Reply does not match the current keyboard lease",
                    context=ctx,
                    payload={"msg_type": reply.msg_type, "parent_msg_id": reply.parent_msg_id},
                )
                continue

            self._log.debug(event_type="INPUT_RECEIVED", message="input_reply accepted", context=ctx)
            return str(reply.content.get("value", ""))
