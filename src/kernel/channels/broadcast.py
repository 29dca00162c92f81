"""
Module: broadcast.py
Location: src/kernel/channels/

Kernel-to-all publication of side effects (status, pyin, pyout, stream, ...).
Every broadcast carries the header of the request that caused it as its
parent_header.
"""

import threading
from typing import Optional, Protocol, Union

import zmq

from src.kernel.logging.log_manager import Logger, null_logger
from src.kernel.messages.envelope import Envelope, serialize
from src.kernel.messages.session import Session

Parent = Union[Envelope, dict, None]


class Broadcaster(Protocol):
    def publish(self, msg_type: str, content: dict, parent: Parent = None) -> Envelope:
        """Send one envelope to every subscribed frontend."""


class BroadcastChannel:
    """PUB socket wrapper. Safe to call from any thread."""

    def __init__(self, socket: zmq.Socket, session: Session, *, logger: Optional[Logger] = None):
        self._socket = socket
        self._session = session
        self._lock = threading.Lock()
        self._log = logger or null_logger("IOPUB")
        self.sent = 0

    def publish(self, msg_type: str, content: dict, parent: Parent = None) -> Envelope:
        envelope = self._session.msg(msg_type, content, parent=parent)
        frames = serialize(envelope)
        with self._lock:
            self._socket.send_multipart(frames)
            self.sent += 1
        self._log.trace(
            event_type="BROADCAST_SENT",
            message=msg_type,
            payload={"msg_id": envelope.msg_id, "parent_msg_id": envelope.parent_msg_id},
        )
        return envelope


class NullBroadcaster:
    """Builds envelopes but sends nothing; used when an engine runs without sockets."""

    def __init__(self, session: Optional[Session] = None):
        self._session = session or Session(username="kernel")

    def publish(self, msg_type: str, content: dict, parent: Parent = None) -> Envelope:
        return self._session.msg(msg_type, content, parent=parent)
