from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class MessageContext:
    """
    Captures the message linkage for a log entry.

    Every log line written while handling a request carries the request's
    identity, so a causal chain can be rebuilt from the log alone.
    """

    msg_id: str
    # Identifies the envelope being handled.

    session: str = ""
    # Session of the frontend that sent it.

    msg_type: str = ""
    # Envelope type (execute_request, history_request, ...).

    parent_msg_id: Optional[str] = None
    # msg_id of the envelope that caused this one, if any.

    @classmethod
    def from_header(cls, header: Mapping[str, Any], parent_header: Optional[Mapping[str, Any]] = None) -> "MessageContext":
        parent_header = parent_header or {}
        return cls(
            msg_id=str(header.get("msg_id", "")),
            session=str(header.get("session", "")),
            msg_type=str(header.get("msg_type", "")),
            parent_msg_id=parent_header.get("msg_id"),
        )
