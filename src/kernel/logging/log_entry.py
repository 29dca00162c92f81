from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import time
import uuid

from src.kernel.logging.log_severity import LogSeverity
from src.kernel.logging.message_context import MessageContext


@dataclass
class LogEntry:
    """
    Atomic record of a single observable kernel event.
    """

    log_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    # Unique identifier for this log entry.

    timestamp: float = field(default_factory=time.time)
    # Wall-clock time when the event occurred.

    severity: LogSeverity = LogSeverity.INFO

    source_module: str = ""
    # Kernel component that produced this entry
    # (e.g., ROUTER, ENGINE, HISTORY, GATEWAY, HEART).

    event_type: str = ""
    # Machine-readable symbolic name for the event
    # (e.g., REQUEST_RECEIVED, EXECUTE_ERROR).

    message: Optional[str] = None
    # Human-readable summary of the event.

    payload: Dict[str, Any] = field(default_factory=dict)
    # Structured data associated with the event.
    # Must be JSON-serializable.

    context: Optional[MessageContext] = None
    # Envelope linkage for entries written while handling a message.

    def to_record(self) -> Dict[str, Any]:
        return {
            "log_id": self.log_id,
            "timestamp": self.timestamp,
            "severity": self.severity.name,
            "source_module": self.source_module,
            "event_type": self.event_type,
            "message": self.message,
            "payload": self.payload,
            "context": vars(self.context) if self.context is not None else None,
        }
