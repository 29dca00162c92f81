from enum import Enum
from dataclasses import dataclass
from typing import Optional, Any
import time

from src.kernel.kernel_exceptions import IllegalTransitionError


class ExecState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"


@dataclass(frozen=True)
class StateTransitionEvent:
    msg_id: str
    old_state: str
    new_state: str
    reason: str
    timestamp: float
    details: Optional[Any] = None


class ExecutionStateMachine:
    """
    Pure logic idle/busy state machine for the execution engine.

    - No I/O
    - No logging
    - No threading
    - Emits StateTransitionEvent on every transition
    """

    def __init__(self):
        self.state = ExecState.IDLE
        self.current_msg_id: Optional[str] = None
        self.completed = 0

        now = time.monotonic()
        self.created_at = now
        self.last_transition_at = now

    def _transition(
        self,
        new_state: ExecState,
        *,
        msg_id: str,
        reason: str,
        details: Optional[Any] = None,
    ) -> StateTransitionEvent:
        now = time.monotonic()

        event = StateTransitionEvent(
            msg_id=msg_id,
            old_state=self.state.value,
            new_state=new_state.value,
            reason=reason,
            timestamp=now,
            details=details,
        )

        self.state = new_state
        self.last_transition_at = now
        return event

    def on_begin(self, msg_id: str) -> StateTransitionEvent:
        if self.state is not ExecState.IDLE:
            raise IllegalTransitionError(
                f"Cannot begin {msg_id} while busy with {self.current_msg_id}",
                details={"state": self.state.value},
            )
        self.current_msg_id = msg_id
        return self._transition(ExecState.BUSY, msg_id=msg_id, reason="BEGIN")

    def on_finish(self, status: str) -> StateTransitionEvent:
        if self.state is not ExecState.BUSY:
            raise IllegalTransitionError("Cannot finish while idle", details={"status": status})
        msg_id = self.current_msg_id or ""
        self.current_msg_id = None
        self.completed += 1
        return self._transition(ExecState.IDLE, msg_id=msg_id, reason=f"FINISH_{status.upper()}")

    @property
    def busy(self) -> bool:
        return self.state is ExecState.BUSY

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "current_msg_id": self.current_msg_id,
            "completed": self.completed,
            "last_transition_at": self.last_transition_at,
        }
