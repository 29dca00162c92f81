# ======================================================
# message_types.py (Kernel message catalogue)
# ======================================================

from enum import Enum


# ------------------------------------------------------
# Logical channels
# ------------------------------------------------------
class Channel(Enum):
    SHELL = "shell"       # Request/Reply, multiplexed
    STDIN = "stdin"       # Exclusive interactive input
    IOPUB = "iopub"       # Broadcast of side effects
    HB = "hb"             # Heartbeat echo


# ------------------------------------------------------
# Standardized message types
# ------------------------------------------------------
class MessageType(str, Enum):
    # Request/Reply
    EXECUTE_REQUEST = "execute_request"
    EXECUTE_REPLY = "execute_reply"
    OBJECT_INFO_REQUEST = "object_info_request"
    OBJECT_INFO_REPLY = "object_info_reply"
    COMPLETE_REQUEST = "complete_request"
    COMPLETE_REPLY = "complete_reply"
    HISTORY_REQUEST = "history_request"
    HISTORY_REPLY = "history_reply"
    CONNECT_REQUEST = "connect_request"
    CONNECT_REPLY = "connect_reply"
    SHUTDOWN_REQUEST = "shutdown_request"
    SHUTDOWN_REPLY = "shutdown_reply"
    GETATTR_REQUEST = "getattr_request"
    GETATTR_REPLY = "getattr_reply"
    SETATTR_REQUEST = "setattr_request"
    SETATTR_REPLY = "setattr_reply"

    # Broadcast
    STREAM = "stream"
    DISPLAY_DATA = "display_data"
    PYIN = "pyin"
    PYOUT = "pyout"
    PYERR = "pyerr"
    STATUS = "status"
    CRASH = "crash"

    # Input
    INPUT_REQUEST = "input_request"
    INPUT_REPLY = "input_reply"


class ExecutionStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    ABORT = "abort"


def reply_type(request_type: str) -> str:
    """Map ``foo_request`` to ``foo_reply``; anything else maps to ``error_reply``."""
    if request_type.endswith("_request"):
        return request_type[: -len("_request")] + "_reply"
    return "error_reply"
