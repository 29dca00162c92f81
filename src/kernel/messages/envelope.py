"""
Module: envelope.py
Location: src/kernel/messages/

Defines the envelope, the unit of communication between kernel and frontends.

An envelope carries its own header, a full copy of the header of the message
that caused it (``parent_header``), a ``msg_type`` and a JSON-safe
``content`` mapping. Observers rebuild causal chains from ``parent_header``
alone, without shared state.
"""

import json
import time
import uuid
from dataclasses import dataclass, field, asdict
from typing import Any

from src.kernel.kernel_exceptions import MessageFormatError

DELIM = b"<IDS|MSG>"


@dataclass(frozen=True)
class Header:
    msg_id: str                  # Unique per message
    session: str                 # Stable for one frontend connection lifetime
    username: str                # Free-form
    msg_type: str = ""           # Mirrors Envelope.msg_type for log readers
    date: str = ""               # ISO-8601 creation time

    @staticmethod
    def create(session: str, username: str, msg_type: str = "") -> "Header":
        return Header(
            msg_id=str(uuid.uuid4()),
            session=session,
            username=username,
            msg_type=msg_type,
            date=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Header":
        try:
            return cls(
                msg_id=str(data["msg_id"]),
                session=str(data["session"]),
                username=str(data.get("username", "")),
                msg_type=str(data.get("msg_type", "")),
                date=str(data.get("date", "")),
            )
        except KeyError as e:
            raise MessageFormatError(f"Missing required header field: {e}") from e


@dataclass
class Envelope:
    header: dict                                      # This message's identity
    msg_type: str                                     # Semantic intent
    content: dict = field(default_factory=dict)       # Shape set by msg_type
    parent_header: dict = field(default_factory=dict) # Header of the causing message

    @property
    def msg_id(self) -> str:
        return self.header.get("msg_id", "")

    @property
    def session(self) -> str:
        return self.header.get("session", "")

    @property
    def parent_msg_id(self) -> str | None:
        return self.parent_header.get("msg_id")

    def to_dict(self) -> dict:
        return {
            "header": dict(self.header),
            "parent_header": dict(self.parent_header),
            "msg_type": self.msg_type,
            "content": self.content,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def to_bytes(self) -> bytes:
        return self.to_json().encode("utf-8")

    @classmethod
    def from_dict(cls, data: Any) -> "Envelope":
        if not isinstance(data, dict):
            raise MessageFormatError(f"Envelope must be a mapping, got {type(data).__name__}")

        header = data.get("header")
        if not isinstance(header, dict):
            raise MessageFormatError("Envelope missing 'header'")
        Header.from_dict(header)

        msg_type = data.get("msg_type") or header.get("msg_type")
        if not msg_type:
            raise MessageFormatError("Envelope missing 'msg_type'")

        parent_header = data.get("parent_header") or {}
        content = data.get("content")
        if content is None:
            content = {}
        if not isinstance(parent_header, dict) or not isinstance(content, dict):
            raise MessageFormatError("'parent_header' and 'content' must be mappings")

        return cls(header=dict(header), msg_type=str(msg_type), content=content, parent_header=dict(parent_header))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Envelope":
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError(f"Envelope.from_bytes expects bytes, got {type(data)}")
        try:
            obj = json.loads(data.decode("utf-8"))
        except Exception as e:
            raise MessageFormatError(f"Invalid envelope JSON: {e}") from e
        return cls.from_dict(obj)


# ----------------------------
# Multipart framing
# ----------------------------

def serialize(envelope: Envelope, identities: list[bytes] | None = None) -> list[bytes]:
    """Frames for send_multipart: routing identities, delimiter, envelope."""
    return list(identities or []) + [DELIM, envelope.to_bytes()]


def deserialize(frames: list[bytes]) -> tuple[list[bytes], Envelope]:
    """
    Split received frames into routing identities and the envelope.

    Raises MessageFormatError when the delimiter is missing.
    """
    try:
        idx = frames.index(DELIM)
    except ValueError:
        raise MessageFormatError("Frames missing <IDS|MSG> delimiter") from None

    if idx + 1 >= len(frames):
        raise MessageFormatError("Frames missing envelope after delimiter")

    return list(frames[:idx]), Envelope.from_bytes(frames[idx + 1])
