import getpass
import uuid
from typing import Any, Mapping, Optional, Union

from src.kernel.messages.envelope import Envelope, Header


def _default_username() -> str:
    try:
        return getpass.getuser()
    except Exception:
        return "username"


class Session:
    """
    Identity of one connection's lifetime.

    Every envelope a party sends is built here, so each carries a fresh
    msg_id, the same session id, and an untrimmed copy of its parent header.
    """

    def __init__(self, *, session: Optional[str] = None, username: Optional[str] = None):
        self.session = session or str(uuid.uuid4())
        self.username = username if username is not None else _default_username()

    def msg_header(self, msg_type: str = "") -> dict:
        return Header.create(self.session, self.username, msg_type).to_dict()

    def msg(
        self,
        msg_type: str,
        content: Optional[dict] = None,
        parent: Union[Envelope, Mapping[str, Any], None] = None,
    ) -> Envelope:
        if isinstance(parent, Envelope):
            parent_header = dict(parent.header)
        elif parent:
            parent_header = dict(parent)
        else:
            parent_header = {}

        return Envelope(
            header=self.msg_header(msg_type),
            msg_type=msg_type,
            content=dict(content or {}),
            parent_header=parent_header,
        )

    @property
    def bsession(self) -> bytes:
        """Session id as bytes, used as zmq routing identity by frontends."""
        return self.session.encode("utf-8")
