import json

import pytest

from src.kernel.kernel_exceptions import MessageFormatError
from src.kernel.messages.envelope import DELIM, Envelope, deserialize, serialize
from src.kernel.messages.message_types import reply_type
from src.kernel.messages.session import Session


def test_session_msg_ids_are_fresh_and_session_is_stable() -> None:
    session = Session(username="ada")
    a = session.msg("execute_request", {"code": "1"})
    b = session.msg("execute_request", {"code": "2"})

    assert a.msg_id != b.msg_id
    assert a.session == b.session == session.session
    assert a.header["username"] == "ada"
    assert a.parent_header == {}


def test_parent_header_is_full_copy_of_request_header() -> None:
    frontend = Session(username="frontend")
    kernel = Session(username="kernel")
    request = frontend.msg("execute_request", {"code": "x"})

    reply = kernel.msg("execute_reply", {"status": "ok"}, parent=request)

    assert reply.parent_header == request.header
    assert reply.parent_header is not request.header
    assert reply.parent_msg_id == request.msg_id


def test_parent_may_be_given_as_header_mapping() -> None:
    header = Session().msg_header("history_request")
    reply = Session().msg("history_reply", {}, parent=header)
    assert reply.parent_header == header


def test_serialize_and_deserialize_keep_identities() -> None:
    env = Session().msg("connect_request")
    frames = serialize(env, [b"router-a", b"client-1"])

    assert frames[2] == DELIM
    idents, decoded = deserialize(frames)
    assert idents == [b"router-a", b"client-1"]
    assert decoded.to_dict() == env.to_dict()


def test_broadcast_frames_have_no_identities() -> None:
    env = Session().msg("status", {"execution_state": "idle"})
    assert serialize(env)[0] == DELIM


def test_deserialize_without_delimiter_raises() -> None:
    with pytest.raises(MessageFormatError):
        deserialize([b"client", b"{}"])


def test_deserialize_without_envelope_raises() -> None:
    with pytest.raises(MessageFormatError):
        deserialize([b"client", DELIM])


def test_from_bytes_rejects_bad_json_and_missing_header() -> None:
    with pytest.raises(MessageFormatError):
        Envelope.from_bytes(b"not json")
    with pytest.raises(MessageFormatError):
        Envelope.from_bytes(json.dumps({"msg_type": "x", "content": {}}).encode())
    with pytest.raises(MessageFormatError):
        Envelope.from_bytes(json.dumps({"header": {"session": "s"}, "msg_type": "x"}).encode())


def test_from_bytes_rejects_non_bytes() -> None:
    with pytest.raises(TypeError):
        Envelope.from_bytes("text")


def test_msg_type_falls_back_to_header() -> None:
    header = Session().msg_header("complete_request")
    env = Envelope.from_dict({"header": header, "content": None})
    assert env.msg_type == "complete_request"
    assert env.content == {}


def test_reply_type_mapping() -> None:
    assert reply_type("execute_request") == "execute_reply"
    assert reply_type("frobnicate") == "error_reply"
