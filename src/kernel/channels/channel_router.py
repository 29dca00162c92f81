"""
Module: channel_router.py
Location: src/kernel/channels/

Receives envelopes on the request/reply channel, dispatches each one by
msg_type to exactly one handler and routes exactly one reply back to the
requesting frontend.

Requests are served one at a time on the router's thread, so an execution
holds up every request queued behind it.
"""

import threading
import traceback
from typing import Any, Callable, Dict, List, Optional

import zmq

from src.kernel.channels.broadcast import Broadcaster, NullBroadcaster
from src.kernel.engine.execution_engine import ExecutionEngine
from src.kernel.gateway.attribute_gateway import AttributeGateway
from src.kernel.history.history_store import HistoryStore
from src.kernel.kernel_exceptions import MessageFormatError, UnknownMessageType
from src.kernel.logging.log_manager import Logger, null_logger
from src.kernel.logging.message_context import MessageContext
from src.kernel.messages.envelope import Envelope, deserialize, serialize
from src.kernel.messages.message_types import ExecutionStatus, MessageType, reply_type
from src.kernel.messages.session import Session

Handler = Callable[[Envelope, List[bytes]], Dict[str, Any]]


class ChannelRouter:
    def __init__(
        self,
        *,
        session: Session,
        engine: ExecutionEngine,
        gateway: AttributeGateway,
        history: Optional[HistoryStore] = None,
        broadcaster: Optional[Broadcaster] = None,
        shell_socket: Optional[zmq.Socket] = None,
        connection_info: Optional[dict] = None,
        stop_event: Optional[threading.Event] = None,
        on_shutdown: Optional[Callable[[bool], None]] = None,
        logger: Optional[Logger] = None,
        poll_timeout_ms: int = 100,
    ):
        self.session = session
        self.engine = engine
        self.gateway = gateway
        self.history = history or engine.history
        self._broadcaster = broadcaster or NullBroadcaster(session)
        self._shell = shell_socket
        self.connection_info = dict(connection_info or {})
        self._stop_evt = stop_event or threading.Event()
        self._on_shutdown = on_shutdown
        self._log = logger or null_logger("ROUTER")
        self._poll_timeout_ms = poll_timeout_ms

        self.handlers: Dict[str, Handler] = {
            MessageType.EXECUTE_REQUEST.value: self._handle_execute,
            MessageType.OBJECT_INFO_REQUEST.value: self._handle_object_info,
            MessageType.COMPLETE_REQUEST.value: self._handle_complete,
            MessageType.HISTORY_REQUEST.value: self._handle_history,
            MessageType.CONNECT_REQUEST.value: self._handle_connect,
            MessageType.SHUTDOWN_REQUEST.value: self._handle_shutdown,
            MessageType.GETATTR_REQUEST.value: self._handle_getattr,
            MessageType.SETATTR_REQUEST.value: self._handle_setattr,
        }

        self.shutdown_requested: Optional[bool] = None
        self.handled = 0

    # --------------------------
    # Loop
    # --------------------------

    @property
    def stopped(self) -> bool:
        return self._stop_evt.is_set()

    def serve_forever(self) -> None:
        if self._shell is None:
            raise RuntimeError("ChannelRouter.serve_forever needs a shell socket")

        self._log.info(event_type="ROUTER_START", message="Router serving requests")
        poller = zmq.Poller()
        poller.register(self._shell, zmq.POLLIN)
        try:
            while not self._stop_evt.is_set():
                events = dict(poller.poll(self._poll_timeout_ms))
                if self._shell in events:
                    self.handle_frames(self._shell.recv_multipart())
        finally:
            self._log.info(event_type="ROUTER_EXIT", message="Router loop exited")

    def stop(self) -> None:
        self._log.info(event_type="ROUTER_STOP_REQUEST", message="Stop requested")
        self._stop_evt.set()

    def close(self) -> None:
        if self._shell is not None:
            self._shell.close(linger=0)
            self._shell = None

    # --------------------------
    # Dispatch
    # --------------------------

    def handle_frames(self, frames: List[bytes]) -> Optional[Envelope]:
        """Decode one multipart request and dispatch it; undecodable frames are dropped."""
        try:
            idents, request = deserialize(frames)
        except MessageFormatError as e:
            self._log.warning(
                event_type="REQUEST_BAD_FRAME",
                message=str(e),
                payload={"frame_count": len(frames)},
            )
            return None
        return self.dispatch(request, idents)

    def dispatch(self, request: Envelope, idents: Optional[List[bytes]] = None) -> Envelope:
        """
        Run the handler for ``request`` and send its reply.

        Exactly one reply is produced per request, whatever the handler does.
        """
        idents = list(idents or [])
        ctx = MessageContext.from_header(request.header, request.parent_header)
        self._log.debug(event_type="REQUEST_RECEIVED", message=request.msg_type, context=ctx)

        handler = self.handlers.get(request.msg_type)
        try:
            if handler is None:
                raise UnknownMessageType(
                    f"Unknown message type: {request.msg_type}",
                    details={"msg_type": request.msg_type},
                )
            content = handler(request, idents)
        except UnknownMessageType as e:
            self._log.warning(event_type="UNKNOWN_MESSAGE_TYPE", message=str(e), context=ctx)
            content = self._error_content(e)
        except KeyboardInterrupt:
            self._log.warning(
                event_type="REQUEST_ABORTED",
                message=f"{request.msg_type} interrupted",
                context=ctx,
            )
            content = {"status": ExecutionStatus.ABORT.value}
        except Exception as e:
            self._log.error(
                event_type="REQUEST_HANDLER_ERROR",
                message=f"{type(e).__name__}: {e}",
                context=ctx,
                payload={"msg_type": request.msg_type},
            )
            content = self._error_content(e)

        reply = self.session.msg(reply_type(request.msg_type), content, parent=request)
        self._send_reply(reply, idents, ctx)
        self.handled += 1

        if request.msg_type == MessageType.SHUTDOWN_REQUEST.value and self.shutdown_requested is not None:
            self._finish_shutdown(reply, ctx)
        return reply

    def _send_reply(self, reply: Envelope, idents: List[bytes], ctx: MessageContext) -> None:
        if self._shell is not None:
            self._shell.send_multipart(serialize(reply, idents))
        self._log.debug(
            event_type="REPLY_SENT",
            message=reply.msg_type,
            context=ctx,
            payload={"status": reply.content.get("status")},
        )

    @staticmethod
    def _error_content(exc: BaseException) -> Dict[str, Any]:
        return {
            "status": ExecutionStatus.ERROR.value,
            "ename": type(exc).__name__,
            "evalue": str(exc),
            "traceback": traceback.format_exception_only(type(exc), exc),
        }

    # --------------------------
    # Handlers
    # --------------------------

    def _handle_execute(self, request: Envelope, idents: List[bytes]) -> Dict[str, Any]:
        content = request.content
        code = content.get("code", "")
        if not isinstance(code, str):
            raise MessageFormatError("execute_request 'code' must be a string")
        return self.engine.execute(
            code,
            silent=bool(content.get("silent", False)),
            user_variables=content.get("user_variables") or (),
            user_expressions=content.get("user_expressions") or {},
            parent=request,
            idents=idents,
        )

    def _handle_object_info(self, request: Envelope, idents: List[bytes]) -> Dict[str, Any]:
        return self.engine.object_info(str(request.content.get("oname", "")))

    def _handle_complete(self, request: Envelope, idents: List[bytes]) -> Dict[str, Any]:
        content = request.content
        return self.engine.complete(
            str(content.get("text", "")),
            str(content.get("line", "")),
            content.get("cursor_pos"),
        )

    def _handle_history(self, request: Envelope, idents: List[bytes]) -> Dict[str, Any]:
        content = dict(request.content)
        access_type = content.pop("hist_access_type", "tail")
        raw = bool(content.pop("raw", False))
        output = bool(content.pop("output", False))
        history = self.history.query(access_type, raw=raw, output=output, **content)
        return {"status": ExecutionStatus.OK.value, "history": history}

    def _handle_connect(self, request: Envelope, idents: List[bytes]) -> Dict[str, Any]:
        return {
            key: self.connection_info.get(key, 0)
            for key in ("shell_port", "iopub_port", "stdin_port", "hb_port")
        }

    def _handle_shutdown(self, request: Envelope, idents: List[bytes]) -> Dict[str, Any]:
        restart = bool(request.content.get("restart", False))
        self.shutdown_requested = restart
        return {"restart": restart}

    def _handle_getattr(self, request: Envelope, idents: List[bytes]) -> Dict[str, Any]:
        return self.gateway.handle_getattr(request.content)

    def _handle_setattr(self, request: Envelope, idents: List[bytes]) -> Dict[str, Any]:
        return self.gateway.handle_setattr(request.content)

    # --------------------------
    # Shutdown
    # --------------------------

    def _finish_shutdown(self, reply: Envelope, ctx: MessageContext) -> None:
        restart = bool(self.shutdown_requested)
        self._broadcaster.publish(MessageType.SHUTDOWN_REPLY.value, dict(reply.content), parent=reply.parent_header)
        self._log.info(
            event_type="KERNEL_SHUTDOWN_REQUEST",
            message="Shutdown acknowledged",
            context=ctx,
            payload={"restart": restart},
        )
        self.stop()
        if self._on_shutdown is not None:
            self._on_shutdown(restart)
