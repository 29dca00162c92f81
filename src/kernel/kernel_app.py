"""
Module: kernel_app.py
Location: src/kernel/

Assembles one kernel process: binds the four channels, wires the engine,
history store, attribute gateway and router together, and owns the
process-level concerns (SIGINT, fatal-error reporting, shutdown).
"""

import signal
import sys
import threading
import traceback
from typing import List, Optional

import zmq

from src.kernel.channels.broadcast import BroadcastChannel
from src.kernel.channels.channel_registry import ChannelRegistry
from src.kernel.channels.channel_router import ChannelRouter
from src.kernel.channels.heartbeat import Heart
from src.kernel.channels.input_channel import InputChannel
from src.kernel.channels.kernel_config import KernelConfig
from src.kernel.engine.execution_engine import ExecutionEngine
from src.kernel.gateway.attribute_gateway import AttributeGateway
from src.kernel.gateway.remote_attribute import RemoteAttribute
from src.kernel.history.history_store import HistoryStore
from src.kernel.logging.file_log_sink import FileLogSink
from src.kernel.logging.log_manager import LogManager, Logger
from src.kernel.logging.log_severity import LogSeverity
from src.kernel.messages.message_types import Channel, MessageType
from src.kernel.messages.session import Session


def _validate_username(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("username must be a non-empty string")
    return value


class KernelApp:
    def __init__(self, config: KernelConfig, *, log_manager: Optional[LogManager] = None):
        self.config = config
        self.log_manager = log_manager or LogManager(min_severity=LogSeverity.from_name(config.log_level))
        if config.log_file:
            self.log_manager.register_sink(FileLogSink(config.log_file))
        self.log = Logger("KERNEL", self.log_manager)

        self.session = Session(username=config.username)
        self.stop_event = threading.Event()
        self._crashed = False

        self.context = zmq.Context()
        self.shell_socket = self._bind(Channel.SHELL)
        self.iopub_socket = self._bind(Channel.IOPUB)
        self.stdin_socket = self._bind(Channel.STDIN)

        # The heart binds inside its own thread and context
        self.heart = Heart(
            f"{config.transport}://{config.ip}",
            self.session.bsession,
            port=config.hb_port,
            logger=self.log.child("HEARTBEAT"),
        )

        self.broadcaster = BroadcastChannel(self.iopub_socket, self.session, logger=self.log.child("IOPUB"))
        self.input_channel = InputChannel(
            self.stdin_socket,
            self.session,
            stop_event=self.stop_event,
            logger=self.log.child("STDIN"),
            poll_timeout_ms=config.poll_timeout_ms,
        )
        self.history = HistoryStore()
        self.engine = ExecutionEngine(
            broadcaster=self.broadcaster,
            history=self.history,
            input_channel=self.input_channel,
            logger=self.log.child("ENGINE"),
            autocall=config.autocall,
        )

        self.gateway = AttributeGateway(logger=self.log.child("GATEWAY"))
        self.gateway.mount_component("engine", self.engine)
        self.gateway.mount_component("history", self.history)
        self.gateway.mount_component("kernel", self)

        self.router = ChannelRouter(
            session=self.session,
            engine=self.engine,
            gateway=self.gateway,
            history=self.history,
            broadcaster=self.broadcaster,
            shell_socket=self.shell_socket,
            stop_event=self.stop_event,
            on_shutdown=self._on_shutdown,
            logger=self.log.child("ROUTER"),
            poll_timeout_ms=config.poll_timeout_ms,
        )

    # -------------------------------------------------
    # Sockets
    # -------------------------------------------------
    def _bind(self, channel: Channel) -> zmq.Socket:
        cfg = ChannelRegistry.get(channel)
        sock = self.context.socket(cfg.kernel_socket_type)
        sock.linger = 1000
        if cfg.kernel_socket_type == zmq.ROUTER:
            sock.setsockopt(zmq.ROUTER_HANDOVER, 1)

        port = self.config.port(channel)
        if port:
            sock.bind(self.config.addr(port))
        else:
            port = sock.bind_to_random_port(self.config.bind_addr(channel))
        self.config = self.config.with_ports(**{f"{channel.value}_port": port})
        return sock

    # -------------------------------------------------
    # Remote attributes
    # -------------------------------------------------
    def remote_attributes(self) -> List[RemoteAttribute]:
        return [
            RemoteAttribute("session", getter=lambda: self.session.session,
                            doc="Session id of the kernel."),
            RemoteAttribute(
                "username",
                getter=lambda: self.session.username,
                setter=lambda v: setattr(self.session, "username", v),
                validator=_validate_username,
                doc="Username stamped on every kernel message.",
            ),
        ]

    # -------------------------------------------------
    # Lifecycle
    # -------------------------------------------------
    def start(self) -> None:
        self.heart.start()
        self.config = self.config.with_ports(hb_port=self.heart.port)

        if self.config.connection_file:
            path = self.config.to_file(self.config.connection_file)
            self.log.info(event_type="CONNECTION_FILE_WRITTEN", message=str(path))
        self.router.connection_info = self.config.connection_info()

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._on_sigint)
            signal.signal(signal.SIGTERM, self._on_sigterm)

        self.log.info(
            event_type="KERNEL_START",
            message="Kernel ready",
            payload={"session": self.session.session, **self.config.connection_info()},
        )

    def run(self) -> int:
        """Serve until shutdown; returns the process exit status."""
        self.start()
        try:
            self.router.serve_forever()
        except BaseException as e:
            self.crash(e)
            return 1
        finally:
            self.close()
        return 0

    def _on_shutdown(self, restart: bool) -> None:
        self.log.info(event_type="KERNEL_SHUTDOWN", message="Kernel shutting down", payload={"restart": restart})
        self.heart.stop()

    def _on_sigint(self, signum, frame) -> None:
        if self.engine.busy:
            self.log.info(event_type="SIGINT_RECEIVED", message="Interrupting execution")
            raise KeyboardInterrupt
        self.log.info(event_type="SIGINT_IGNORED", message="SIGINT while idle ignored")

    def _on_sigterm(self, signum, frame) -> None:
        """Stop serving; an input wait in progress is abandoned and answered as an error."""
        self.log.info(event_type="SIGTERM_RECEIVED", message="Termination requested")
        self.router.stop()

    def crash(self, exc: BaseException) -> None:
        """Report a fatal error once on the broadcast channel and in the log."""
        if self._crashed:
            return
        self._crashed = True
        tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
        content = {
            "ename": type(exc).__name__,
            "evalue": str(exc),
            "traceback": [line.rstrip("\n") for line in tb],
            "info": {
                "session": self.session.session,
                "execution_count": self.engine.execution_count,
                "python": sys.version.split()[0],
            },
        }
        try:
            self.broadcaster.publish(MessageType.CRASH.value, content)
        except zmq.ZMQError as e:
            self.log.error(event_type="CRASH_BROADCAST_FAILED", message=str(e))
        self.log.critical(event_type="KERNEL_CRASH", message=f"{content['ename']}: {content['evalue']}", payload=content)

    def close(self) -> None:
        self.stop_event.set()
        self.heart.stop()
        self.router.close()
        for sock in (self.iopub_socket, self.stdin_socket):
            sock.close(linger=1000)
        self.context.term()
        self.log.info(event_type="KERNEL_EXIT", message="Kernel closed")
        self.log_manager.close()
