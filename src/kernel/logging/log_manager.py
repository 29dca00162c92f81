from typing import Any, Dict, Optional, Protocol

from src.kernel.logging.log_entry import LogEntry
from src.kernel.logging.log_severity import LogSeverity
from src.kernel.logging.message_context import MessageContext


class LogSink(Protocol):
    """
    Abstract destination for log entries.
    """

    def emit(self, entry: LogEntry) -> None:
        """
        Receive a log entry for processing.

        Must not block the caller.
        Must not raise exceptions outward.
        """


class LogManager:
    """
    Central coordinator for kernel logging.

    LogManager accepts log entries and distributes them to registered sinks.
    """

    def __init__(self, *, min_severity: LogSeverity = LogSeverity.INFO):
        self._min_severity = min_severity
        self._sinks: list[LogSink] = []

    @property
    def min_severity(self) -> LogSeverity:
        return self._min_severity

    def register_sink(self, sink: LogSink) -> None:
        self._sinks.append(sink)

    def close(self) -> None:
        for sink in self._sinks:
            close = getattr(sink, "close", None)
            if close is not None:
                close()

    def log(self, entry: LogEntry) -> None:
        """
        Submit a log entry to every sink.

        Called from the router thread, the heartbeat thread and user code
        alike, so it must stay fast and non-blocking.
        """

        if entry.severity.value < self._min_severity.value:
            return

        for sink in self._sinks:
            try:
                sink.emit(entry)
            except Exception:
                # Logging must never take the kernel down.
                pass


class Logger:
    """
    Convenience façade bound to a specific kernel component.
    """

    def __init__(self, module_id: str, manager: LogManager):
        self._module_id = module_id
        self._manager = manager

    @property
    def module_id(self) -> str:
        return self._module_id

    def child(self, module_id: str) -> "Logger":
        return Logger(module_id, self._manager)

    def _emit(
        self,
        severity: LogSeverity,
        event_type: str,
        message: str,
        context: Optional[MessageContext],
        payload: Optional[Dict[str, Any]],
    ) -> None:
        self._manager.log(
            LogEntry(
                severity=severity,
                source_module=self._module_id,
                event_type=event_type,
                message=message,
                context=context,
                payload=payload or {},
            )
        )

    def trace(self, *, event_type: str, message: str, context=None, payload=None):
        self._emit(LogSeverity.TRACE, event_type, message, context, payload)

    def debug(self, *, event_type: str, message: str, context=None, payload=None):
        self._emit(LogSeverity.DEBUG, event_type, message, context, payload)

    def info(self, *, event_type: str, message: str, context=None, payload=None):
        self._emit(LogSeverity.INFO, event_type, message, context, payload)

    def warning(self, *, event_type: str, message: str, context=None, payload=None):
        self._emit(LogSeverity.WARNING, event_type, message, context, payload)

    def error(self, *, event_type: str, message: str, context=None, payload=None):
        self._emit(LogSeverity.ERROR, event_type, message, context, payload)

    def critical(self, *, event_type: str, message: str, context=None, payload=None):
        self._emit(LogSeverity.CRITICAL, event_type, message, context, payload)


def null_logger(module_id: str = "NULL") -> Logger:
    """A logger with no sinks, for components built without a kernel."""
    return Logger(module_id, LogManager(min_severity=LogSeverity.CRITICAL))
