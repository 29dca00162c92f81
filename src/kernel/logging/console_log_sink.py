import sys
import time
from typing import TextIO

from src.kernel.logging.log_entry import LogEntry


class ConsoleLogSink:
    """
    Log sink writing one human-readable line per entry.

    Writes to the real stderr captured at construction, so output produced
    while user code has redirected sys.stderr still reaches the terminal.
    """

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream if stream is not None else sys.__stderr__

    def emit(self, entry: LogEntry) -> None:
        try:
            stamp = time.strftime("%H:%M:%S", time.localtime(entry.timestamp))
            line = f"[{stamp}] [{entry.severity.name}] [{entry.source_module}] {entry.event_type}: {entry.message}"
            if entry.context is not None:
                line += f" (msg_id={entry.context.msg_id[:8]})"
            self._stream.write(line + "\n")
            self._stream.flush()
        except Exception:
            pass
