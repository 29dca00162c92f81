import queue

from src.kernel.logging.log_entry import LogEntry


class QueueLogSink:
    """
    Log sink that forwards log entries to a thread-safe queue.

    Lets an embedding tool (or a test) watch the kernel's log stream
    without touching files.
    """

    def __init__(self, log_queue: "queue.Queue[LogEntry] | None" = None):
        self._queue = log_queue if log_queue is not None else queue.Queue()

    @property
    def queue(self) -> "queue.Queue[LogEntry]":
        return self._queue

    def emit(self, entry: LogEntry) -> None:
        try:
            self._queue.put_nowait(entry)
        except Exception:
            pass

    def drain(self) -> list[LogEntry]:
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items
