import json
from pathlib import Path
import threading

from src.kernel.logging.log_entry import LogEntry


class FileLogSink:
    """
    Log sink that persists log entries to an append-only JSONL file.

    Each LogEntry is written as a single JSON object per line,
    enabling efficient tailing, replay, and offline analysis.
    """

    def __init__(self, logfile_path: str):
        self._path = Path(logfile_path)
        self._lock = threading.Lock()

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._path, "a", encoding="utf-8")

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, entry: LogEntry) -> None:
        """
        Persist a log entry to disk.

        This method must not raise exceptions outward.
        """
        try:
            line = json.dumps(entry.to_record(), default=repr)
            with self._lock:
                self._file.write(line + "\n")
                self._file.flush()
        except Exception:
            # Never allow logging to break the kernel
            pass

    def close(self) -> None:
        try:
            with self._lock:
                self._file.close()
        except Exception:
            pass
