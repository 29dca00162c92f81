"""
Module: history_store.py
Location: src/kernel/history/

In-memory, append-only record of executed inputs and their outputs.

The execution engine is the only writer. Everything else goes through the
read-only query methods (range, tail, search), which is what the
``history_request`` handler exposes.
"""

import fnmatch
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from src.kernel.gateway.remote_attribute import RemoteAttribute


@dataclass(frozen=True)
class HistoryEntry:
    session: int                 # Session ordinal of the kernel that recorded it
    line_number: int             # Equals the execution count, so it starts at 1
    raw_input: str               # Code exactly as the frontend sent it
    transformed_input: str       # Code after directive/autocall rewriting
    output: Optional[str] = None # Plain-text echo of the last displayed value

    def to_dict(self, *, raw: bool = False, output: bool = False) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "session": self.session,
            "line": self.line_number,
            "input": self.raw_input if raw else self.transformed_input,
        }
        if output and self.output is not None:
            record["output"] = self.output
        return record


class HistoryStore:
    """
    Registry of every non-silent, non-aborted execution.

    Responsibilities:
      - Own all HistoryEntry instances, in chronological order
      - Stamp entries with the session ordinal (one per kernel process)
      - Answer range / tail / search queries
    """

    ACCESS_TYPES = ("range", "tail", "search")

    def __init__(self):
        self._lock = threading.RLock()
        self._entries: List[HistoryEntry] = []
        self._session_number = 1

    # -------------------------------------------------
    # Writer side (execution engine only)
    # -------------------------------------------------
    def append(
        self,
        line_number: int,
        raw_input: str,
        transformed_input: str,
        output: Optional[str] = None,
    ) -> HistoryEntry:
        with self._lock:
            last = self._entries[-1].line_number if self._entries else 0
            if line_number <= last:
                raise ValueError(f"History line {line_number} is not after line {last}")
            entry = HistoryEntry(
                session=self._session_number,
                line_number=line_number,
                raw_input=raw_input,
                transformed_input=transformed_input,
                output=output,
            )
            self._entries.append(entry)
            return entry

    # -------------------------------------------------
    # Queries
    # -------------------------------------------------
    @property
    def session_number(self) -> int:
        return self._session_number

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def resolve_session(self, session: int) -> int:
        """Positive values are absolute ordinals; zero and below count back from the live session."""
        if session > 0:
            return session
        return self._session_number + session

    def get_range(self, session: int = 0, start: int = 1, stop: Optional[int] = None) -> List[HistoryEntry]:
        """
        Lines ``[start, stop)`` of a session, in line order. Only the live
        session is held in memory, so any other session yields nothing.
        """
        if self.resolve_session(session) != self._session_number:
            return []
        with self._lock:
            rows = [
                e for e in self._entries
                if e.line_number >= start
                and (stop is None or e.line_number < stop)
            ]
        return sorted(rows, key=lambda e: e.line_number)

    def get_tail(self, n: int = 10) -> List[HistoryEntry]:
        if n <= 0:
            return []
        with self._lock:
            return list(self._entries[-n:])

    def search(self, pattern: str = "*", *, raw: bool = False) -> List[HistoryEntry]:
        with self._lock:
            entries = list(self._entries)
        return [
            e for e in entries
            if fnmatch.fnmatchcase(e.raw_input if raw else e.transformed_input, pattern)
        ]

    def query(self, hist_access_type: str, *, raw: bool = False, output: bool = False, **kwargs) -> List[Dict[str, Any]]:
        """
        Answer a history_request.

        Returns mappings with session/line/input, plus "output" where one was
        recorded and output was asked for.
        """
        if hist_access_type == "range":
            stop = kwargs.get("stop")
            entries = self.get_range(
                session=int(kwargs.get("session", 0)),
                start=int(kwargs.get("start", 1)),
                stop=None if stop is None else int(stop),
            )
        elif hist_access_type == "tail":
            entries = self.get_tail(int(kwargs.get("n", 10)))
        elif hist_access_type == "search":
            entries = self.search(str(kwargs.get("pattern", "*")), raw=raw)
        else:
            raise ValueError(
                f"Unknown hist_access_type {hist_access_type!r}; expected one of {self.ACCESS_TYPES}"
            )

        return [e.to_dict(raw=raw, output=output) for e in entries]

    # -------------------------------------------------
    # Remote attributes
    # -------------------------------------------------
    def remote_attributes(self) -> List[RemoteAttribute]:
        return [
            RemoteAttribute("session_number", getter=lambda: self.session_number,
                            doc="Ordinal of the live history session."),
            RemoteAttribute("entry_count", getter=lambda: len(self),
                            doc="Number of recorded entries across all sessions."),
        ]
