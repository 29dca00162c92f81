"""
Module: display.py
Location: src/kernel/engine/

Output sinks for values produced by user code, and the formatter that turns
a value into its named representations.

The execution step is handed a sink explicitly: EchoSink in interactive echo
mode, NullSink otherwise. Nothing here touches sys.displayhook.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional

# Optional rich representations, looked up as _repr_<name>_ on the value.
# Consumers ignore mime types they do not understand.
RICH_REPRS = {
    "text/html": "_repr_html_",
    "text/markdown": "_repr_markdown_",
    "text/latex": "_repr_latex_",
    "image/svg+xml": "_repr_svg_",
    "application/json": "_repr_json_",
}


class DisplayFormatter:
    """Compute the plain-text repr and any rich reprs of a value."""

    def format(self, obj: Any) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text/plain": self._plain(obj)}
        for mime, method_name in RICH_REPRS.items():
            method = getattr(obj, method_name, None)
            if method is None or not callable(method):
                continue
            try:
                value = method()
            except Exception:
                continue
            if value is None:
                continue
            if mime == "application/json":
                try:
                    json.dumps(value)
                except (TypeError, ValueError):
                    continue
            elif not isinstance(value, str):
                continue
            data[mime] = value
        return data

    @staticmethod
    def _plain(obj: Any) -> str:
        try:
            return repr(obj)
        except Exception as e:
            return f"<unrepresentable {type(obj).__name__}: {type(e).__name__}>"


class NullSink:
    """Discards every value (no-echo mode)."""

    def emit(self, value: Any) -> None:
        return None


class EchoSink:
    """
    Publishes each non-None value as a pyout tagged with the execution count.

    Also binds ``_`` in the user namespace and remembers the last plain-text
    repr so it can be recorded as the history entry's output.
    """

    def __init__(
        self,
        *,
        publish: Callable[[str, dict], None],
        execution_count: int,
        user_ns: dict,
        formatter: Optional[DisplayFormatter] = None,
    ):
        self._publish = publish
        self._execution_count = execution_count
        self._user_ns = user_ns
        self._formatter = formatter or DisplayFormatter()
        self.last_text: Optional[str] = None
        self.emitted = 0

    def emit(self, value: Any) -> None:
        if value is None:
            return
        data = self._formatter.format(value)
        self._user_ns["_"] = value
        self.last_text = data["text/plain"]
        self.emitted += 1
        self._publish(
            "pyout",
            {"execution_count": self._execution_count, "data": data, "metadata": {}},
        )
