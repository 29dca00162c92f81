"""
Module: introspection.py
Location: src/kernel/engine/

Answers object_info and complete requests against the user namespace.
"""

import builtins
import inspect
import re
import rlcompleter
from typing import Any, Dict, List, Mapping

_TOKEN_RE = re.compile(r"[A-Za-z_][\w.]*$")
_MAX_STRING_FORM = 200


class Introspector:
    def __init__(self, namespace: Mapping[str, Any]):
        self._ns = namespace

    # -------------------------------------------------
    # object_info
    # -------------------------------------------------
    def _lookup(self, oname: str) -> Any:
        parts = oname.split(".")
        head = parts[0]
        if head in self._ns:
            obj = self._ns[head]
        elif hasattr(builtins, head):
            obj = getattr(builtins, head)
        else:
            raise LookupError(oname)
        for part in parts[1:]:
            obj = getattr(obj, part)
        return obj

    def object_info(self, oname: str) -> Dict[str, Any]:
        info: Dict[str, Any] = {"name": oname, "found": False}
        if not oname or not all(p.isidentifier() for p in oname.split(".")):
            return info
        try:
            obj = self._lookup(oname)
        except (LookupError, AttributeError):
            return info

        info["found"] = True
        info["type_name"] = type(obj).__name__
        info["base_class"] = repr(type(obj))

        try:
            string_form = str(obj)
        except Exception as e:
            string_form = f"<str() failed: {type(e).__name__}>"
        if len(string_form) > _MAX_STRING_FORM:
            string_form = string_form[:_MAX_STRING_FORM] + "..."
        info["string_form"] = string_form

        info["docstring"] = inspect.getdoc(obj) or ""

        if callable(obj):
            try:
                info["definition"] = f"{oname.split('.')[-1]}{inspect.signature(obj)}"
            except (TypeError, ValueError):
                pass

        try:
            info["length"] = len(obj)
        except Exception:
            pass

        return info

    # -------------------------------------------------
    # complete
    # -------------------------------------------------
    def complete(self, text: str, line: str = "", cursor_pos: int | None = None) -> Dict[str, Any]:
        if not text:
            if cursor_pos is None:
                cursor_pos = len(line)
            m = _TOKEN_RE.search(line[:cursor_pos])
            text = m.group(0) if m else ""

        matches: List[str] = []
        if not text.strip():
            return {"status": "ok", "matched_text": text, "matches": matches}

        completer = rlcompleter.Completer(dict(self._ns))
        state = 0
        while True:
            try:
                match = completer.complete(text, state)
            except Exception:
                break
            if match is None:
                break
            # rlcompleter marks callables with a trailing paren
            match = match.rstrip("(")
            if match not in matches:
                matches.append(match)
            state += 1

        return {"status": "ok", "matched_text": text, "matches": sorted(matches)}
