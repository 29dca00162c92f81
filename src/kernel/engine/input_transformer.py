"""
Module: input_transformer.py
Location: src/kernel/engine/

Line-level rewriting applied to a cell before it is parsed.

Two rewrites exist:
  - directive expansion: ``%name args`` becomes a call into the directive
    registry (never reported back to the frontend)
  - auto-invocation: ``/f a, b`` always, and ``f a, b`` when autocall is on
    and ``f`` is callable, become ``f(a, b)`` (reported as transformed_code)

Only logical lines that fit on one physical line are candidates. Lines
inside string literals, bracket continuations and backslash continuations
are never touched.
"""

import ast
import io
import keyword
import re
import tokenize
from dataclasses import dataclass
from typing import Any, Mapping, Set

DIRECTIVE_CALL_NAME = "__kernel_directive__"

AUTOCALL_OFF = 0
AUTOCALL_SMART = 1
AUTOCALL_FULL = 2

_DIRECTIVE_RE = re.compile(r"^(?P<indent>\s*)%(?P<name>[A-Za-z_]\w*)\s*(?P<args>.*?)\s*$")
_EXPLICIT_CALL_RE = re.compile(r"^(?P<indent>\s*)/(?P<name>[A-Za-z_][\w.]*)\s*(?P<args>.*?)\s*$")
_IMPLICIT_CALL_RE = re.compile(r"^(?P<indent>\s*)(?P<name>[A-Za-z_][\w.]*)(?:\s+(?P<args>\S.*?))?\s*$")


@dataclass(frozen=True)
class TransformResult:
    code: str               # Code to compile, every rewrite applied
    reported_code: str      # Code with only auto-invocation rewrites applied
    autocall_applied: bool  # True when an auto-invocation rewrite happened


def _resolve_dotted(name: str, namespace: Mapping[str, Any]) -> Any:
    parts = name.split(".")
    if parts[0] not in namespace:
        raise LookupError(name)
    obj = namespace[parts[0]]
    for part in parts[1:]:
        if part.startswith("_"):
            raise LookupError(name)
        obj = getattr(obj, part)
    return obj


def _parses(line: str) -> bool:
    try:
        ast.parse(line.strip())
    except SyntaxError:
        return False
    return True


_LAYOUT_TOKENS = frozenset(
    {tokenize.NL, tokenize.COMMENT, tokenize.INDENT, tokenize.DEDENT, tokenize.ENCODING}
)


def rewritable_rows(code: str) -> Set[int]:
    """
    1-based rows that hold a complete logical line.

    Tokenizing stops at the first error (an unterminated string, a stray
    character in directive arguments). Every row from the logical line in
    progress onward is then treated as standalone, since the cell cannot be
    read as Python past that point anyway.
    """
    rows: Set[int] = set()
    start = None
    resume = 1
    try:
        for tok in tokenize.generate_tokens(io.StringIO(code).readline):
            if tok.type in _LAYOUT_TOKENS:
                continue
            if tok.type == tokenize.ENDMARKER:
                break
            if tok.type == tokenize.NEWLINE:
                if start == tok.start[0]:
                    rows.add(start)
                start = None
                resume = tok.end[0] + 1
            elif start is None:
                start = tok.start[0]
    except (tokenize.TokenError, SyntaxError):
        first = start if start is not None else resume
        rows.update(range(first, code.count("\n") + 2))
    return rows


class InputTransformer:
    def __init__(self, *, autocall: int = AUTOCALL_SMART):
        self.autocall = autocall

    def transform_cell(self, code: str, namespace: Mapping[str, Any]) -> TransformResult:
        rows = rewritable_rows(code)
        applied = False
        out_lines = []
        reported_lines = []
        for row, line in enumerate(code.split("\n"), start=1):
            if row in rows:
                new_line, did_autocall = self.transform_line(line, namespace)
            else:
                new_line, did_autocall = line, False
            applied = applied or did_autocall
            out_lines.append(new_line)
            reported_lines.append(new_line if did_autocall else line)

        return TransformResult(
            code="\n".join(out_lines),
            reported_code="\n".join(reported_lines),
            autocall_applied=applied,
        )

    def transform_line(self, line: str, namespace: Mapping[str, Any]) -> tuple[str, bool]:
        if not line.strip():
            return line, False

        m = _DIRECTIVE_RE.match(line)
        if m:
            return f"{m['indent']}{DIRECTIVE_CALL_NAME}({m['name']!r}, {m['args']!r})", False

        m = _EXPLICIT_CALL_RE.match(line)
        if m:
            return f"{m['indent']}{m['name']}({m['args']})", True

        if self.autocall == AUTOCALL_OFF:
            return line, False

        m = _IMPLICIT_CALL_RE.match(line)
        if m is None:
            return line, False

        name, args = m["name"], m["args"]
        if keyword.iskeyword(name.split(".")[0]):
            return line, False
        if args is None and self.autocall < AUTOCALL_FULL:
            return line, False
        if args is not None and _parses(line):
            return line, False

        try:
            target = _resolve_dotted(name, namespace)
        except (LookupError, AttributeError):
            return line, False
        if not callable(target) or isinstance(target, type) and args is None:
            return line, False

        return f"{m['indent']}{name}({args or ''})", True
