"""
Module: directives.py
Location: src/kernel/engine/

``%name args`` directives. Directives act on the engine rather than on user
values: they fill the execution payload, inspect or clear the namespace, or
change settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List

from src.kernel.engine.input_transformer import AUTOCALL_FULL, AUTOCALL_OFF, AUTOCALL_SMART
from src.kernel.kernel_exceptions import UsageError

if TYPE_CHECKING:
    from src.kernel.engine.execution_engine import ExecutionEngine


@dataclass(frozen=True)
class Directive:
    name: str
    func: Callable[["ExecutionEngine", str], object]
    doc: str = ""


class DirectiveRegistry:
    """Registry of the directives a cell may invoke."""

    def __init__(self):
        self._directives: Dict[str, Directive] = {}

    def register(self, name: str, func: Callable[["ExecutionEngine", str], object], doc: str = "") -> None:
        self._directives[name] = Directive(name=name, func=func, doc=doc)

    def names(self) -> List[str]:
        return sorted(self._directives)

    def run(self, engine: "ExecutionEngine", name: str, args: str) -> object:
        directive = self._directives.get(name)
        if directive is None:
            raise UsageError(f"Unknown directive: %{name}")
        return directive.func(engine, args)


# ----------------------------
# Built-in directives
# ----------------------------

def _page(engine: "ExecutionEngine", args: str) -> None:
    if not args:
        raise UsageError("%page needs an expression")
    value = eval(args, engine.user_ns)
    engine.payload["page"] = value if isinstance(value, str) else repr(value)


def _next_input(engine: "ExecutionEngine", args: str) -> None:
    engine.payload["next_input"] = args


def _exit(engine: "ExecutionEngine", args: str) -> None:
    engine.payload["exit"] = True


def _who(engine: "ExecutionEngine", args: str) -> None:
    names = engine.user_names()
    print("  ".join(names) if names else "Interactive namespace is empty.")


def _reset(engine: "ExecutionEngine", args: str) -> None:
    engine.reset_namespace()


def _autocall(engine: "ExecutionEngine", args: str) -> None:
    if args:
        try:
            level = int(args)
        except ValueError:
            raise UsageError(f"%autocall expects 0, 1 or 2, got {args!r}") from None
        engine.autocall = level
    else:
        engine.autocall = AUTOCALL_OFF if engine.autocall else AUTOCALL_SMART
    print(f"Automatic calling is: {['OFF', 'Smart', 'Full'][engine.autocall]}")


def default_directives() -> DirectiveRegistry:
    registry = DirectiveRegistry()
    registry.register("page", _page, "Send the value of an expression to the frontend's pager.")
    registry.register("next_input", _next_input, "Pre-fill the frontend's next input.")
    registry.register("exit", _exit, "Ask the frontend to close.")
    registry.register("who", _who, "List names defined in the user namespace.")
    registry.register("reset", _reset, "Remove every user-defined name.")
    registry.register("autocall", _autocall, f"Set auto-invocation: {AUTOCALL_OFF}, {AUTOCALL_SMART} or {AUTOCALL_FULL}.")
    return registry
