from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import itertools


@dataclass(frozen=True)
class HookFailure:
    name: str
    ename: str
    evalue: str

    def as_error_string(self) -> str:
        return f"[ERROR] {self.ename}: {self.evalue}"


@dataclass(frozen=True)
class Hook:
    handle: int
    name: str
    func: Callable[[], object]


class HookSet:
    """
    Ordered set of callables run after (or before) each execution.

    A hook that raises is reported once through ``run_all``'s return value
    and removed, so one broken hook cannot break later executions.
    """

    def __init__(self, label: str = "post_execute"):
        self.label = label
        self._hooks: Dict[int, Hook] = {}
        self._handles = itertools.count(1)

    def register(self, func: Callable[[], object], name: Optional[str] = None) -> int:
        if not callable(func):
            raise TypeError(f"{self.label} hook must be callable, got {type(func).__name__}")
        handle = next(self._handles)
        self._hooks[handle] = Hook(handle=handle, name=name or getattr(func, "__name__", repr(func)), func=func)
        return handle

    def unregister(self, handle: int) -> bool:
        return self._hooks.pop(handle, None) is not None

    def names(self) -> List[str]:
        return [h.name for h in self._hooks.values()]

    def __len__(self) -> int:
        return len(self._hooks)

    def run_all(self) -> List[HookFailure]:
        """Invoke every hook in registration order, pruning the ones that fail."""
        failures: List[HookFailure] = []
        for hook in list(self._hooks.values()):
            try:
                hook.func()
            except Exception as e:
                del self._hooks[hook.handle]
                failures.append(HookFailure(name=hook.name, ename=type(e).__name__, evalue=str(e)))
        return failures
