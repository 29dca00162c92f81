from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class RemoteAttribute:
    """
    Declaration of one attribute a component lets frontends reach.

    A component declares these from ``remote_attributes()``; the gateway
    mounts them under the component's prefix. No setter means read-only.
    """

    name: str
    getter: Callable[[], Any]
    setter: Optional[Callable[[Any], None]] = None
    validator: Optional[Callable[[Any], Any]] = None
    # Returns the (possibly coerced) value, raises ValueError/TypeError to reject.

    doc: str = ""

    @property
    def writable(self) -> bool:
        return self.setter is not None
