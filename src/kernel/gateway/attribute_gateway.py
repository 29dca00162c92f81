"""
Module: attribute_gateway.py
Location: src/kernel/gateway/

Capability-gated read/write access to kernel state.

The gateway never reflects over live objects. It holds an explicit table
from dotted name to RemoteAttribute, built once at startup from the
declarations of each owning component.
"""

from typing import Any, Dict, Iterable, List, Optional

from src.kernel.gateway.remote_attribute import RemoteAttribute
from src.kernel.kernel_exceptions import AccessError, AttributeResolutionError
from src.kernel.logging.log_manager import Logger, null_logger


class AttributeGateway:
    """
    Registry of remotely reachable attributes.

    Failure taxonomy:
      - AttributeResolutionError: the name resolves to nothing declared
      - AccessError: the name is private, or the direction is not permitted
    """

    def __init__(self, *, logger: Optional[Logger] = None):
        self._table: Dict[str, RemoteAttribute] = {}
        self._log = logger or null_logger("GATEWAY")

    # -------------------------------------------------
    # Table construction
    # -------------------------------------------------
    def mount(self, prefix: str, attributes: Iterable[RemoteAttribute]) -> None:
        """Register a component's declared attributes under ``prefix``."""
        for attr in attributes:
            name = f"{prefix}.{attr.name}" if prefix else attr.name
            if name in self._table:
                raise ValueError(f"Duplicate remote attribute: {name}")
            self._table[name] = attr

    def mount_component(self, prefix: str, component: Any) -> None:
        self.mount(prefix, component.remote_attributes())

    def list_names(self) -> List[str]:
        return sorted(self._table)

    # -------------------------------------------------
    # Resolution
    # -------------------------------------------------
    def _resolve(self, name: str) -> RemoteAttribute:
        if not isinstance(name, str) or not name:
            raise AttributeResolutionError(f"Invalid attribute name: {name!r}")

        if any(part.startswith("_") for part in name.split(".")):
            raise AccessError(f"'{name}' is not exposed", details={"name": name})

        attr = self._table.get(name)
        if attr is None:
            raise AttributeResolutionError(f"No remote attribute named '{name}'", details={"name": name})
        return attr

    def get(self, name: str) -> Any:
        return self._resolve(name).getter()

    def set(self, name: str, value: Any) -> None:
        attr = self._resolve(name)
        if not attr.writable:
            raise AccessError(f"'{name}' is read-only", details={"name": name})
        if attr.validator is not None:
            value = attr.validator(value)
        attr.setter(value)
        self._log.info(
            event_type="ATTRIBUTE_SET",
            message=f"{name} updated",
            payload={"name": name, "value": repr(value)},
        )

    # -------------------------------------------------
    # Request handlers
    # -------------------------------------------------
    def handle_getattr(self, content: dict) -> dict:
        name = content.get("name", "")
        try:
            value = self.get(name)
        except (AttributeResolutionError, AccessError) as e:
            return {"status": e.status, "name": name, "evalue": str(e)}
        return {"status": "ok", "name": name, "value": value}

    def handle_setattr(self, content: dict) -> dict:
        name = content.get("name", "")
        try:
            self.set(name, content.get("value"))
        except (AttributeResolutionError, AccessError) as e:
            return {"status": e.status, "name": name, "evalue": str(e)}
        except (ValueError, TypeError) as e:
            return {"status": "ValueError", "name": name, "evalue": str(e)}
        return {"status": "ok", "name": name}
