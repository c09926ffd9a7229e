import logging
from typing import Any, Dict, List, Mapping, Optional

from harness_jsolex.bridge.protocol import UndefinedVariable
from harness_jsolex.bridge.values import ValueMarshaler

logger = logging.getLogger(__name__)

MISSING = object()


class VariableStore:
    """Session-scoped variables shared by sequential script runs.

    A store outlives the execution contexts that read and write it. Runs are
    sequential, so there is no locking; each ``set`` is atomic because the
    value is fully marshaled before the single dict assignment.
    """

    def __init__(
        self,
        initial: Optional[Mapping[str, Any]] = None,
        marshaler: Optional[ValueMarshaler] = None,
        allow_creation: bool = True,
    ):
        self.marshaler = marshaler or ValueMarshaler()
        self.allow_creation = allow_creation
        self._values: Dict[str, Any] = {}
        if initial:
            self.seed(initial)

    def get(self, name: str, default: Any = MISSING) -> Any:
        if name in self._values:
            return self._values[name]
        if default is MISSING:
            raise UndefinedVariable(name)
        return default

    def set(self, name: str, value: Any) -> None:
        if not isinstance(name, str) or not name:
            raise UndefinedVariable(str(name), f"Invalid variable name: {name!r}")
        if not self.allow_creation and name not in self._values:
            raise UndefinedVariable(
                name,
                f"Variable '{name}' does not exist. Declare it before the script runs, e.g. '{name} = 0'.",
            )
        converted = self.marshaler.to_host(value)
        self._values[name] = converted
        logger.debug("set variable %s", name)

    def seed(self, values: Mapping[str, Any]) -> None:
        """Pre-seed inputs, bypassing the creation check."""
        for name, value in values.items():
            self._values[name] = self.marshaler.to_host(value)

    def names(self) -> List[str]:
        return sorted(self._values)

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._values)

    def clear(self) -> None:
        self._values.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)
