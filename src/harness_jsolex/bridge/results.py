from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from harness_jsolex.bridge.emission import Emission
from harness_jsolex.bridge.values import ValueMarshaler


class Outputs:
    """Attribute bag scripts fill with ``outputs.name = value``."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        object.__setattr__(self, "_data", data if data is not None else {})

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        return self._data.get(name)

    def __setattr__(self, name: str, value: Any) -> None:
        self._data[name] = value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def __repr__(self) -> str:
        return f"Outputs({self._data})"


@dataclass(frozen=True)
class ScriptResult:
    value: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    present: bool = False
    structured: bool = False
    outputs: Dict[str, Any] = field(default_factory=dict)
    emissions: List[Emission] = field(default_factory=list)

    @classmethod
    def absent(cls, outputs: Optional[Dict[str, Any]] = None) -> "ScriptResult":
        return cls(outputs=outputs or {})


class ResultExtractor:
    """Turns the final namespace of a finished script into a :class:`ScriptResult`.

    Priority:

    1. the result slot holds a mapping sharing at least one key with
       ``result_keys``: structured result, the ``primary_key`` entry is the
       value and every other key goes to ``metadata``;
    2. the slot holds anything else: that value alone;
    3. the slot was never assigned: an absent result.
    """

    def __init__(
        self,
        marshaler: ValueMarshaler,
        result_keys: FrozenSet[str] = frozenset({"processed", "stats", "quality"}),
        primary_key: str = "processed",
        slot: str = "result",
    ):
        self.marshaler = marshaler
        self.result_keys = frozenset(result_keys)
        self.primary_key = primary_key
        self.slot = slot

    def extract(self, namespace: Mapping, outputs: Optional[Outputs] = None) -> ScriptResult:
        collected = self.marshaler.to_script(outputs.as_dict()) if outputs is not None else {}
        if self.slot not in namespace:
            return ScriptResult.absent(collected)
        value = self.marshaler.to_script(namespace[self.slot])
        if isinstance(value, dict) and self.result_keys.intersection(value):
            metadata = {k: v for k, v in value.items() if k != self.primary_key}
            return ScriptResult(
                value=value.get(self.primary_key),
                metadata=metadata,
                present=True,
                structured=True,
                outputs=collected,
            )
        return ScriptResult(value=value, present=True, outputs=collected)
