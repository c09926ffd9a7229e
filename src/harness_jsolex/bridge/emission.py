import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from harness_jsolex.bridge.values import ValueMarshaler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Emission:
    sequence: int
    value: Any
    display_name: str
    identifier: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None


EmissionSink = Callable[[Emission], None]


class EmissionChannel:
    """One-way hand-off of values to the UI, kept in call order.

    A value that cannot be marshaled fails its own call only; earlier
    emissions are neither removed nor re-sent.
    """

    def __init__(self, marshaler: ValueMarshaler, sink: Optional[EmissionSink] = None):
        self.marshaler = marshaler
        self.sink = sink
        self._emissions: List[Emission] = []
        self._sequence = 0

    def emit(
        self,
        value: Any,
        display_name: str,
        identifier: Optional[str] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        converted = self.marshaler.to_script(value)
        emission = Emission(
            sequence=self._sequence,
            value=converted,
            display_name=str(display_name),
            identifier=identifier,
            category=category,
            description=description,
        )
        self._sequence += 1
        self._emissions.append(emission)
        logger.debug("emitted %s (#%d)", emission.display_name, emission.sequence)
        if self.sink is not None:
            self.sink(emission)

    @property
    def emissions(self) -> List[Emission]:
        return list(self._emissions)

    def drain(self) -> List[Emission]:
        drained, self._emissions = self._emissions, []
        return drained
