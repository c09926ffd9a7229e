import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from harness_jsolex.bridge.protocol import (
    ArgumentError,
    BridgeOperationError,
    OperationError,
    UndefinedUserFunction,
)
from harness_jsolex.bridge.values import ValueMarshaler, summarize, summarize_arguments

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserFunction:
    """A pipeline step defined by the user rather than built into the host.

    ``body`` receives the complete named-argument bundle as one dict.
    """

    name: str
    arguments: Tuple[str, ...]
    body: Callable[[Dict[str, Any]], Any]


class UserFunctionTable:
    def __init__(self, functions: Iterable[UserFunction] = ()):
        self._functions: Dict[str, UserFunction] = {}
        for fn in functions:
            self.define(fn)

    def define(self, fn: UserFunction) -> None:
        self._functions[fn.name] = fn

    def get(self, name: str) -> Optional[UserFunction]:
        return self._functions.get(name)

    def names(self) -> List[str]:
        return sorted(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions


class UserFunctionInvoker:
    """Resolves and runs user functions with a named-argument bundle.

    No lock is held while a body runs: bodies are free to dispatch again,
    including into other user functions.
    """

    def __init__(self, table: UserFunctionTable, marshaler: ValueMarshaler):
        self.table = table
        self.marshaler = marshaler

    def resolve(self, name: str) -> UserFunction:
        fn = self.table.get(name)
        if fn is None:
            raise UndefinedUserFunction(name)
        return fn

    def invoke(self, name: str, args: Any = None) -> Any:
        fn = self.resolve(name)
        if args is None:
            args = {}
        if not isinstance(args, Mapping):
            raise ArgumentError(
                name,
                f"arguments must be a mapping, got {type(args).__name__}",
                summarize(args, self.marshaler),
            )
        bundle = self.marshaler.to_host(args)
        self._validate(fn, bundle)
        return self._apply(fn, bundle)

    def bind_positional(self, name: str, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Dict[str, Any]:
        fn = self.resolve(name)
        if len(args) > len(fn.arguments):
            raise ArgumentError(
                name,
                f"expects at most {len(fn.arguments)} positional arguments, got {len(args)}",
                summarize_arguments(args, kwargs, self.marshaler),
            )
        bundle = dict(zip(fn.arguments, args))
        for key, value in kwargs.items():
            if key in bundle:
                raise ArgumentError(
                    name,
                    f"got multiple values for argument '{key}'",
                    summarize_arguments(args, kwargs, self.marshaler),
                )
            bundle[key] = value
        return bundle

    def _validate(self, fn: UserFunction, bundle: Dict[str, Any]) -> None:
        unexpected = [k for k in bundle if k not in fn.arguments]
        if unexpected:
            raise ArgumentError(fn.name, f"unexpected arguments: {', '.join(unexpected)}", summarize(bundle, self.marshaler))
        missing = [a for a in fn.arguments if a not in bundle]
        if missing:
            raise ArgumentError(fn.name, f"missing arguments: {', '.join(missing)}", summarize(bundle, self.marshaler))

    def _apply(self, fn: UserFunction, bundle: Dict[str, Any]) -> Any:
        # A sequence as first argument, bare or as {"list": [...]}, applies the function to each element
        if fn.arguments:
            first = fn.arguments[0]
            items = _as_items(bundle[first])
            if items is not None:
                logger.debug("mapping user function %s over %d items", fn.name, len(items))
                return [self._apply(fn, {**bundle, first: item}) for item in items]
        logger.debug("invoking user function %s", fn.name)
        try:
            value = fn.body(dict(bundle))
        except BridgeOperationError:
            raise
        except (Exception, SystemExit) as exc:
            raise OperationError(fn.name, summarize(bundle, self.marshaler), exc) from exc
        return self.marshaler.to_script(value)


def _as_items(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict) and len(value) == 1 and isinstance(value.get("list"), list):
        return value["list"]
    return None
