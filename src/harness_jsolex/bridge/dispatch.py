import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from harness_jsolex.bridge.protocol import (
    ArgumentError,
    BridgeOperationError,
    OperationError,
    UnknownOperation,
)
from harness_jsolex.bridge.user_functions import UserFunctionInvoker
from harness_jsolex.bridge.values import ValueMarshaler, summarize, summarize_arguments

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationDescriptor:
    """A named host operation. Arity comes from the callable's signature."""

    name: str
    func: Callable[..., Any]
    doc: str = ""
    signature: Optional[inspect.Signature] = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        try:
            sig: Optional[inspect.Signature] = inspect.signature(self.func)
        except (TypeError, ValueError):
            sig = None
        object.__setattr__(self, "signature", sig)
        if not self.doc:
            object.__setattr__(self, "doc", inspect.getdoc(self.func) or "")

    @property
    def parameters(self) -> Tuple[str, ...]:
        if self.signature is None:
            return ()
        return tuple(self.signature.parameters)

    def check_arguments(self, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> None:
        if self.signature is None:
            return
        try:
            self.signature.bind(*args, **kwargs)
        except TypeError as exc:
            raise ArgumentError(self.name, str(exc), summarize_arguments(args, kwargs)) from exc


class OperationRegistry:
    """Name to descriptor table; frozen once the bridge has started."""

    def __init__(self, operations: Iterable[OperationDescriptor] = ()):
        self._operations: Dict[str, OperationDescriptor] = {}
        self._frozen = False
        for descriptor in operations:
            self.add(descriptor)

    def add(self, descriptor: OperationDescriptor) -> OperationDescriptor:
        if self._frozen:
            raise RuntimeError(f"Registry is frozen, cannot register: {descriptor.name}")
        if descriptor.name in self._operations:
            raise ValueError(f"Operation already registered: {descriptor.name}")
        self._operations[descriptor.name] = descriptor
        return descriptor

    def register(self, name: Optional[str] = None, func: Optional[Callable[..., Any]] = None):
        if func is not None:
            return self.add(OperationDescriptor(name or func.__name__, func)).func

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add(OperationDescriptor(name or fn.__name__, fn))
            return fn

        return decorator

    def freeze(self) -> "OperationRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def resolve(self, name: str) -> OperationDescriptor:
        descriptor = self._operations.get(name)
        if descriptor is None:
            raise UnknownOperation(name)
        return descriptor

    def merged(self, other: "OperationRegistry") -> "OperationRegistry":
        combined = OperationRegistry(self._operations.values())
        for descriptor in other._operations.values():
            combined.add(descriptor)
        return combined.freeze()

    def names(self) -> List[str]:
        return sorted(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __len__(self) -> int:
        return len(self._operations)


class Dispatcher:
    """Routes script calls to host operations, pipeline steps and user functions."""

    def __init__(
        self,
        operations: OperationRegistry,
        steps: OperationRegistry,
        user_functions: UserFunctionInvoker,
        marshaler: ValueMarshaler,
    ):
        self.operations = operations
        self.steps = steps
        self.user_functions = user_functions
        self.marshaler = marshaler
        self.depth = 0

    def dispatch(self, name: str, args: Tuple[Any, ...] = (), kwargs: Optional[Dict[str, Any]] = None) -> Any:
        return self.invoke(self.operations.resolve(name), args, kwargs or {})

    def call_step(self, name: str, args: Any = None) -> Any:
        descriptor = self.steps.resolve(name)
        if args is None:
            args = {}
        if not isinstance(args, Mapping):
            raise ArgumentError(
                name,
                f"arguments must be a mapping, got {type(args).__name__}",
                summarize(args, self.marshaler),
            )
        return self.invoke(descriptor, (), dict(args))

    def call_any(self, name: str, args: Tuple[Any, ...] = (), kwargs: Optional[Dict[str, Any]] = None) -> Any:
        kwargs = kwargs or {}
        if name in self.steps:
            return self.invoke(self.steps.resolve(name), args, kwargs)
        if name in self.user_functions.table:
            bundle = self.user_functions.bind_positional(name, tuple(args), kwargs)
            return self.user_functions.invoke(name, bundle)
        raise UnknownOperation(name)

    def invoke(self, descriptor: OperationDescriptor, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Any:
        host_args = tuple(self.marshaler.to_host(a) for a in args)
        host_kwargs = {k: self.marshaler.to_host(v) for k, v in kwargs.items()}
        descriptor.check_arguments(host_args, host_kwargs)
        logger.debug("dispatch %s (depth %d)", descriptor.name, self.depth)
        self.depth += 1
        try:
            value = descriptor.func(*host_args, **host_kwargs)
        except BridgeOperationError:
            raise
        except (Exception, SystemExit) as exc:
            summary = summarize_arguments(host_args, host_kwargs, self.marshaler)
            raise OperationError(descriptor.name, summary, exc) from exc
        finally:
            self.depth -= 1
        return self.marshaler.to_script(value)
