import builtins
import contextlib
import io
import logging
import types
from typing import Any, Dict, Iterator, List, Mapping, Optional

from harness_jsolex.bridge import protocol
from harness_jsolex.bridge.dispatch import Dispatcher, OperationDescriptor, OperationRegistry
from harness_jsolex.bridge.emission import EmissionChannel
from harness_jsolex.bridge.protocol import (
    BridgeOperationError,
    ScriptExecutionError,
    UnknownOperation,
    UnknownOperationAttribute,
)
from harness_jsolex.bridge.results import Outputs, ResultExtractor, ScriptResult
from harness_jsolex.bridge.store import MISSING, VariableStore
from harness_jsolex.bridge.user_functions import UserFunctionInvoker, UserFunctionTable
from harness_jsolex.bridge.values import ValueMarshaler
from harness_jsolex.core.config import BridgeConfig

logger = logging.getLogger(__name__)
script_logger = logging.getLogger("harness_jsolex.script")

SCRIPT_ERRORS = (
    "BridgeOperationError",
    "UndefinedVariable",
    "UnknownOperation",
    "UndefinedUserFunction",
    "ArgumentError",
    "MarshalError",
    "OperationError",
)


class _LineLogger(io.TextIOBase):
    def __init__(self, level: int):
        self.level = level
        self._buffer = ""

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        self._buffer += text
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            script_logger.log(self.level, "[Python] %s", line)
        return len(text)

    def flush(self) -> None:
        if self._buffer:
            script_logger.log(self.level, "[Python] %s", self._buffer)
            self._buffer = ""


class ScriptModule(types.ModuleType):
    """The module scripts see; unknown attributes are unknown operations."""

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        raise UnknownOperationAttribute(name)


class VariableAccessor:
    """``jsolex.vars.name`` reads and assignments go to the variable store."""

    def __init__(self, context: "ExecutionContext"):
        object.__setattr__(self, "_context", context)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        return self._context.dispatcher.dispatch("getVariable", (name,))

    def __setattr__(self, name: str, value: Any) -> None:
        self._context.dispatcher.dispatch("setVariable", (name, value))

    def __dir__(self) -> List[str]:
        return self._context.store.names()


class FunctionAccessor:
    """``jsolex.funcs.NAME(...)``: pipeline steps first, then user functions."""

    def __init__(self, dispatcher: Dispatcher):
        self._dispatcher = dispatcher

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        if name not in self._dispatcher.steps and name not in self._dispatcher.user_functions.table:
            raise UnknownOperationAttribute(name)

        def func_wrapper(*args: Any, **kwargs: Any) -> Any:
            return self._dispatcher.call_any(name, args, kwargs)

        func_wrapper.__name__ = name
        return func_wrapper

    def __dir__(self) -> List[str]:
        return sorted(set(self._dispatcher.steps.names()) | set(self._dispatcher.user_functions.table.names()))


class ExecutionContext:
    """One script evaluation.

    The context owns its namespace, script module and dispatcher; it only
    references the variable store and emission channel, which belong to the
    session and outlive it.
    """

    def __init__(
        self,
        store: VariableStore,
        builtin_operations: OperationRegistry,
        steps: OperationRegistry,
        user_functions: UserFunctionTable,
        emissions: EmissionChannel,
        marshaler: ValueMarshaler,
        config: Optional[BridgeConfig] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ):
        self.store = store
        self.emissions = emissions
        self.marshaler = marshaler
        self.config = config or BridgeConfig()
        self.dispatcher = Dispatcher(
            builtin_operations.merged(self._bridge_operations()),
            steps,
            UserFunctionInvoker(user_functions, marshaler),
            marshaler,
        )
        self.outputs = Outputs()
        self.module = self._build_module()
        self.namespace = self._build_namespace(variables or {})
        logger.debug("created execution context with %d operations", len(self.dispatcher.operations))

    def _bridge_operations(self) -> OperationRegistry:
        registry = OperationRegistry()
        registry.add(OperationDescriptor("getVariable", self._get_variable))
        registry.add(OperationDescriptor("setVariable", self._set_variable))
        registry.add(OperationDescriptor("call", self._call))
        registry.add(OperationDescriptor("callUserFunction", self._call_user_function))
        registry.add(OperationDescriptor("emit", self._emit))
        return registry

    def _get_variable(self, name: str, default: Any = MISSING) -> Any:
        return self.store.get(name, default)

    def _set_variable(self, name: str, value: Any) -> None:
        self.store.set(name, value)

    def _call(self, name: str, args: Any = None) -> Any:
        return self.dispatcher.call_step(name, args)

    def _call_user_function(self, name: str, args: Any = None) -> Any:
        return self.dispatcher.user_functions.invoke(name, args)

    def _emit(
        self,
        value: Any,
        title: str,
        name: Optional[str] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.emissions.emit(value, title, name, category, description)

    def _bound(self, name: str) -> Any:
        dispatcher = self.dispatcher

        def operation(*args: Any, **kwargs: Any) -> Any:
            return dispatcher.dispatch(name, args, kwargs)

        operation.__name__ = name
        operation.__doc__ = dispatcher.operations.resolve(name).doc
        return operation

    def _build_module(self) -> ScriptModule:
        module = ScriptModule(self.config.module_name)
        for name in self.dispatcher.operations.names():
            setattr(module, name, self._bound(name))
        for error_name in SCRIPT_ERRORS:
            setattr(module, error_name, getattr(protocol, error_name))
        module.vars = VariableAccessor(self)
        module.funcs = FunctionAccessor(self.dispatcher)
        return module

    def _import(self, name: str, globals: Any = None, locals: Any = None, fromlist: Any = (), level: int = 0) -> Any:
        if level == 0 and name == self.module.__name__:
            return self.module
        return builtins.__import__(name, globals, locals, fromlist, level)

    def _build_namespace(self, variables: Mapping[str, Any]) -> Dict[str, Any]:
        script_builtins = dict(vars(builtins))
        script_builtins["__import__"] = self._import
        # site's exit()/quit() close sys.stdin before raising
        script_builtins["exit"] = _script_exit
        script_builtins["quit"] = _script_exit
        namespace: Dict[str, Any] = {
            "__name__": "__main__",
            "__builtins__": script_builtins,
            self.module.__name__: self.module,
            "outputs": self.outputs,
        }
        for name, value in variables.items():
            namespace[name] = self.marshaler.to_script(value)
        namespace.pop(self.config.result_slot, None)
        return namespace

    @contextlib.contextmanager
    def _captured_output(self) -> Iterator[None]:
        if not self.config.capture_output:
            yield
            return
        out = _LineLogger(logging.INFO)
        err = _LineLogger(logging.WARNING)
        try:
            with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
                yield
        finally:
            out.flush()
            err.flush()

    def run(self, source: str, filename: str = "<script>") -> None:
        try:
            code = compile(source, filename, "exec")
        except SyntaxError as exc:
            raise ScriptExecutionError(f"SyntaxError: {exc.msg}", filename, exc.lineno) from exc
        with self._captured_output():
            try:
                exec(code, self.namespace)
            except BridgeOperationError:
                raise
            except SystemExit as exc:
                raise ScriptExecutionError(f"SystemExit: {exc.code}", filename, _script_lineno(exc, filename)) from exc
            except Exception as exc:
                lineno = _script_lineno(exc, filename)
                raise ScriptExecutionError(f"{type(exc).__name__}: {exc}", filename, lineno) from exc

    def has_function(self, name: str) -> bool:
        return callable(self.namespace.get(name)) and not isinstance(self.namespace.get(name), type)

    def call_function(self, name: str, args: Optional[Mapping[str, Any]] = None, filename: str = "<script>") -> Any:
        kwargs = {k: self.marshaler.to_script(v) for k, v in (args or {}).items()}
        return self.invoke_function(name, kwargs, filename)

    def invoke_function(self, name: str, kwargs: Dict[str, Any], filename: str = "<script>") -> Any:
        """Call a script-defined function with already prepared keyword arguments."""
        if not self.has_function(name):
            raise UnknownOperation(name)
        with self._captured_output():
            try:
                value = self.namespace[name](**kwargs)
            except BridgeOperationError:
                raise
            except SystemExit as exc:
                raise ScriptExecutionError(f"SystemExit: {exc.code}", filename, _script_lineno(exc, filename)) from exc
            except Exception as exc:
                raise ScriptExecutionError(f"{type(exc).__name__}: {exc}", filename, _script_lineno(exc, filename)) from exc
        return self.marshaler.to_script(value)

    def extract(self, extractor: ResultExtractor) -> ScriptResult:
        return extractor.extract(self.namespace, self.outputs)


def _script_exit(code: Any = None) -> None:
    raise SystemExit(code)


def _script_lineno(exc: BaseException, filename: str) -> Optional[int]:
    lineno = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == filename:
            lineno = tb.tb_lineno
        tb = tb.tb_next
    return lineno
