"""Script sessions: one variable store shared by sequential script runs.

A session is created once per pipeline run. Every ``execute`` call builds a
fresh :class:`ExecutionContext` (namespace, script module and dispatcher are
recreated) while the variable store carries over. Emissions are drained at the
start of each run and handed back on the run's :class:`ScriptResult`.
"""

import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from harness_jsolex.bridge.context import ExecutionContext
from harness_jsolex.bridge.dispatch import OperationRegistry
from harness_jsolex.bridge.emission import Emission, EmissionChannel, EmissionSink
from harness_jsolex.bridge.protocol import BridgeOperationError, UnknownOperation
from harness_jsolex.bridge.results import Outputs, ResultExtractor, ScriptResult
from harness_jsolex.bridge.store import VariableStore
from harness_jsolex.bridge.user_functions import UserFunction, UserFunctionTable
from harness_jsolex.bridge.values import ValueMarshaler
from harness_jsolex.core.config import BridgeConfig

logger = logging.getLogger(__name__)


class ScriptSession:
    def __init__(
        self,
        builtin_operations: Optional[OperationRegistry] = None,
        steps: Optional[OperationRegistry] = None,
        user_functions: Optional[UserFunctionTable] = None,
        *,
        handle_types: Tuple[type, ...] = (),
        variables: Optional[Mapping[str, Any]] = None,
        config: Optional[BridgeConfig] = None,
        sink: Optional[EmissionSink] = None,
    ):
        self.config = config or BridgeConfig()
        self.marshaler = ValueMarshaler(handle_types)
        self.builtin_operations = (builtin_operations or OperationRegistry()).freeze()
        self.steps = (steps or OperationRegistry()).freeze()
        self.user_functions = user_functions or UserFunctionTable()
        self.store = VariableStore(variables, self.marshaler, self.config.allow_variable_creation)
        self.emissions = EmissionChannel(self.marshaler, sink)
        self.extractor = ResultExtractor(
            self.marshaler,
            result_keys=self.config.result_keys,
            primary_key=self.config.primary_key,
            slot=self.config.result_slot,
        )
        self._last_context: Optional[ExecutionContext] = None
        self._last_filename = "<script>"

    def new_context(self, variables: Optional[Mapping[str, Any]] = None) -> ExecutionContext:
        return ExecutionContext(
            self.store,
            self.builtin_operations,
            self.steps,
            self.user_functions,
            self.emissions,
            self.marshaler,
            self.config,
            variables,
        )

    def execute(
        self,
        source: str,
        variables: Optional[Mapping[str, Any]] = None,
        filename: str = "<script>",
    ) -> ScriptResult:
        """Run ``source`` in a new context and extract its result.

        Raises:
            BridgeOperationError: Any bridge failure, or ScriptExecutionError
                for errors raised by the script's own code. No result is
                extracted from a failed run.
        """
        context = self.new_context(variables)
        # the channel only holds the current run
        self.emissions.drain()
        logger.info("running script %s", filename)
        try:
            context.run(source, filename)
        except BridgeOperationError as exc:
            logger.error("script %s failed: [%s] %s", filename, exc.code, exc.message)
            raise
        self._last_context = context
        self._last_filename = filename
        result = dataclasses.replace(context.extract(self.extractor), emissions=self.emissions.drain())
        logger.info("script %s finished (result %s)", filename, "present" if result.present else "absent")
        return result

    def execute_file(self, path: Union[str, Path], variables: Optional[Mapping[str, Any]] = None) -> ScriptResult:
        script_path = Path(path)
        if not script_path.exists():
            raise BridgeOperationError("NOT_FOUND", f"Python file not found: {path}")
        source = script_path.read_text(encoding="utf-8")
        return self.execute(source, variables, filename=str(script_path))

    def has_function(self, name: str) -> bool:
        return self._last_context is not None and self._last_context.has_function(name)

    def call_function(self, name: str, args: Optional[Mapping[str, Any]] = None) -> Any:
        context = self._require_context(name)
        return context.call_function(name, args, filename=self._last_filename)

    def run_single(self) -> Dict[str, Any]:
        """Call the script's ``single()`` with a fresh ``outputs`` object."""
        context = self._require_context("single")
        self.emissions.drain()
        outputs = Outputs()
        context.namespace["outputs"] = outputs
        context.call_function("single", filename=self._last_filename)
        return self.marshaler.to_script(outputs.as_dict())

    def run_batch(self, collected: Mapping[str, List[Any]]) -> Dict[str, Any]:
        """Call ``batch(results)`` where ``results.name`` lists every single() value."""
        context = self._require_context("batch")
        self.emissions.drain()
        outputs = Outputs()
        context.namespace["outputs"] = outputs
        results = Outputs(self.marshaler.to_script(dict(collected)))
        context.invoke_function("batch", {"results": results}, filename=self._last_filename)
        return self.marshaler.to_script(outputs.as_dict())

    def define_user_function(self, name: str, arguments: Iterable[str], source: str) -> UserFunction:
        """Define a user function whose body is a script assigning ``result``."""
        slot = self.config.result_slot
        filename = f"<function {name}>"

        def body(bundle: Dict[str, Any]) -> Any:
            context = self.new_context(bundle)
            context.run(source, filename)
            if slot not in context.namespace:
                raise RuntimeError(f"No {slot} variable found in function {name}")
            return context.namespace[slot]

        fn = UserFunction(name, tuple(arguments), body)
        self.user_functions.define(fn)
        logger.debug("defined user function %s(%s)", name, ", ".join(fn.arguments))
        return fn

    @property
    def emitted(self) -> List[Emission]:
        return self.emissions.emissions

    def reset(self) -> None:
        self.store.clear()
        self.emissions.drain()
        self._last_context = None

    def _require_context(self, name: str) -> ExecutionContext:
        if self._last_context is None or not self._last_context.has_function(name):
            raise UnknownOperation(name)
        return self._last_context
