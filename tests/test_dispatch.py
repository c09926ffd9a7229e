import pytest

from harness_jsolex.bridge.dispatch import Dispatcher, OperationDescriptor, OperationRegistry
from harness_jsolex.bridge.protocol import ArgumentError, OperationError, UnknownOperation
from harness_jsolex.bridge.user_functions import UserFunction, UserFunctionInvoker, UserFunctionTable
from harness_jsolex.bridge.values import ValueMarshaler


def _dispatcher(operations=None, steps=None, table=None) -> Dispatcher:  # noqa: ANN001
    marshaler = ValueMarshaler()
    return Dispatcher(
        operations or OperationRegistry(),
        steps or OperationRegistry(),
        UserFunctionInvoker(table or UserFunctionTable(), marshaler),
        marshaler,
    )


def test_register_as_decorator_and_call() -> None:
    registry = OperationRegistry()

    @registry.register()
    def double(x):  # noqa: ANN001, ANN202
        """Twice x."""
        return x * 2

    assert "double" in registry
    assert registry.resolve("double").doc == "Twice x."
    assert registry.resolve("double").parameters == ("x",)


def test_frozen_registry_rejects_additions() -> None:
    registry = OperationRegistry().freeze()
    with pytest.raises(RuntimeError):
        registry.register("x", lambda: 1)


def test_duplicate_names_are_rejected() -> None:
    registry = OperationRegistry()
    registry.register("x", lambda: 1)
    with pytest.raises(ValueError):
        registry.register("x", lambda: 2)


def test_lookup_is_exact() -> None:
    registry = OperationRegistry()
    registry.register("AUTOCROP", lambda img: img)
    with pytest.raises(UnknownOperation):
        registry.resolve("autocrop")


def test_dispatch_marshals_and_returns() -> None:
    registry = OperationRegistry()
    registry.register("pair", lambda a, b=0: (a, b))
    assert _dispatcher(registry).dispatch("pair", (1,), {"b": 2}) == [1, 2]


def test_unknown_operation_never_noops() -> None:
    with pytest.raises(UnknownOperation) as excinfo:
        _dispatcher().dispatch("nope")
    assert excinfo.value.name == "nope"


def test_arity_checked_before_host_runs() -> None:
    calls = []
    registry = OperationRegistry()
    registry.register("one", lambda x: calls.append(x))
    with pytest.raises(ArgumentError):
        _dispatcher(registry).dispatch("one", (1, 2))
    assert calls == []


def test_mapping_errors_report_arguments() -> None:
    steps = OperationRegistry()
    steps.register("SCALE", lambda img: img)
    with pytest.raises(ArgumentError) as excinfo:
        _dispatcher(steps=steps).call_step("SCALE", [3, "x"])
    assert excinfo.value.to_dict() == {
        "code": "INVALID_ARGUMENT",
        "message": "SCALE: arguments must be a mapping, got list",
        "operation": "SCALE",
        "arguments": "[3, 'x']",
    }


def test_host_failure_keeps_cause() -> None:
    def explode(x):  # noqa: ANN001, ANN202
        raise ZeroDivisionError("bad")

    registry = OperationRegistry([OperationDescriptor("explode", explode)])
    with pytest.raises(OperationError) as excinfo:
        _dispatcher(registry).dispatch("explode", (5,))
    err = excinfo.value
    assert err.operation == "explode"
    assert err.arguments == "5"
    assert isinstance(err.__cause__, ZeroDivisionError)
    assert err.to_dict()["cause"] == "ZeroDivisionError"


def test_call_step_takes_a_mapping() -> None:
    steps = OperationRegistry()
    steps.register("SCALE", lambda img, factor=2: img * factor)
    dispatcher = _dispatcher(steps=steps)
    assert dispatcher.call_step("SCALE", {"img": 3}) == 6
    with pytest.raises(ArgumentError):
        dispatcher.call_step("SCALE", [3])


def test_call_any_prefers_steps_then_user_functions() -> None:
    steps = OperationRegistry()
    steps.register("SHARED", lambda x: "step")
    table = UserFunctionTable(
        [
            UserFunction("SHARED", ("x",), lambda bundle: "user"),
            UserFunction("ADD", ("a", "b"), lambda bundle: bundle["a"] + bundle["b"]),
        ]
    )
    dispatcher = _dispatcher(steps=steps, table=table)
    assert dispatcher.call_any("SHARED", (1,)) == "step"
    assert dispatcher.call_any("ADD", (1,), {"b": 2}) == 3
    with pytest.raises(UnknownOperation):
        dispatcher.call_any("MISSING")


def test_host_exit_is_an_operation_error() -> None:
    def leave():  # noqa: ANN202
        raise SystemExit(0)

    registry = OperationRegistry([OperationDescriptor("leave", leave)])
    with pytest.raises(OperationError) as excinfo:
        _dispatcher(registry).dispatch("leave")
    assert isinstance(excinfo.value.__cause__, SystemExit)
