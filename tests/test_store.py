import pytest

from harness_jsolex.bridge.protocol import MarshalError, UndefinedVariable
from harness_jsolex.bridge.store import VariableStore


def test_set_then_get_round_trips() -> None:
    store = VariableStore()
    store.set("count", 3)
    store.set("name", "sun")
    assert store.get("count") == 3
    assert store.get("name") == "sun"


def test_get_absent_raises() -> None:
    with pytest.raises(UndefinedVariable) as excinfo:
        VariableStore().get("missing")
    assert excinfo.value.name == "missing"
    assert excinfo.value.code == "UNDEFINED_VARIABLE"


def test_get_default_does_not_write_back() -> None:
    store = VariableStore()
    assert store.get("missing", 0) == 0
    assert store.get("missing", 0) == 0
    assert "missing" not in store
    assert len(store) == 0


def test_stored_none_wins_over_default() -> None:
    store = VariableStore({"x": None})
    assert store.get("x", 5) is None


def test_types_may_change_under_one_name() -> None:
    store = VariableStore()
    store.set("x", 1)
    store.set("x", [1, 2])
    assert store.get("x") == [1, 2]


def test_failed_set_leaves_store_unchanged() -> None:
    store = VariableStore({"x": 1})
    with pytest.raises(MarshalError):
        store.set("x", {"ok": 1, 2: "bad"})
    assert store.get("x") == 1
    assert store.names() == ["x"]


def test_creation_can_be_disabled() -> None:
    store = VariableStore({"known": 0}, allow_creation=False)
    store.set("known", 1)
    with pytest.raises(UndefinedVariable) as excinfo:
        store.set("other", 1)
    assert "Declare it" in excinfo.value.message
    assert store.snapshot() == {"known": 1}


def test_clear_empties_store() -> None:
    store = VariableStore({"a": 1, "b": 2})
    store.clear()
    assert store.names() == []
