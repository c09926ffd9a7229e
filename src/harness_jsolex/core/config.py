import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet

DEFAULT_BRIDGE_URL = "http://127.0.0.1:41751"
DEFAULT_RESULT_KEYS = frozenset({"processed", "stats", "quality"})


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BridgeConfig:
    """Settings shared by every execution context of a session.

    Attributes:
        module_name: Name under which the bridge module is visible to scripts.
        result_slot: Global a script assigns to hand back its result.
        primary_key: Key of a structured result holding the primary value.
        result_keys: Keys that mark a result mapping as structured.
        allow_variable_creation: Whether ``setVariable`` may create new names.
        capture_output: Route script stdout/stderr to the logger.
    """

    module_name: str = "jsolex"
    result_slot: str = "result"
    primary_key: str = "processed"
    result_keys: FrozenSet[str] = field(default_factory=lambda: DEFAULT_RESULT_KEYS)
    allow_variable_creation: bool = True
    capture_output: bool = True

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        keys_raw = os.getenv("HARNESS_JSOLEX_RESULT_KEYS")
        if keys_raw:
            result_keys = frozenset(k.strip() for k in keys_raw.split(",") if k.strip())
        else:
            result_keys = DEFAULT_RESULT_KEYS
        primary_key = os.getenv("HARNESS_JSOLEX_PRIMARY_KEY", "processed")
        return cls(
            module_name=os.getenv("HARNESS_JSOLEX_MODULE", "jsolex"),
            result_slot=os.getenv("HARNESS_JSOLEX_RESULT_SLOT", "result"),
            primary_key=primary_key,
            result_keys=result_keys | {primary_key},
            allow_variable_creation=_env_flag("HARNESS_JSOLEX_ALLOW_VARIABLE_CREATION", True),
            capture_output=_env_flag("HARNESS_JSOLEX_CAPTURE_OUTPUT", True),
        )


def state_dir() -> Path:
    env = os.getenv("HARNESS_JSOLEX_STATE_DIR")
    if env:
        path = Path(env)
    else:
        path = Path(os.getenv("LOCALAPPDATA", str(Path.home()))) / "harness-jsolex"
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_bridge_url() -> str:
    env = os.getenv("HARNESS_JSOLEX_BRIDGE_URL")
    if env:
        return env
    persisted = state_dir() / "bridge.url"
    if persisted.exists():
        url = persisted.read_text(encoding="utf-8").strip()
        if url:
            return url
    return DEFAULT_BRIDGE_URL
