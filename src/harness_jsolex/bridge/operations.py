import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import PIL

from harness_jsolex import __version__
from harness_jsolex.bridge.emission import Emission
from harness_jsolex.bridge.protocol import PROTOCOL_VERSION, BridgeOperationError
from harness_jsolex.bridge.results import ScriptResult
from harness_jsolex.bridge.session import ScriptSession
from harness_jsolex.bridge.values import to_json
from harness_jsolex.core.config import BridgeConfig, resolve_bridge_url
from harness_jsolex.core.host import create_session, describe_handle

logger = logging.getLogger(__name__)

ACTION_METHODS = [
    "system.health",
    "system.version",
    "system.actions",
    "system.doctor",
    "script.run",
    "script.run_file",
    "variables.list",
    "variables.get",
    "variables.set",
    "functions.list",
    "function.define",
    "session.reset",
]

_SESSION: Optional[ScriptSession] = None


def get_session() -> ScriptSession:
    global _SESSION
    if _SESSION is None:
        _SESSION = create_session(BridgeConfig.from_env())
    return _SESSION


def reset_session() -> None:
    global _SESSION
    _SESSION = None


def _require_path(path: str) -> Path:
    p = Path(path)
    if not path or not p.exists():
        raise BridgeOperationError("NOT_FOUND", f"File not found: {path}")
    return p


def _require_str(params: Dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value.strip():
        raise BridgeOperationError("INVALID_INPUT", f"{key} is required")
    return value


def _variables(params: Dict[str, Any]) -> Dict[str, Any]:
    variables = params.get("variables") or {}
    if not isinstance(variables, dict):
        raise BridgeOperationError("INVALID_INPUT", "variables must be an object")
    return variables


def encode(session: ScriptSession, value: Any) -> Any:
    return to_json(value, session.marshaler, describe_handle)


def _emission_payload(session: ScriptSession, emission: Emission) -> Dict[str, Any]:
    return {
        "sequence": emission.sequence,
        "displayName": emission.display_name,
        "identifier": emission.identifier,
        "category": emission.category,
        "description": emission.description,
        "value": encode(session, emission.value),
    }


def result_payload(session: ScriptSession, result: ScriptResult) -> Dict[str, Any]:
    return {
        "present": result.present,
        "structured": result.structured,
        "result": encode(session, result.value),
        "metadata": encode(session, result.metadata),
        "outputs": encode(session, result.outputs),
        "emissions": [_emission_payload(session, e) for e in result.emissions],
    }


def run_script(session: ScriptSession, source: str, variables: Dict[str, Any], filename: str = "<script>") -> Dict[str, Any]:
    return result_payload(session, session.execute(source, variables, filename=filename))


def handle_method(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    if method == "system.health":
        return {"ok": True}
    if method == "system.version":
        return {"packageVersion": __version__, "protocolVersion": PROTOCOL_VERSION}
    if method == "system.actions":
        return {"actions": ACTION_METHODS}
    if method == "system.doctor":
        session = get_session()
        data: Dict[str, Any] = {
            "healthy": True,
            "pillowVersion": PIL.__version__,
            "moduleName": session.config.module_name,
            "resultSlot": session.config.result_slot,
            "resultKeys": sorted(session.config.result_keys),
            "issues": [],
        }
        if bool(params.get("verbose", False)):
            data["runtime"] = {
                "pythonExecutable": sys.executable,
                "modulePath": str(Path(__file__).resolve()),
                "bridgeUrl": resolve_bridge_url(),
            }
        return data
    if method == "script.run":
        source = params.get("script")
        if not isinstance(source, str):
            raise BridgeOperationError("INVALID_INPUT", "script is required")
        filename = str(params.get("filename") or "<script>")
        return run_script(get_session(), source, _variables(params), filename)
    if method == "script.run_file":
        path = _require_path(str(params.get("path", "")))
        source = path.read_text(encoding="utf-8")
        return run_script(get_session(), source, _variables(params), str(path))
    if method == "variables.list":
        session = get_session()
        return {"variables": {name: encode(session, session.store.get(name)) for name in session.store.names()}}
    if method == "variables.get":
        session = get_session()
        name = _require_str(params, "name")
        if "default" in params:
            value = session.store.get(name, params["default"])
        else:
            value = session.store.get(name)
        return {"name": name, "value": encode(session, value)}
    if method == "variables.set":
        session = get_session()
        name = _require_str(params, "name")
        if "value" not in params:
            raise BridgeOperationError("INVALID_INPUT", "value is required")
        session.store.set(name, params["value"])
        return {"name": name, "value": encode(session, session.store.get(name))}
    if method == "functions.list":
        session = get_session()
        return {
            "builtins": session.builtin_operations.names(),
            "steps": session.steps.names(),
            "userFunctions": session.user_functions.names(),
        }
    if method == "function.define":
        session = get_session()
        name = _require_str(params, "name")
        arguments = params.get("arguments") or []
        if not isinstance(arguments, list) or not all(isinstance(a, str) for a in arguments):
            raise BridgeOperationError("INVALID_INPUT", "arguments must be a list of names")
        fn = session.define_user_function(name, arguments, _require_str(params, "script"))
        return {"name": fn.name, "arguments": list(fn.arguments)}
    if method == "session.reset":
        reset_session()
        return {"reset": True}
    raise BridgeOperationError("INVALID_INPUT", f"Unknown method: {method}")
