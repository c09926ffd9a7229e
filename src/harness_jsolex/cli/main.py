import json
import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from harness_jsolex import __version__
from harness_jsolex.bridge import operations
from harness_jsolex.bridge.client import BridgeClient, BridgeClientError
from harness_jsolex.bridge.protocol import ERROR_CODES, PROTOCOL_VERSION, BridgeOperationError
from harness_jsolex.bridge.server import run_bridge_server
from harness_jsolex.core.config import BridgeConfig, resolve_bridge_url, state_dir
from harness_jsolex.core.host import create_session

app = typer.Typer(add_completion=False, help="Run image scripts against the jsolex bridge")
bridge_app = typer.Typer(add_completion=False, help="Bridge lifecycle")
app.add_typer(bridge_app, name="bridge")


@app.callback()
def _configure(log_level: str = typer.Option("WARNING", "--log-level", envvar="HARNESS_JSOLEX_LOG_LEVEL")) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _print(payload: Dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2))


def _ok(command: str, data: Dict[str, Any]) -> None:
    _print({"ok": True, "protocolVersion": PROTOCOL_VERSION, "command": command, "data": data})


def _fail(command: str, code: str, message: str, retryable: bool = False) -> None:
    _print(
        {
            "ok": False,
            "protocolVersion": PROTOCOL_VERSION,
            "command": command,
            "error": {"code": code, "message": message, "retryable": retryable},
        }
    )
    raise SystemExit(ERROR_CODES.get(code, 1))


def _resolve_bridge_url() -> str:
    return resolve_bridge_url()


def _bridge_pid_file() -> Path:
    return state_dir() / "bridge.pid"


def _bridge_url_file() -> Path:
    return state_dir() / "bridge.url"


def _bridge_client() -> BridgeClient:
    return BridgeClient(_resolve_bridge_url())


def _call_bridge(command: str, method: str, params: Dict[str, Any], timeout_seconds: float = 30) -> Dict[str, Any]:
    client = _bridge_client()
    try:
        return client.call(method, params, timeout_seconds=timeout_seconds)
    except BridgeClientError as exc:
        _fail(command, exc.code, exc.message, retryable=exc.code == "BRIDGE_UNAVAILABLE")
    except Exception as exc:  # pragma: no cover
        _fail(command, "ERROR", str(exc))
    raise RuntimeError("unreachable")


def _parse_json_value(command: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        # bare words are plain strings
        return raw


def _parse_kv_args(command: str, args: Optional[List[str]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for arg in args or []:
        if "=" not in arg:
            _fail(command, "INVALID_INPUT", f"Expected key=value, got: {arg}")
        key, value = arg.split("=", 1)
        result[key] = _parse_json_value(command, value)
    return result


@bridge_app.command("serve")
def bridge_serve(host: str = typer.Option("127.0.0.1", "--host"), port: int = typer.Option(41751, "--port")) -> None:
    run_bridge_server(host, port)


@bridge_app.command("start")
def bridge_start(host: str = typer.Option("127.0.0.1", "--host"), port: int = typer.Option(41751, "--port")) -> None:
    pid_file = _bridge_pid_file()
    if pid_file.exists():
        try:
            pid = int(pid_file.read_text(encoding="utf-8").strip())
            os.kill(pid, 0)
            _ok("bridge.start", {"status": "already-running", "pid": pid, "url": _resolve_bridge_url()})
            return
        except Exception:
            pid_file.unlink(missing_ok=True)

    creationflags = 0
    if os.name == "nt":
        creationflags = subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.DETACHED_PROCESS
    process = subprocess.Popen(
        [sys.executable, "-m", "harness_jsolex", "bridge", "serve", "--host", host, "--port", str(port)],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        creationflags=creationflags,
    )
    url = f"http://{host}:{port}"
    pid_file.write_text(str(process.pid), encoding="utf-8")
    _bridge_url_file().write_text(url, encoding="utf-8")

    for _ in range(30):
        time.sleep(0.1)
        try:
            status = BridgeClient(url).health()
            if status.get("ok"):
                _ok("bridge.start", {"status": "started", "pid": process.pid, "url": url})
                return
        except BridgeClientError:
            continue
    _fail("bridge.start", "BRIDGE_UNAVAILABLE", "Bridge process started but health check failed")


@bridge_app.command("stop")
def bridge_stop() -> None:
    pid_file = _bridge_pid_file()
    if not pid_file.exists():
        _ok("bridge.stop", {"status": "not-running"})
        return
    pid = int(pid_file.read_text(encoding="utf-8").strip())
    try:
        os.kill(pid, signal.SIGTERM)
        pid_file.unlink(missing_ok=True)
        _bridge_url_file().unlink(missing_ok=True)
        _ok("bridge.stop", {"status": "stopped", "pid": pid})
    except Exception as exc:
        _fail("bridge.stop", "ERROR", str(exc))


@bridge_app.command("status")
def bridge_status() -> None:
    client = _bridge_client()
    try:
        health = client.health()
        _ok("bridge.status", {"running": True, "health": health, "url": client.url})
    except BridgeClientError as exc:
        _fail("bridge.status", exc.code, exc.message, retryable=True)


@app.command("run")
def run(
    script: Path,
    var: Optional[List[str]] = typer.Option(None, "--var", help="Script variable as key=value (JSON values accepted)"),
    local: bool = typer.Option(False, "--local", help="Run in-process instead of through the bridge"),
) -> None:
    variables = _parse_kv_args("run", var)
    if not local:
        _ok("run", _call_bridge("run", "script.run_file", {"path": str(script.resolve()), "variables": variables}, timeout_seconds=600))
        return
    session = create_session(BridgeConfig.from_env())
    try:
        source = script.read_text(encoding="utf-8")
        _ok("run", operations.run_script(session, source, variables, str(script)))
    except FileNotFoundError:
        _fail("run", "NOT_FOUND", f"File not found: {script}")
    except BridgeOperationError as exc:
        _fail("run", exc.code, exc.message)


@app.command("get-var")
def get_var(name: str, default_json: Optional[str] = typer.Option(None, "--default-json")) -> None:
    params: Dict[str, Any] = {"name": name}
    if default_json is not None:
        params["default"] = _parse_json_value("get-var", default_json)
    _ok("get-var", _call_bridge("get-var", "variables.get", params))


@app.command("set-var")
def set_var(name: str, value_json: str) -> None:
    value = _parse_json_value("set-var", value_json)
    _ok("set-var", _call_bridge("set-var", "variables.set", {"name": name, "value": value}))


@app.command("vars")
def list_vars() -> None:
    _ok("vars", _call_bridge("vars", "variables.list", {}))


@app.command("functions")
def functions() -> None:
    _ok("functions", _call_bridge("functions", "functions.list", {}))


@app.command("define-function")
def define_function(
    name: str,
    script: Path,
    arg: Optional[List[str]] = typer.Option(None, "--arg", help="Argument name, repeat for each"),
) -> None:
    if not script.exists():
        _fail("define-function", "NOT_FOUND", f"File not found: {script}")
    _ok(
        "define-function",
        _call_bridge(
            "define-function",
            "function.define",
            {"name": name, "arguments": list(arg or []), "script": script.read_text(encoding="utf-8")},
        ),
    )


@app.command("reset")
def reset() -> None:
    _ok("reset", _call_bridge("reset", "session.reset", {}))


@app.command("actions")
def actions() -> None:
    _ok("actions", _call_bridge("actions", "system.actions", {}))


@app.command("doctor")
def doctor(verbose: bool = typer.Option(False, "--verbose")) -> None:
    _ok("doctor", _call_bridge("doctor", "system.doctor", {"verbose": verbose}))


@app.command("version")
def version() -> None:
    _ok("version", {"packageVersion": __version__, "protocolVersion": PROTOCOL_VERSION})


def main() -> None:
    app()
