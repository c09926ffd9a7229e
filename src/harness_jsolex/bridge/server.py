import json
import logging
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict

from harness_jsolex.bridge.operations import handle_method
from harness_jsolex.bridge.protocol import BridgeOperationError

logger = logging.getLogger(__name__)


class BridgeHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/health":
            self._send_json(200, {"ok": True})
            return
        self._send_json(404, {"ok": False, "error": "not found"})

    def do_POST(self) -> None:  # noqa: N802
        if self.path != "/rpc":
            self._send_json(404, {"ok": False, "error": "not found"})
            return
        length = int(self.headers.get("Content-Length", "0"))
        raw = self.rfile.read(length).decode("utf-8") if length else "{}"
        method = None
        try:
            payload = json.loads(raw)
            method = payload.get("method")
            params = payload.get("params") or {}
            result = handle_method(method, params)
            self._send_json(200, {"ok": True, "result": result})
        except json.JSONDecodeError as exc:
            self._send_json(400, {"ok": False, "error": {"code": "INVALID_INPUT", "message": f"Invalid JSON: {exc}"}})
        except BridgeOperationError as exc:
            logger.warning("rpc %s failed: [%s] %s", method, exc.code, exc.message)
            self._send_json(400, {"ok": False, "error": exc.to_dict()})
        except Exception as exc:  # pragma: no cover
            logger.exception("rpc failed")
            self._send_json(500, {"ok": False, "error": {"code": "ERROR", "message": str(exc)}})

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
        logger.debug("%s - %s", self.address_string(), format % args)

    def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


def run_bridge_server(host: str, port: int) -> None:
    # Requests are served one at a time: runs sharing a session must not overlap
    server = HTTPServer((host, port), BridgeHandler)
    logger.info("bridge listening on http://%s:%d", host, port)
    server.serve_forever()
