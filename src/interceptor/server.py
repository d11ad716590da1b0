#!/usr/bin/env python3
"""
Offline Proxy local listener

Every request the application sends to the listener goes through
OfflineProxy.handle(). A few reserved paths form the host-facing side:

  POST /__proxy/control  - control command (JSON)
  POST /__proxy/push     - push payload to display
  POST /__proxy/click    - notification click → {"action", "url"}

Usage:
  OFFLINE_PROXY_ORIGIN=https://app.example.com offline-proxy config/proxy.defaults.yml
"""

import json
import logging
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional

from .config import load_config
from .messages import ProxyRequest, ProxyResponse
from .proxy import OfflineProxy

logger = logging.getLogger(__name__)

CONTROL_PREFIX = "/__proxy/"
SKIP_RESPONSE_HEADERS = {"content-length", "transfer-encoding", "connection", "keep-alive"}


class ProxyHandler(BaseHTTPRequestHandler):
    proxy: OfflineProxy = None  # bound by make_server

    def do_GET(self):
        self.dispatch()

    def do_HEAD(self):
        self.dispatch()

    def do_POST(self):
        self.dispatch()

    def do_PUT(self):
        self.dispatch()

    def do_PATCH(self):
        self.dispatch()

    def do_DELETE(self):
        self.dispatch()

    def do_OPTIONS(self):
        self.dispatch()

    def _read_body(self) -> Optional[bytes]:
        content_length = int(self.headers.get("Content-Length", 0))
        if content_length < 0:
            raise ValueError(f"negative Content-Length: {content_length}")
        return self.rfile.read(content_length) if content_length else None

    def dispatch(self):
        try:
            body = self._read_body()
        except ValueError as e:
            logger.warning("Bad request %s %s: %s", self.command, self.path, e)
            self.close_connection = True
            self._send_json(400, {"ok": False, "error": "invalid Content-Length"})
            return

        if self.path.startswith(CONTROL_PREFIX) and self.command == "POST":
            self._handle_control(self.path[len(CONTROL_PREFIX):], body)
            return

        request = ProxyRequest(
            method=self.command,
            url=self.path,
            headers={k: v for k, v in self.headers.items()},
            body=body,
        )
        self._send(self.proxy.handle(request))

    def _handle_control(self, command: str, body: Optional[bytes]) -> None:
        if command == "push":
            notification = self.proxy.push(body)
            self._send_json(200, {"ok": True, "title": notification.title, "tag": notification.tag})
            return

        try:
            message: Dict[str, Any] = json.loads(body or b"{}")
        except ValueError:
            self._send_json(400, {"ok": False, "error": "invalid JSON"})
            return

        if command == "control":
            result = self.proxy.control(message)
            self._send_json(200 if result.get("ok") else 400, result)
        elif command == "click":
            notification = self.proxy.notifications.parse(message.get("notification"))
            decision = self.proxy.notification_click(
                notification,
                action=message.get("action"),
                open_sessions=message.get("sessions", []),
            )
            if decision is None:
                self._send_json(200, {"ok": True, "action": "dismiss"})
            else:
                self._send_json(200, {"ok": True, "action": decision.action, "url": decision.url,
                                      "session": decision.session})
        else:
            self._send_json(404, {"ok": False, "error": f"unknown endpoint: {command}"})

    def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
        self._send(ProxyResponse(
            status=status,
            headers={"Content-Type": "application/json"},
            body=json.dumps(payload).encode("utf-8"),
        ))

    def _send(self, response: ProxyResponse) -> None:
        self.send_response(response.status, response.reason or None)
        for key, value in response.headers.items():
            if key.lower() in SKIP_RESPONSE_HEADERS:
                continue
            self.send_header(key, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(response.body)

    def log_message(self, format, *args):
        logger.debug(f"{self.command} {self.path} -> {args[1] if len(args) > 1 else ''}")


def make_server(proxy: OfflineProxy, host: str, port: int) -> ThreadingHTTPServer:
    handler = type("BoundProxyHandler", (ProxyHandler,), {"proxy": proxy})
    server = ThreadingHTTPServer((host, port), handler)
    server.daemon_threads = True
    return server


def start_sweeper(proxy: OfflineProxy, interval: float, stop: threading.Event) -> threading.Thread:
    """Periodically drop expired entries from every partition."""
    def _loop() -> None:
        while not stop.wait(interval):
            try:
                proxy.store.sweep_expired()
            except Exception as e:  # noqa: BLE001
                logger.error("Expired-entry sweep failed: %s", e)

    thread = threading.Thread(target=_loop, name="cache-sweeper", daemon=True)
    thread.start()
    return thread


def main(argv=None) -> int:
    logging.basicConfig(
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        level=logging.INFO,
    )
    argv = sys.argv[1:] if argv is None else argv
    config = load_config(argv[0]) if argv else load_config()

    proxy = OfflineProxy(config)
    report = proxy.start()
    if not report.ok:
        logger.warning("App shell pre-warm incomplete: %s", ", ".join(report.failed))

    stop = threading.Event()
    proxy.monitor.start(interval=config.probe_interval_sec)
    start_sweeper(proxy, config.sweep_interval_sec, stop)

    server = make_server(proxy, config.listen_host, config.listen_port)
    logger.info("=" * 60)
    logger.info("Offline proxy listening on http://%s:%d", config.listen_host, config.listen_port)
    logger.info("Origin: %s (generation %s)", config.origin, config.generation)
    logger.info("=" * 60)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        stop.set()
        server.server_close()
        proxy.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
