# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import os
import sys
import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_ROOT = os.path.join(PROJECT_ROOT, "src")
for path in (PROJECT_ROOT, SRC_ROOT):
    if path not in sys.path:
        sys.path.append(path)


def json_body(payload) -> tuple:
    return 200, {"Content-Type": "application/json"}, json.dumps(payload).encode("utf-8")


def range_route(body: bytes):
    """Route serving `body` with 206 partial responses for `Range: bytes=N-`."""

    def _serve(handler):
        rng = handler.headers.get("Range")
        if rng and rng.startswith("bytes="):
            start = int(rng[len("bytes="):].split("-", 1)[0])
            if start >= len(body):
                return 416, {}, b""
            return 206, {"Content-Range": f"bytes {start}-{len(body) - 1}/{len(body)}"}, body[start:]
        return 200, {}, body

    return _serve


class FakeHTTP:
    """Threaded local HTTP server with canned routes keyed by (method, path)."""

    def __init__(self):
        self.routes: dict = {}
        self.requests: list = []
        self._lock = threading.Lock()
        fake = self

        class _Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def log_message(self, *args):
                pass

            def _lookup(self, method):
                path = self.path
                bare = path.split("?", 1)[0]
                for key in ((method, path), (method, bare)):
                    if key in fake.routes:
                        return fake.routes[key]
                if method == "HEAD":
                    return self._lookup("GET")
                return None

            def _serve(self, method):
                length = int(self.headers.get("Content-Length") or 0)
                payload = self.rfile.read(length) if length else b""
                with fake._lock:
                    fake.requests.append((method, self.path, dict(self.headers), payload))
                route = self._lookup(method)
                if route is None:
                    status, headers, body = 404, {}, b"not found"
                elif callable(route):
                    status, headers, body = route(self)
                else:
                    status, headers, body = route
                self.send_response(status)
                for key, value in (headers or {}).items():
                    self.send_header(key, value)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                if method != "HEAD":
                    self.wfile.write(body)

            def do_GET(self):
                self._serve("GET")

            def do_HEAD(self):
                self._serve("HEAD")

            def do_POST(self):
                self._serve("POST")

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
        self.server.daemon_threads = True
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    @property
    def url(self) -> str:
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}"

    def route(self, path: str, response, method: str = "GET") -> None:
        self.routes[(method, path)] = response

    def requested(self, method: str, prefix: str) -> list:
        with self._lock:
            return [r for r in self.requests if r[0] == method and (r[1] == prefix or r[1].startswith(prefix) and r[1][len(prefix)] in "?&")]

    def start(self) -> "FakeHTTP":
        self.thread.start()
        return self

    def close(self) -> None:
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def http_server():
    server = FakeHTTP().start()
    try:
        yield server
    finally:
        server.close()
