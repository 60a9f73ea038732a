import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from phmisp.misp_client import MispClient, MispError


class _Handler(BaseHTTPRequestHandler):
    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        self.server.seen.append(
            {
                "method": self.command,
                "path": self.path,
                "headers": dict(self.headers),
                "body": body,
            }
        )
        status, payload = self.server.reply
        self.send_response(status)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    do_GET = _handle
    do_POST = _handle
    do_DELETE = _handle

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    srv.seen = []
    srv.reply = (200, b'{"ok": true}')
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


def _client(srv):
    return MispClient(f"127.0.0.1:{srv.server_address[1]}", "placeholder", False)


def test_get_returns_body_and_sends_headers(server):
    body = _client(server).get("/admin/users", b"ignored")
    assert json.loads(body) == {"ok": True}
    seen = server.seen[0]
    assert seen["method"] == "GET"
    assert seen["path"] == "/admin/users"
    assert seen["body"] == b""
    assert seen["headers"]["Authorization"] == "placeholder"
    assert seen["headers"]["Content-type"] == "application/json"
    assert seen["headers"]["Accept"] == "application/json"


def test_post_sends_payload(server):
    payload = json.dumps({"email": "user@example.com"}).encode()
    _client(server).post("/admin/users/add", payload)
    seen = server.seen[0]
    assert seen["method"] == "POST"
    assert seen["path"] == "/admin/users/add"
    assert seen["body"] == payload


def test_delete_uses_method(server):
    _client(server).delete("/events/delete/7418")
    assert server.seen[0]["method"] == "DELETE"
    assert server.seen[0]["path"] == "/events/delete/7418"


def test_non_ok_status_raises_with_body(server):
    server.reply = (404, b'{"name": "Not found"}')
    with pytest.raises(MispError) as info:
        _client(server).get("/organisations")
    assert info.value.status == 404
    assert info.value.body == b'{"name": "Not found"}'
    assert "message from MISP" in str(info.value)


def test_non_ok_status_with_list_body(server):
    server.reply = (403, b'["denied"]')
    with pytest.raises(MispError) as info:
        _client(server).post("/events/add", b"{}")
    assert info.value.status == 403
    assert "err - ['denied']" in str(info.value)


def test_unreachable_host_raises():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    client = MispClient(f"127.0.0.1:{port}", "placeholder", False)
    with pytest.raises(MispError) as info:
        client.get("/organisations")
    assert info.value.status is None


def test_bad_port_rejected():
    with pytest.raises(ValueError):
        MispClient("127.0.0.1:notaport", "placeholder", False)