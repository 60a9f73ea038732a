import errno
import json
import socket
import struct
import threading
import time

import pytest

from phmisp.zabbix import (
    EventType,
    MessageSettings,
    ZabbixConnectionSettings,
    ZabbixSender,
    build_packet,
)


def _recv_exact(conn, size):
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


@pytest.fixture
def server():
    received = []
    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(0.2)
    stop = threading.Event()

    def serve():
        while not stop.is_set():
            try:
                conn, _ = listener.accept()
            except OSError:
                continue
            with conn:
                conn.settimeout(5)
                header = _recv_exact(conn, 13)
                length = struct.unpack("<Q", header[5:13])[0]
                body = _recv_exact(conn, length)
                received.append(header + body)
                conn.sendall(b'{"response":"success"}')

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield listener.getsockname()[1], received
    stop.set()
    thread.join()
    listener.close()


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _settings(port):
    return ZabbixConnectionSettings(
        port=port, host="127.0.0.1", zabbix_host="test-uchet-db.cloud.gcm"
    )


def test_build_packet_layout():
    packet = build_packet("test-uchet-db.cloud.gcm", "placeholder_misp.info", ["I'm still alive"])
    assert packet[:5] == b"ZBXD\x01"
    length = struct.unpack("<Q", packet[5:13])[0]
    assert length == len(packet) - 13
    assert json.loads(packet[13:]) == {
        "request": "sender data",
        "data": [
            {
                "host": "test-uchet-db.cloud.gcm",
                "key": "placeholder_misp.info",
                "value": "I'm still alive",
            }
        ],
    }


def test_build_packet_escapes_html_characters():
    packet = build_packet("host", "key", ["<a>"])
    assert b"\\u003ca\\u003e" in packet
    assert json.loads(packet[13:])["data"][0]["value"] == "<a>"


def test_build_packet_keeps_every_value():
    values = ["ERROR: test error message", "test message with information about app"]
    payload = json.loads(build_packet("h", "k", values)[13:])
    assert [item["value"] for item in payload["data"]] == values


def test_build_packet_rejects_empty_values():
    with pytest.raises(ValueError, match="should not be empty"):
        build_packet("host", "key", [])


@pytest.mark.parametrize(
    "settings, message",
    [
        (ZabbixConnectionSettings(port=10051, host="", zabbix_host="z"), "'Host'"),
        (ZabbixConnectionSettings(port=0, host="h", zabbix_host="z"), "'Port'"),
        (ZabbixConnectionSettings(port=10051, host="h", zabbix_host=""), "'ZabbixHost'"),
    ],
)
def test_settings_validation(settings, message):
    with pytest.raises(ValueError, match=message):
        ZabbixSender(settings)


def test_settings_defaults_applied():
    sender = ZabbixSender(
        ZabbixConnectionSettings(port=10051, host="h", zabbix_host="z", net_proto="sctp")
    )
    assert sender.settings.net_proto == "tcp"
    assert sender.settings.connection_timeout == 5.0


def test_send_data_delivers_packet(server):
    port, received = server
    sender = ZabbixSender(_settings(port))
    written = sender.send_data("placeholder_misp.error", ["ERROR: test error message"])
    expected = build_packet(
        "test-uchet-db.cloud.gcm", "placeholder_misp.error", ["ERROR: test error message"]
    )
    assert written == len(expected)
    assert _wait_for(lambda: len(received) == 1)
    assert received[0] == expected


def test_send_data_connection_refused():
    sender = ZabbixSender(_settings(_free_port()))
    with pytest.raises(OSError):
        sender.send_data("key", ["value"])


def test_run_requires_events():
    sender = ZabbixSender(_settings(10051))
    with pytest.raises(ValueError, match="is 0"):
        sender.run([], [])


def test_run_forwards_only_transmitted_types(server):
    port, received = server
    sender = ZabbixSender(_settings(port))
    events = [
        EventType(is_transmit=True, event_type="error", zabbix_key="placeholder_misp.error"),
        EventType(is_transmit=False, event_type="info", zabbix_key="placeholder_misp.info"),
    ]
    messages = [
        MessageSettings(message="test message with information about app", event_type="info"),
        MessageSettings(message="WARNING: test warning message", event_type="warning"),
        MessageSettings(message="ERROR: test error message", event_type="error"),
    ]
    sender.run(events, messages)
    assert _wait_for(lambda: len(received) >= 1)
    sender.stop()
    expected = build_packet(
        "test-uchet-db.cloud.gcm", "placeholder_misp.error", ["ERROR: test error message"]
    )
    assert received == [expected]
    assert sender.errors.empty()


def test_run_reports_send_errors():
    sender = ZabbixSender(_settings(_free_port()))
    sender.run(
        [EventType(is_transmit=True, event_type="error", zabbix_key="placeholder_misp.error")],
        [MessageSettings(message="ERROR: test error message", event_type="error")],
    )
    error = sender.errors.get(timeout=5)
    sender.stop()
    assert error.errno == errno.ECONNREFUSED