"""Sending values to a Zabbix server with the sender protocol."""

from __future__ import annotations

import json
import queue
import socket
import struct
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Iterable, Sequence

HEADER = b"ZBXD\x01"
DEFAULT_CONNECTION_TIMEOUT = 5.0

_STOP = object()


@dataclass
class ZabbixConnectionSettings:
    """Where and how to reach the Zabbix server.

    ``connection_timeout`` is in seconds; ``None`` means the default.
    """

    port: int
    host: str
    zabbix_host: str
    net_proto: str = "tcp"
    connection_timeout: float | None = None


@dataclass
class Handshake:
    """A message repeated every ``time_interval`` minutes."""

    time_interval: int = 0
    message: str = ""


@dataclass
class EventType:
    """How messages of one event type are forwarded to Zabbix."""

    is_transmit: bool
    event_type: str
    zabbix_key: str
    handshake: Handshake = field(default_factory=Handshake)


@dataclass
class MessageSettings:
    """A message to forward, tagged with its event type."""

    message: str
    event_type: str


def _go_style_json(obj: object) -> bytes:
    text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    text = (
        text.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )
    return text.encode("utf-8")


def build_packet(zabbix_host: str, key: str, values: Sequence[str]) -> bytes:
    """Build a sender-protocol packet carrying ``values`` under ``key``."""
    if not values:
        raise ValueError("the list of transmitted data should not be empty")
    payload = _go_style_json(
        {
            "request": "sender data",
            "data": [{"host": zabbix_host, "key": key, "value": value} for value in values],
        }
    )
    return HEADER + struct.pack("<Q", len(payload) & 0xFFFFFFFF) + payload


class ZabbixSender:
    """Forwards messages to a Zabbix server, one worker per event type.

    Errors raised while sending from the workers are put on ``errors``.
    """

    def __init__(self, settings: ZabbixConnectionSettings) -> None:
        if not settings.host:
            raise ValueError("the value 'Host' should not be empty")
        if settings.port == 0:
            raise ValueError("the value 'Port' should not be equal '0'")
        if not settings.zabbix_host:
            raise ValueError("the value 'ZabbixHost' should not be empty")

        proto = settings.net_proto if settings.net_proto in ("tcp", "udp") else "tcp"
        timeout = (
            DEFAULT_CONNECTION_TIMEOUT
            if settings.connection_timeout is None
            else settings.connection_timeout
        )
        self.settings = replace(settings, net_proto=proto, connection_timeout=timeout)
        self.errors: queue.Queue[Exception] = queue.Queue()
        self._stopped = threading.Event()
        self._queues: dict[str, queue.Queue] = {}
        self._workers: list[threading.Thread] = []

    def send_data(self, key: str, values: Sequence[str]) -> int:
        """Send ``values`` under ``key``; return the number of bytes written."""
        packet = build_packet(self.settings.zabbix_host, key, values)
        address = (self.settings.host, self.settings.port)
        timeout = self.settings.connection_timeout

        if self.settings.net_proto == "udp":
            family, kind, proto, _, sockaddr = socket.getaddrinfo(
                *address, type=socket.SOCK_DGRAM
            )[0]
            with socket.socket(family, kind, proto) as sock:
                sock.settimeout(timeout)
                sock.connect(sockaddr)
                return sock.send(packet)

        with socket.create_connection(address, timeout=timeout) as sock:
            sock.sendall(packet)
            while sock.recv(4096):
                pass
        return len(packet)

    def run(self, events: Sequence[EventType], messages: Iterable[MessageSettings]) -> None:
        """Start forwarding ``messages`` to Zabbix according to ``events``."""
        if not events:
            raise ValueError(
                "invalid configuration file for Zabbix, the number of event types "
                "(ZABBIX.zabbixHosts.eventTypes) is 0"
            )

        for event in events:
            if not event.is_transmit:
                continue
            inbox: queue.Queue = queue.Queue()
            self._queues[event.event_type] = inbox
            worker = threading.Thread(
                target=self._work,
                args=(inbox, event.zabbix_key, event.handshake),
                daemon=True,
            )
            self._workers.append(worker)
            worker.start()

        threading.Thread(target=self._dispatch, args=(messages,), daemon=True).start()

    def stop(self) -> None:
        """Stop all workers and wait for them to finish."""
        self._stopped.set()
        for inbox in self._queues.values():
            inbox.put(_STOP)
        for worker in self._workers:
            worker.join()
        self._queues = {}
        self._workers = []

    def _dispatch(self, messages: Iterable[MessageSettings]) -> None:
        for item in messages:
            if self._stopped.is_set():
                return
            inbox = self._queues.get(item.event_type)
            if inbox is not None:
                inbox.put(item.message)

    def _send_one(self, key: str, message: str) -> None:
        try:
            self.send_data(key, [message])
        except (OSError, ValueError) as exc:
            self.errors.put(exc)

    def _work(self, inbox: queue.Queue, key: str, handshake: Handshake) -> None:
        interval = None
        if handshake.time_interval > 0 and handshake.message:
            interval = handshake.time_interval * 60.0
        next_tick = time.monotonic() + interval if interval else 0.0

        while True:
            if interval is None:
                item = inbox.get()
            else:
                try:
                    item = inbox.get(timeout=max(0.0, next_tick - time.monotonic()))
                except queue.Empty:
                    self._send_one(key, handshake.message)
                    next_tick += interval
                    continue
            if item is _STOP:
                return
            self._send_one(key, item)