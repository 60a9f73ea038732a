"""Keeps the link between TheHive case ids and MISP event ids in Redis."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from redis.exceptions import RedisError

SEARCH_CASE_ID = "search caseId"
SET_CASE_ID = "set case id"
SET_RAW_CASE = "set raw case"
GET_NEXT_RAW_CASE = "get next raw case"

FOUND_CASE_ID = "found caseId"
FOUND_EVENT_ID = "found event id"

_log = logging.getLogger(__name__)


class _KeyValueClient(Protocol):
    def get(self, name: str) -> Any: ...

    def set(self, name: str, value: str) -> Any: ...


@dataclass(frozen=True)
class RedisResult:
    """The outcome of a command, tagged with what kind of result it is."""

    command_result: str
    result: Any


def _as_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return str(value)


class RedisHandler:
    """Runs case and event id commands against a Redis client."""

    def __init__(self, client: _KeyValueClient, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.logger = logger if logger is not None else _log

    @classmethod
    def connect(
        cls, host: str, port: int, logger: logging.Logger | None = None
    ) -> RedisHandler:
        """Create a handler connected to the Redis server at ``host:port``."""
        import redis

        handler = cls(redis.Redis(host=host, port=port), logger)
        handler.logger.info("Connect to Redis DB with address %s:%d", host, port)
        return handler

    def _get(self, key: str) -> str | None:
        try:
            value = self.client.get(key)
        except RedisError:
            return None
        return None if value is None else _as_text(value)

    def search_case_id(self, case_id: str) -> RedisResult | None:
        """Return the MISP event id stored for ``case_id``, if there is one."""
        event_id = self._get(case_id)
        if event_id is None:
            return None
        return RedisResult(FOUND_CASE_ID, event_id)

    def set_case_id(self, data: str) -> RedisResult | None:
        """Store ``data`` of the form ``caseId:eventId``.

        When the case already had an event id, that old id is returned so
        that the event it names can be deleted from MISP. Raises
        ``ValueError`` when ``data`` holds no ``:``.
        """
        self.logger.debug("adding case id and event id '%s' to Redis", data)

        parts = data.split(":")
        if len(parts) < 2:
            raise ValueError(
                f"it is not possible to split a string '{data}' to add case "
                "and event information to the Redis DB"
            )
        case_id, event_id = parts[0], parts[1]

        found = None
        old_event_id = self._get(case_id)
        if old_event_id is not None:
            self.logger.debug(
                "old value found for case id '%s', event id '%s'", case_id, old_event_id
            )
            found = RedisResult(FOUND_EVENT_ID, old_event_id)

        try:
            self.client.set(case_id, event_id)
        except RedisError as exc:
            self.logger.error("'%s'", exc)
            return found

        self.logger.debug(
            "replaced event id %s with event id %s for case id %s",
            old_event_id or "",
            event_id,
            case_id,
        )
        return found

    def process(self, command: str, data: str = "") -> list[RedisResult]:
        """Run ``command`` on ``data`` and return the results it produced."""
        if command == SEARCH_CASE_ID:
            found = self.search_case_id(data)
        elif command == SET_CASE_ID:
            try:
                found = self.set_case_id(data)
            except ValueError as exc:
                self.logger.warning("'%s'", exc)
                return []
        else:
            return []
        return [] if found is None else [found]