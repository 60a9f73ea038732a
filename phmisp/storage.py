"""In-memory temporary storage for cases, TheHive messages and counters."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

CASE_LIFETIME_SECONDS = 54000
DEFAULT_CLEAN_INTERVAL = 5.0


@dataclass
class DataCounter:
    """A snapshot of the event counters."""

    accepted_events: int = 0
    processed_events: int = 0
    events_do_not_meet_rules: int = 0
    events_meet_rules: int = 0
    start_time: datetime | None = None


@dataclass
class SettingsInputCase:
    """A case kept for a while after it was received."""

    event_id: str = ""
    time_create: int = 0


@dataclass
class UserSettingsMisp:
    """Settings of a MISP user."""

    user_id: str = ""
    org_id: str = ""
    email: str = ""
    auth_key: str = ""
    org_name: str = ""
    role: str = ""


@dataclass
class HiveMessage:
    """A message received from TheHive and its processing state."""

    raw_message: bytes = b""
    processed_message: dict[str, Any] = field(default_factory=dict)
    allowed_transfer: bool = False
    is_processed_misp: bool = False
    is_processed_elasticsearch: bool = False
    is_processed_nkcki: bool = False

    @property
    def fully_processed(self) -> bool:
        return (
            self.is_processed_misp
            and self.is_processed_elasticsearch
            and self.is_processed_nkcki
        )


class HiveFormatMessages:
    """Messages from TheHive keyed by their UUID."""

    def __init__(self) -> None:
        self.storages: dict[str, HiveMessage] = {}
        self.lock = threading.RLock()

    def __len__(self) -> int:
        return len(self.storages)

    def delete(self, uuid: str) -> None:
        """Remove the message ``uuid`` if present."""
        with self.lock:
            self.storages.pop(uuid, None)


class TemporaryInputCases:
    """Incoming cases keyed by their numeric id."""

    def __init__(self) -> None:
        self.cases: dict[int, SettingsInputCase] = {}
        self.lock = threading.RLock()

    def __len__(self) -> int:
        return len(self.cases)

    def delete(self, case_id: int) -> None:
        """Remove the case ``case_id`` if present."""
        with self.lock:
            self.cases.pop(case_id, None)


class TemporaryStorage:
    """Temporary storage shared by the parts of the application."""

    def __init__(self) -> None:
        self.temporary_cases = TemporaryInputCases()
        self.hive_messages = HiveFormatMessages()
        self.user_settings: list[UserSettingsMisp] = []
        self._counter = DataCounter()
        self._counter_lock = threading.Lock()

    # counters

    def data_counter(self) -> DataCounter:
        """Return a copy of the current counters."""
        with self._counter_lock:
            return replace(self._counter)

    def set_start_time(self, moment: datetime) -> None:
        with self._counter_lock:
            self._counter.start_time = moment

    def add_accepted_events(self, num: int) -> None:
        with self._counter_lock:
            self._counter.accepted_events += num

    def add_processed_events(self, num: int) -> None:
        with self._counter_lock:
            self._counter.processed_events += num

    def add_events_meet_rules(self, num: int) -> None:
        with self._counter_lock:
            self._counter.events_meet_rules += num

    def add_events_do_not_meet_rules(self, num: int) -> None:
        with self._counter_lock:
            self._counter.events_do_not_meet_rules += num

    # temporary cases

    def get_temporary_case(self, case_id: int) -> SettingsInputCase | None:
        """Return the stored case, or ``None`` when there is none."""
        with self.temporary_cases.lock:
            return self.temporary_cases.cases.get(case_id)

    def set_temporary_case(self, case_id: int, case: SettingsInputCase) -> None:
        """Store ``case``, stamping it with the current time."""
        stamped = replace(case, time_create=int(time.time()))
        with self.temporary_cases.lock:
            self.temporary_cases.cases[case_id] = stamped

    def list_temporary_cases(self) -> dict[int, SettingsInputCase]:
        with self.temporary_cases.lock:
            return dict(self.temporary_cases.cases)

    # messages from TheHive

    def count_hive_messages(self) -> int:
        return len(self.hive_messages)

    def _entry(self, uuid: str) -> HiveMessage:
        return self.hive_messages.storages.setdefault(uuid, HiveMessage())

    def set_raw_data(self, uuid: str, data: bytes) -> None:
        with self.hive_messages.lock:
            self._entry(uuid).raw_message = data

    def get_raw_data(self, uuid: str) -> bytes | None:
        """Return the raw message, or ``None`` when ``uuid`` is unknown."""
        with self.hive_messages.lock:
            entry = self.hive_messages.storages.get(uuid)
            return None if entry is None else entry.raw_message

    def set_processed_data(self, uuid: str, data: dict[str, Any]) -> None:
        with self.hive_messages.lock:
            self._entry(uuid).processed_message = data

    def get_processed_data(self, uuid: str) -> dict[str, Any] | None:
        """Return the decoded message, or ``None`` when ``uuid`` is unknown."""
        with self.hive_messages.lock:
            entry = self.hive_messages.storages.get(uuid)
            return None if entry is None else entry.processed_message

    def set_allowed_transfer(self, uuid: str, allowed: bool) -> None:
        with self.hive_messages.lock:
            self._entry(uuid).allowed_transfer = allowed

    def get_allowed_transfer(self, uuid: str) -> bool | None:
        """Return whether the message may pass, or ``None`` when unknown."""
        with self.hive_messages.lock:
            entry = self.hive_messages.storages.get(uuid)
            return None if entry is None else entry.allowed_transfer

    def _mark(self, uuid: str, attribute: str) -> bool:
        with self.hive_messages.lock:
            entry = self.hive_messages.storages.get(uuid)
            if entry is None:
                return False
            setattr(entry, attribute, True)
            return True

    def mark_processed_misp(self, uuid: str) -> bool:
        """Mark the message as handled by MISP; ``False`` when unknown."""
        return self._mark(uuid, "is_processed_misp")

    def mark_processed_elasticsearch(self, uuid: str) -> bool:
        """Mark the message as handled by Elasticsearch; ``False`` when unknown."""
        return self._mark(uuid, "is_processed_elasticsearch")

    def mark_processed_nkcki(self, uuid: str) -> bool:
        """Mark the message as handled by NKCKI; ``False`` when unknown."""
        return self._mark(uuid, "is_processed_nkcki")

    # user settings

    def add_user_settings(self, settings: UserSettingsMisp) -> None:
        self.user_settings.append(settings)

    def get_user_settings(self, email: str) -> UserSettingsMisp | None:
        """Return the settings of the first user with ``email``, if any."""
        return next((s for s in self.user_settings if s.email == email), None)

    # expiry

    def cleanup(self, now: float | None = None) -> None:
        """Drop fully processed messages and cases that have expired."""
        moment = int(time.time() if now is None else now)
        with self.hive_messages.lock:
            done = [k for k, v in self.hive_messages.storages.items() if v.fully_processed]
            for key in done:
                del self.hive_messages.storages[key]
        with self.temporary_cases.lock:
            expired = [
                k
                for k, v in self.temporary_cases.cases.items()
                if moment > v.time_create + CASE_LIFETIME_SECONDS
            ]
            for key in expired:
                del self.temporary_cases.cases[key]

    def start_cleaner(self, interval: float = DEFAULT_CLEAN_INTERVAL) -> threading.Event:
        """Run :meth:`cleanup` every ``interval`` seconds in the background.

        Setting the returned event stops the cleaner.
        """
        stop = threading.Event()

        def loop() -> None:
            while not stop.wait(interval):
                self.cleanup()

        threading.Thread(target=loop, daemon=True).start()
        return stop


_instance: TemporaryStorage | None = None
_instance_lock = threading.Lock()


def new_temporary_storage() -> TemporaryStorage:
    """Return the shared storage, creating it and its cleaner on first use."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = TemporaryStorage()
            _instance.start_cleaner()
        return _instance