"""MISP users and organisations kept in memory."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Protocol

from phmisp.misp_client import MispError


class _Getter(Protocol):
    def get(self, path: str, data: bytes | None = None) -> bytes: ...


@dataclass
class UserSettings:
    """Settings of a MISP user."""

    user_id: str = ""
    org_id: str = ""
    email: str = ""
    auth_key: str = ""
    org_name: str = ""
    role: str = ""


@dataclass
class OrganisationOptions:
    """Id and name of a MISP organisation."""

    id: str = ""
    name: str = ""


class AuthorizationStorage:
    """Thread-safe store of MISP users and organisations."""

    def __init__(self) -> None:
        self._users: list[UserSettings] = []
        self._organisations: dict[str, OrganisationOptions] = {}
        self._lock = threading.Lock()

    def set_user_settings(self, settings: UserSettings) -> bool:
        """Add a user unless one with the same id or e-mail is stored."""
        with self._lock:
            for user in self._users:
                if user.user_id == settings.user_id or user.email == settings.email:
                    return False
            self._users.append(settings)
            return True

    def get_user_settings_by_email(self, email: str) -> UserSettings | None:
        """Return a copy of the user with ``email``, or ``None``."""
        with self._lock:
            for user in self._users:
                if user.email == email:
                    return replace(user)
        return None

    def all_users(self) -> list[UserSettings]:
        with self._lock:
            return list(self._users)

    def clean_users(self) -> None:
        """Forget all users."""
        with self._lock:
            self._users = []

    def set_organisation_options(self, key: str, org_id: str, name: str) -> None:
        """Store an organisation under the source name ``key``."""
        with self._lock:
            self._organisations[key] = OrganisationOptions(id=org_id, name=name)

    def get_organisation_options(self, key: str) -> OrganisationOptions | None:
        """Return the organisation stored under ``key``, or ``None``."""
        with self._lock:
            found = self._organisations.get(key)
            return None if found is None else replace(found)

    def all_organisations(self) -> dict[str, OrganisationOptions]:
        with self._lock:
            return dict(self._organisations)


def _lookup(mapping: Mapping[str, Any], key: str) -> Any:
    wanted = key.lower()
    for name, value in mapping.items():
        if name == key:
            return value
    for name, value in mapping.items():
        if str(name).lower() == wanted:
            return value
    return None


def _text(value: Any, what: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MispError(f"cannot decode '{what}': expected a string, got {value!r}")
    return value


def _parse_organisations(body: bytes) -> list[OrganisationOptions]:
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise MispError(f"'{exc}'") from exc
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise MispError("cannot decode the list of organisations: expected an array")

    result = []
    for item in payload:
        if item is None:
            result.append(OrganisationOptions())
            continue
        if not isinstance(item, Mapping):
            raise MispError("cannot decode an organisation: expected an object")
        org = _lookup(item, "Organisation") or {}
        if not isinstance(org, Mapping):
            raise MispError("cannot decode 'Organisation': expected an object")
        result.append(
            OrganisationOptions(
                id=_text(_lookup(org, "id"), "id"),
                name=_text(_lookup(org, "name"), "name"),
            )
        )
    return result


class MispAuthorization:
    """Loads organisations from MISP and keeps user data in a storage."""

    def __init__(self, client: _Getter, storage: AuthorizationStorage | None = None) -> None:
        self.client = client
        self.storage = storage if storage is not None else AuthorizationStorage()

    def load_organisations(self, config_orgs: Iterable[tuple[str, str]]) -> None:
        """Fetch MISP organisations and store those named in the configuration.

        ``config_orgs`` holds ``(org_name, source_name)`` pairs; each MISP
        organisation whose name equals ``org_name`` is stored under
        ``source_name``.
        """
        body = self.client.get("/organisations", None)
        configured = list(config_orgs)
        for org in _parse_organisations(body):
            for org_name, source_name in configured:
                if org.name == org_name:
                    self.storage.set_organisation_options(source_name, org.id, org.name)

    def delete_user_data(self, email: str) -> int | None:
        """Remove the user with ``email`` and return its former position.

        When no such user is stored, the stored users are all dropped and
        ``None`` is returned.
        """
        storage = self.storage
        with storage._lock:
            for index, user in enumerate(storage._users):
                if user.email == email:
                    del storage._users[index]
                    return index
            storage._users = []
            return None