"""A minimal HTTP client for the MISP REST API."""

from __future__ import annotations

import http.client
import json
import ssl
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlsplit, urlunsplit
from urllib.request import HTTPSHandler, ProxyHandler, Request, build_opener

JSON_CONTENT_TYPE = "application/json"


class MispError(Exception):
    """A request to MISP failed.

    ``status`` is the HTTP status code when a response was received and
    ``body`` holds the bytes of that response.
    """

    def __init__(self, message: str, status: int | None = None, body: bytes = b"") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


def _describe_failure(status: int, reason: str, body: bytes) -> str:
    """Build the error message for a response whose status is not 200."""
    status_text = f"{status} {reason}".strip()
    try:
        payload: Any = json.loads(body)
    except ValueError:
        payload = None

    if isinstance(payload, list):
        return f"message from MISP: '{status_text}: err - {payload}'"
    if isinstance(payload, str):
        return f"message from MISP: '{status_text}: err - {payload}'"
    details = payload if isinstance(payload, dict) else {}
    return f"message from MISP: '{status_text}: msg - {details}"


class MispClient:
    """Sends authorised JSON requests to a MISP host."""

    def __init__(self, host: str, auth_key: str, verify: bool = False) -> None:
        base = urlsplit("http://" + host)
        base.port  # raises ValueError on a malformed port
        self.host = host
        self.auth_key = auth_key
        self.verify = verify
        self._scheme = base.scheme
        self._netloc = base.netloc

        context = ssl.create_default_context()
        if not verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        self._opener = build_opener(ProxyHandler({}), HTTPSHandler(context=context))

    def request(self, method: str, path: str, data: bytes | None = None) -> bytes:
        """Send a request and return the body of a 200 response.

        A body is sent only with non-empty POST data. Any other status, or
        a failure to reach the host, raises :class:`MispError`.
        """
        url = urlunsplit((self._scheme, self._netloc, path, "", ""))
        body = data if method == "POST" and data else None
        req = Request(
            url,
            data=body,
            method=method,
            headers={
                "Authorization": self.auth_key,
                "Content-type": JSON_CONTENT_TYPE,
                "Accept": JSON_CONTENT_TYPE,
            },
        )

        try:
            with self._opener.open(req) as response:
                status, reason, content = response.status, response.reason, response.read()
        except HTTPError as exc:
            status, reason = exc.code, str(exc.reason)
            try:
                content = exc.read()
            finally:
                exc.close()
        except (URLError, http.client.HTTPException, OSError) as exc:
            raise MispError(f"'{exc}'") from exc

        if status != 200:
            raise MispError(_describe_failure(status, reason, content), status, content)
        return content

    def get(self, path: str, data: bytes | None = None) -> bytes:
        """Send a GET request; ``data`` is not transmitted."""
        return self.request("GET", path, data)

    def post(self, path: str, data: bytes | None = None) -> bytes:
        """Send a POST request carrying ``data``."""
        return self.request("POST", path, data)

    def delete(self, path: str) -> bytes:
        """Send a DELETE request."""
        return self.request("DELETE", path, b"")