"""
HTTP transport to a remote instance of the same API.

Operations are dispatched through an explicit (method, path template) table.
Anything that goes wrong in transit surfaces as ``TransportError`` so the data
service can answer from the local backend instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from itembase.errors import ERRORS_BY_STATUS, TransportError

logger = logging.getLogger(__name__)

ROUTES: dict[str, tuple[str, str]] = {
    "health": ("GET", "/health"),
    "login": ("POST", "/auth/login"),
    "logout": ("POST", "/auth/logout"),
    "session": ("GET", "/auth/session"),
    "fetch_data": ("GET", "/data"),
    "create_item": ("POST", "/data"),
    "update_item": ("PUT", "/data/{item_id}"),
    "delete_item": ("DELETE", "/data/{item_id}"),
}


class RemoteTransport:
    """
    Calls ``<base_url><path>`` with requests; blocking I/O runs in a worker
    thread.

    Returns the ``data`` member of a 2xx body. A 4xx body carrying ``error``
    is re-raised as the matching domain error (400, 401, 404).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def url_for(self, operation: str, **path_params: str) -> tuple[str, str]:
        method, template = ROUTES[operation]
        params = {key: quote(str(value), safe="") for key, value in path_params.items()}
        return method, f"{self.base_url}{template.format(**params)}"

    def _call_sync(
        self,
        operation: str,
        token: Optional[str],
        body: Optional[dict],
        path_params: dict,
    ) -> Any:
        method, url = self.url_for(operation, **path_params)
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self.session.request(
                method, url, json=body, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"{method} {url} returned a malformed body") from e
        if not isinstance(payload, dict):
            raise TransportError(f"{method} {url} returned a malformed body")

        status = response.status_code
        if status >= 500:
            raise TransportError(f"{method} {url} answered {status}")
        if status >= 400:
            error_cls = ERRORS_BY_STATUS.get(status)
            message = payload.get("error")
            if error_cls is None or not isinstance(message, str):
                raise TransportError(f"{method} {url} answered {status}")
            raise error_cls(message)

        if operation == "health":
            return payload
        if "data" not in payload:
            raise TransportError(f"{method} {url} returned a malformed body")
        return payload["data"]

    async def call(
        self,
        operation: str,
        *,
        token: Optional[str] = None,
        body: Optional[dict] = None,
        **path_params: str,
    ) -> Any:
        return await asyncio.to_thread(self._call_sync, operation, token, body, path_params)

    def close(self) -> None:
        self.session.close()
