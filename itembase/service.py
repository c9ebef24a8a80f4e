"""
Data service: the single entry point the HTTP layer (or any other caller)
uses for authentication and item management.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, TypeVar

from itembase.db import DbClient
from itembase.errors import BackendUnavailable, InternalError, NotFound, TransportError, ValidationError
from itembase.models import DataItemRecord, SessionRecord, to_iso, utcnow
from itembase.selector import BackendSelector
from itembase.sessions import SessionManager
from itembase.transport import RemoteTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NO_ANSWER = object()

LOGOUT_MESSAGE = "Logged out successfully"
DELETE_MESSAGE = "Item deleted successfully"

# Keys a client may not set on create; the backend assigns them.
_SERVER_ASSIGNED = ("id", "user_id", "created_at", "updated_at")


def _parse_session(data: Any) -> Optional[SessionRecord]:
    session = data["session"]
    return SessionRecord.from_dict(session) if session else None


def _parse_items(data: Any) -> List[DataItemRecord]:
    if not isinstance(data, list):
        raise TypeError("expected a list of items")
    return [DataItemRecord.from_dict(item) for item in data]


class DataService:
    """
    Delegates every operation to the backend the selector designates.

    When a ``transport`` is configured the remote API is asked first and the
    local backend answers only if the remote call fails in transit. A backend
    that reports itself unavailable is replaced through ``selector.degrade``
    and the operation is retried exactly once.
    """

    def __init__(
        self,
        selector: BackendSelector,
        *,
        sessions: SessionManager | None = None,
        transport: RemoteTransport | None = None,
        environment: str = "development",
    ):
        self.selector = selector
        self.sessions = sessions or SessionManager(lambda: selector.active)
        self.transport = transport
        self.environment = environment

    async def _remote(self, operation: str, parse: Callable[[Any], Any], **kwargs) -> Any:
        """Remote answer parsed by ``parse``, or ``_NO_ANSWER`` on transport failure."""
        if self.transport is None:
            return _NO_ANSWER
        try:
            data = await self.transport.call(operation, **kwargs)
            return parse(data)
        except (TransportError, KeyError, TypeError, ValueError) as e:
            logger.warning("Remote %s failed, answering from local backend: %s", operation, e)
            return _NO_ANSWER

    async def _on_backend(self, call: Callable[[DbClient], Awaitable[T]]) -> T:
        backend = self.selector.active
        try:
            return await call(backend)
        except BackendUnavailable:
            fallback = await self.selector.degrade(backend)
        try:
            return await call(fallback)
        except BackendUnavailable as e:
            logger.error("Fallback backend %s unavailable as well", fallback.kind.value)
            raise InternalError() from e

    async def login(self, email: Optional[str], password: Optional[str]) -> SessionRecord:
        if not email or not password:
            raise ValidationError("Email and password are required")
        session = await self._remote(
            "login", _parse_session, body={"email": email, "password": password}
        )
        if session is not _NO_ANSWER and session is not None:
            return session
        return await self._on_backend(lambda db: db.sign_in_with_password(email, password))

    async def logout(self, token: Optional[str]) -> str:
        answer = await self._remote("logout", lambda data: data, token=token)
        if answer is _NO_ANSWER:
            await self._on_backend(lambda db: self.sessions.end(token, db))
        return LOGOUT_MESSAGE

    async def get_session(self, token: Optional[str]) -> Optional[SessionRecord]:
        session = await self._remote("session", _parse_session, token=token)
        if session is not _NO_ANSWER:
            return session
        return await self._on_backend(lambda db: self.sessions.current(token, db))

    async def fetch_data(self, token: Optional[str]) -> List[DataItemRecord]:
        items = await self._remote("fetch_data", _parse_items, token=token)
        if items is not _NO_ANSWER:
            return items

        async def op(db: DbClient) -> List[DataItemRecord]:
            session = await self.sessions.require(token, db)
            return await db.fetch_data(session.user.id)

        return await self._on_backend(op)

    async def create_item(self, token: Optional[str], payload: Mapping[str, Any]) -> DataItemRecord:
        body = {key: value for key, value in payload.items() if key not in _SERVER_ASSIGNED}
        item = await self._remote("create_item", DataItemRecord.from_dict, token=token, body=body)
        if item is not _NO_ANSWER:
            return item

        async def op(db: DbClient) -> DataItemRecord:
            session = await self.sessions.require(token, db)
            return await db.create_item({**body, "user_id": session.user.id})

        return await self._on_backend(op)

    async def _owned_item(self, db: DbClient, token: Optional[str], item_id: str) -> DataItemRecord:
        session = await self.sessions.require(token, db)
        item = await db.get_item(item_id)
        if item.user_id != session.user.id:
            raise NotFound("Item not found")
        return item

    async def update_item(
        self, token: Optional[str], item_id: Optional[str], patch: Mapping[str, Any]
    ) -> DataItemRecord:
        if not item_id:
            raise ValidationError("Item ID is required")
        item = await self._remote(
            "update_item", DataItemRecord.from_dict, token=token, body=dict(patch), item_id=item_id
        )
        if item is not _NO_ANSWER:
            return item

        async def op(db: DbClient) -> DataItemRecord:
            await self._owned_item(db, token, item_id)
            return await db.update_item(item_id, patch)

        return await self._on_backend(op)

    async def delete_item(self, token: Optional[str], item_id: Optional[str]) -> DataItemRecord:
        if not item_id:
            raise ValidationError("Item ID is required")
        item = await self._remote(
            "delete_item", lambda data: DataItemRecord.from_dict(data["item"]), token=token, item_id=item_id
        )
        if item is not _NO_ANSWER:
            return item

        async def op(db: DbClient) -> DataItemRecord:
            await self._owned_item(db, token, item_id)
            return await db.delete_item(item_id)

        return await self._on_backend(op)

    def health(self) -> dict:
        return {
            "status": "ok",
            "timestamp": to_iso(utcnow()),
            "environment": self.environment,
        }

    async def backend_status(self) -> dict:
        return await self.selector.status()

    async def recheck_backend(self) -> dict:
        await self.selector.recheck()
        return {
            "state": self.selector.state.value,
            "active": self.selector.active_kind.value,
        }
