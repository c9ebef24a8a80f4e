"""
Key-value backend on Redis.

Layout (every key under ``<prefix>:``):

* ``users:<id>`` JSON user, ``users:by_email`` hash email -> id (unique),
  ``users:ids`` sorted set of user ids by creation time.
* ``data_items:<id>`` JSON item, ``data_items:by_user:<user_id>`` sorted set of
  item ids scored by ``created_at``.

Each mutation is one MULTI/EXEC transaction; read-modify-write paths WATCH the
item key and are retried by redis-py on conflict.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Callable, List, Mapping, Optional

import redis
from redis import exceptions as redis_exceptions

from itembase.errors import BackendUnavailable, InternalError, NotFound, Unauthorized
from itembase.models import (
    SEED_EMAIL,
    SEED_PASSWORD,
    SEED_USER_ID,
    BackendKind,
    DataItemRecord,
    SessionRecord,
    SessionUser,
    UserRecord,
    clean_patch,
    seed_item_payloads,
    utcnow,
    validate_new_item,
)
from itembase.sessions import TokenCodec

logger = logging.getLogger(__name__)


def _text(value: Any) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisDbClient:
    """Redis-backed storage with secondary indexes kept in hashes and sorted sets."""

    kind = BackendKind.KV

    def __init__(
        self,
        url: str | None = None,
        *,
        client: redis.Redis | None = None,
        key_prefix: str = "itembase",
    ):
        if client is None:
            if not url:
                raise ValueError("REDIS_URL is required for RedisDbClient")
            client = redis.Redis.from_url(url)
        self.client = client
        self.key_prefix = key_prefix
        self._connected = False

    def _key(self, *parts: str) -> str:
        return ":".join((self.key_prefix, *parts))

    def _user_key(self, user_id: str) -> str:
        return self._key("users", user_id)

    def _item_key(self, item_id: str) -> str:
        return self._key("data_items", item_id)

    def _user_items_key(self, user_id: str) -> str:
        return self._key("data_items", "by_user", user_id)

    @property
    def _email_index(self) -> str:
        return self._key("users", "by_email")

    @property
    def _user_ids(self) -> str:
        return self._key("users", "ids")

    async def _run(self, func: Callable, *args):
        if not self._connected:
            raise BackendUnavailable("Key-value backend is not connected")
        try:
            return await asyncio.to_thread(func, *args)
        except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as e:
            raise BackendUnavailable(str(e)) from e
        except redis_exceptions.RedisError as e:
            logger.exception("Key-value backend error")
            raise InternalError() from e

    def _load_user(self, user_id: Optional[str]) -> Optional[UserRecord]:
        if not user_id:
            return None
        raw = _text(self.client.get(self._user_key(user_id)))
        return UserRecord.from_dict(json.loads(raw)) if raw else None

    def _queue_item_write(self, pipe, record: DataItemRecord) -> None:
        pipe.set(self._item_key(record.id), json.dumps(record.as_dict()))
        pipe.zadd(self._user_items_key(record.user_id), {record.id: record.created_at.timestamp()})

    def _seed_sync(self) -> None:
        user = UserRecord(id=SEED_USER_ID, email=SEED_EMAIL, password=SEED_PASSWORD)
        now = utcnow()
        items = [
            DataItemRecord(id=str(index), created_at=now, updated_at=now, **payload)
            for index, payload in enumerate(seed_item_payloads("Redis", user.id), start=1)
        ]

        def seed(pipe) -> bool:
            if pipe.hlen(self._email_index):
                return False
            pipe.multi()
            pipe.set(self._user_key(user.id), json.dumps(user.as_dict()))
            pipe.hsetnx(self._email_index, user.email, user.id)
            pipe.zadd(self._user_ids, {user.id: user.created_at.timestamp()})
            for item in items:
                self._queue_item_write(pipe, item)
            return True

        if self.client.transaction(seed, self._email_index, value_from_callable=True):
            logger.info("Seeded key-value store with test user and sample items")

    async def connect(self) -> bool:
        try:
            await asyncio.to_thread(self.client.ping)
            await asyncio.to_thread(self._seed_sync)
        except (redis_exceptions.RedisError, OSError) as e:
            logger.warning("Failed to connect to key-value store: %s", e)
            self._connected = False
            return False
        self._connected = True
        return True

    def _sign_in_sync(self, email: str, password: str) -> SessionRecord:
        user = self._load_user(_text(self.client.hget(self._email_index, email)))
        if user is None or user.password != password:
            raise Unauthorized("Invalid email or password")
        return SessionRecord(
            access_token=TokenCodec.encode(self.kind, user.id),
            user=SessionUser(id=user.id, email=user.email),
        )

    async def sign_in_with_password(self, email: str, password: str) -> SessionRecord:
        return await self._run(self._sign_in_sync, email, password)

    async def sign_out(self, token: Optional[str] = None) -> None:
        return None

    def _get_session_sync(self, token: Optional[str]) -> Optional[SessionRecord]:
        if token is None:
            first = self.client.zrange(self._user_ids, 0, 0)
            user_id = _text(first[0]) if first else None
        else:
            user_id = TokenCodec.ident_for(self.kind, token)
        user = self._load_user(user_id)
        if user is None:
            return None
        return SessionRecord(
            access_token=TokenCodec.encode(self.kind, user.id),
            user=SessionUser(id=user.id, email=user.email),
        )

    async def get_session(self, token: Optional[str] = None) -> Optional[SessionRecord]:
        return await self._run(self._get_session_sync, token)

    def _fetch_data_sync(self, user_id: str) -> List[DataItemRecord]:
        ids = [_text(i) for i in self.client.zrevrange(self._user_items_key(user_id), 0, -1)]
        if not ids:
            return []
        raws = self.client.mget([self._item_key(i) for i in ids])
        return [DataItemRecord.from_dict(json.loads(_text(raw))) for raw in raws if raw]

    async def fetch_data(self, user_id: str) -> List[DataItemRecord]:
        return await self._run(self._fetch_data_sync, user_id)

    def _get_item_sync(self, item_id: str) -> DataItemRecord:
        raw = _text(self.client.get(self._item_key(item_id)))
        if raw is None:
            raise NotFound("Item not found")
        return DataItemRecord.from_dict(json.loads(raw))

    async def get_item(self, item_id: str) -> DataItemRecord:
        return await self._run(self._get_item_sync, item_id)

    def _create_item_sync(self, fields: dict) -> DataItemRecord:
        now = utcnow()
        record = DataItemRecord(id=uuid.uuid4().hex, created_at=now, updated_at=now, **fields)
        with self.client.pipeline(transaction=True) as pipe:
            self._queue_item_write(pipe, record)
            pipe.execute()
        return record

    async def create_item(self, payload: Mapping[str, Any]) -> DataItemRecord:
        return await self._run(self._create_item_sync, validate_new_item(payload))

    def _update_item_sync(self, item_id: str, changes: dict) -> DataItemRecord:
        key = self._item_key(item_id)

        def apply(pipe) -> DataItemRecord:
            raw = _text(pipe.get(key))
            if raw is None:
                raise NotFound("Item not found")
            record = DataItemRecord.from_dict(json.loads(raw)).merged(changes)
            pipe.multi()
            pipe.set(key, json.dumps(record.as_dict()))
            return record

        return self.client.transaction(apply, key, value_from_callable=True)

    async def update_item(self, item_id: str, patch: Mapping[str, Any]) -> DataItemRecord:
        return await self._run(self._update_item_sync, item_id, clean_patch(patch))

    def _delete_item_sync(self, item_id: str) -> DataItemRecord:
        key = self._item_key(item_id)

        def remove(pipe) -> DataItemRecord:
            raw = _text(pipe.get(key))
            if raw is None:
                raise NotFound("Item not found")
            record = DataItemRecord.from_dict(json.loads(raw))
            pipe.multi()
            pipe.delete(key)
            pipe.zrem(self._user_items_key(record.user_id), record.id)
            return record

        return self.client.transaction(remove, key, value_from_callable=True)

    async def delete_item(self, item_id: str) -> DataItemRecord:
        return await self._run(self._delete_item_sync, item_id)

    async def health_check(self) -> bool:
        try:
            return bool(await asyncio.to_thread(self.client.ping))
        except (redis_exceptions.RedisError, OSError):
            return False

    def _reset_sync(self) -> None:
        keys = list(self.client.scan_iter(match=f"{self.key_prefix}:*"))
        if keys:
            self.client.delete(*keys)
        self._seed_sync()

    async def reset(self) -> None:
        """Drop every key under the prefix and seed again."""
        await self._run(self._reset_sync)

    async def close(self) -> None:
        self._connected = False
        await asyncio.to_thread(self.client.close)
