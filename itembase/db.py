"""
Storage backend contract with the reference (process-local) and relational
(SQLAlchemy) implementations.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import replace
from typing import Any, Callable, List, Mapping, Optional, Protocol

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    String,
    Text,
    create_engine,
    delete,
    event,
    func,
    select,
    text,
    update,
)
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from itembase.errors import BackendUnavailable, InternalError, NotFound, Unauthorized, ValidationError
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
    parse_timestamp,
    seed_item_payloads,
    utcnow,
    validate_new_item,
)
from itembase.sessions import DEFAULT_SESSION_TTL_SECONDS, TokenCodec, session_expiry
from itembase.storage import InMemorySnapshotStore, SnapshotStore

logger = logging.getLogger(__name__)


class DbClient(Protocol):
    """Interface every storage backend satisfies."""

    kind: BackendKind

    async def connect(self) -> bool:
        ...

    async def sign_in_with_password(self, email: str, password: str) -> SessionRecord:
        ...

    async def sign_out(self, token: Optional[str] = None) -> None:
        ...

    async def get_session(self, token: Optional[str] = None) -> Optional[SessionRecord]:
        ...

    async def fetch_data(self, user_id: str) -> List[DataItemRecord]:
        ...

    async def get_item(self, item_id: str) -> DataItemRecord:
        ...

    async def create_item(self, payload: Mapping[str, Any]) -> DataItemRecord:
        ...

    async def update_item(self, item_id: str, patch: Mapping[str, Any]) -> DataItemRecord:
        ...

    async def delete_item(self, item_id: str) -> DataItemRecord:
        ...

    async def health_check(self) -> bool:
        ...

    async def reset(self) -> None:
        ...

    async def close(self) -> None:
        ...


def _session_for(kind: BackendKind, user_id: str, email: str) -> SessionRecord:
    return SessionRecord(
        access_token=TokenCodec.encode(kind, user_id),
        user=SessionUser(id=user_id, email=email),
    )


LOCAL_SNAPSHOT_SLOT = "local_test_db"

# Seconds of simulated network latency per operation.
LOCAL_LATENCY = {
    "sign_in": 0.5,
    "sign_out": 0.2,
    "session": 0.1,
    "fetch": 0.3,
    "create": 0.4,
    "update": 0.4,
    "delete": 0.3,
}


class LocalDbClient:
    """
    Reference backend: plain lists persisted as one JSON snapshot after every
    mutation. It cannot become unavailable, so it is the last fallback.
    """

    kind = BackendKind.LOCAL

    def __init__(
        self,
        store: SnapshotStore | None = None,
        *,
        simulate_latency: bool = True,
        slot: str = LOCAL_SNAPSHOT_SLOT,
    ):
        self.store = store if store is not None else InMemorySnapshotStore()
        self.slot = slot
        self.simulate_latency = simulate_latency
        self.users: list[UserRecord] = []
        self.data_items: list[DataItemRecord] = []
        self._load()
        self._seed()

    def _load(self) -> None:
        try:
            data = self.store.load(self.slot)
            if not data:
                return
            self.users = [UserRecord.from_dict(u) for u in data.get("users") or []]
            self.data_items = [DataItemRecord.from_dict(i) for i in data.get("dataItems") or []]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Failed to load local snapshot %s: %s", self.slot, e)
            self.users = []
            self.data_items = []

    def _save(self) -> None:
        payload = {
            "users": [u.as_dict() for u in self.users],
            "dataItems": [i.as_dict() for i in self.data_items],
        }
        try:
            self.store.save(self.slot, payload)
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Failed to save local snapshot %s: %s", self.slot, e)

    def _seed(self) -> None:
        if self.users:
            return
        user = UserRecord(id=SEED_USER_ID, email=SEED_EMAIL, password=SEED_PASSWORD)
        self.users.append(user)
        now = utcnow()
        for index, payload in enumerate(seed_item_payloads("Local", user.id), start=1):
            self.data_items.append(
                DataItemRecord(id=str(index), created_at=now, updated_at=now, **payload)
            )
        self._save()
        logger.info("Seeded local database with test user and sample items")

    async def _pause(self, operation: str) -> None:
        if self.simulate_latency:
            await asyncio.sleep(LOCAL_LATENCY[operation])

    def _index_of(self, item_id: str) -> int:
        for index, item in enumerate(self.data_items):
            if item.id == item_id:
                return index
        raise NotFound("Item not found")

    async def connect(self) -> bool:
        return True

    async def sign_in_with_password(self, email: str, password: str) -> SessionRecord:
        await self._pause("sign_in")
        for user in self.users:
            if user.email == email and user.password == password:
                return _session_for(self.kind, user.id, user.email)
        raise Unauthorized("Invalid email or password")

    async def sign_out(self, token: Optional[str] = None) -> None:
        await self._pause("sign_out")

    async def get_session(self, token: Optional[str] = None) -> Optional[SessionRecord]:
        await self._pause("session")
        if token is None:
            user = self.users[0] if self.users else None
        else:
            user_id = TokenCodec.ident_for(self.kind, token)
            user = next((u for u in self.users if u.id == user_id), None)
        if user is None:
            return None
        return _session_for(self.kind, user.id, user.email)

    async def fetch_data(self, user_id: str) -> List[DataItemRecord]:
        await self._pause("fetch")
        items = [replace(item) for item in self.data_items if item.user_id == user_id]
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items

    async def get_item(self, item_id: str) -> DataItemRecord:
        return replace(self.data_items[self._index_of(item_id)])

    async def create_item(self, payload: Mapping[str, Any]) -> DataItemRecord:
        fields = validate_new_item(payload)
        await self._pause("create")
        now = utcnow()
        record = DataItemRecord(id=uuid.uuid4().hex, created_at=now, updated_at=now, **fields)
        self.data_items.append(record)
        self._save()
        return replace(record)

    async def update_item(self, item_id: str, patch: Mapping[str, Any]) -> DataItemRecord:
        changes = clean_patch(patch)
        await self._pause("update")
        index = self._index_of(item_id)
        self.data_items[index] = self.data_items[index].merged(changes)
        self._save()
        return replace(self.data_items[index])

    async def delete_item(self, item_id: str) -> DataItemRecord:
        await self._pause("delete")
        removed = self.data_items.pop(self._index_of(item_id))
        self._save()
        return removed

    async def health_check(self) -> bool:
        return True

    async def reset(self) -> None:
        """Clear all data and seed again (useful in tests)."""
        self.users = []
        self.data_items = []
        try:
            self.store.delete(self.slot)
        except OSError as e:
            logger.warning("Failed to delete local snapshot %s: %s", self.slot, e)
        self._seed()

    async def close(self) -> None:
        return None


def _number(value: Optional[float]) -> Optional[float]:
    if value is not None and float(value).is_integer():
        return int(value)
    return value


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres
    or SQLite for tests). Blocking calls run in worker threads.
    """

    kind = BackendKind.RELATIONAL

    def __init__(
        self,
        database_url: str,
        *,
        session_ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite") and (":memory:" in database_url or database_url.endswith("://")):
            # One shared connection, otherwise every worker thread sees its own empty database.
            engine_kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        elif not database_url.startswith("sqlite"):
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self.session_ttl_seconds = session_ttl_seconds
        self._connected = False

    async def _run(self, func: Callable, *args):
        if not self._connected:
            raise BackendUnavailable("Relational backend is not connected")
        try:
            return await asyncio.to_thread(func, *args)
        except (OperationalError, InterfaceError, DisconnectionError) as e:
            raise BackendUnavailable(str(e)) from e
        except SQLAlchemyError as e:
            logger.exception("Relational backend error")
            raise InternalError() from e

    def _to_item_record(self, row: "DataItemRow") -> DataItemRecord:
        return DataItemRecord(
            id=row.id,
            name=row.name,
            description=row.description or "",
            status=row.status,
            category=row.category,
            quantity=_number(row.quantity),
            user_id=row.user_id,
            created_at=parse_timestamp(row.created_at),
            updated_at=parse_timestamp(row.updated_at),
        )

    def _connect_sync(self) -> None:
        Base.metadata.create_all(self.engine)
        self._seed_sync()

    def _seed_sync(self) -> None:
        with self.Session() as session:
            count = session.execute(select(func.count()).select_from(UserRow)).scalar_one()
            if count:
                return
            now = time.time()
            user = UserRow(
                id=uuid.uuid4().hex, email=SEED_EMAIL, password=SEED_PASSWORD, created_at=now
            )
            session.add(user)
            # No relationship() between the rows, so the user insert must reach
            # the database before the items that reference it.
            session.flush()
            for payload in seed_item_payloads("PostgreSQL", user.id):
                session.add(
                    DataItemRow(id=uuid.uuid4().hex, created_at=now, updated_at=now, **payload)
                )
            session.commit()
            logger.info("Seeded relational database with test user and sample items")

    async def connect(self) -> bool:
        """Create tables if absent and seed an empty database."""
        try:
            await asyncio.to_thread(self._connect_sync)
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Failed to connect to relational database: %s", e)
            self._connected = False
            return False
        self._connected = True
        return True

    def _sign_in_sync(self, email: str, password: str) -> SessionRecord:
        with self.Session() as session:
            user = session.execute(
                select(UserRow).where(UserRow.email == email, UserRow.password == password)
            ).scalar_one_or_none()
            if not user:
                raise Unauthorized("Invalid email or password")
            issued = utcnow()
            expires_at = session_expiry(issued, self.session_ttl_seconds)
            row = SessionRow(
                token=TokenCodec.encode(self.kind, TokenCodec.new_opaque_id()),
                user_id=user.id,
                created_at=issued.timestamp(),
                expires_at=expires_at.timestamp(),
            )
            session.add(row)
            session.commit()
            return SessionRecord(
                access_token=row.token,
                user=SessionUser(id=user.id, email=user.email),
                expires_at=expires_at,
            )

    async def sign_in_with_password(self, email: str, password: str) -> SessionRecord:
        return await self._run(self._sign_in_sync, email, password)

    def _sign_out_sync(self, token: str) -> None:
        with self.Session() as session:
            session.execute(delete(SessionRow).where(SessionRow.token == token))
            session.commit()

    async def sign_out(self, token: Optional[str] = None) -> None:
        if token:
            await self._run(self._sign_out_sync, token)

    def _get_session_sync(self, token: str) -> Optional[SessionRecord]:
        with self.Session() as session:
            row = session.get(SessionRow, token)
            if not row:
                return None
            if row.expires_at <= time.time():
                session.delete(row)
                session.commit()
                return None
            user = session.get(UserRow, row.user_id)
            if not user:
                return None
            return SessionRecord(
                access_token=row.token,
                user=SessionUser(id=user.id, email=user.email),
                expires_at=parse_timestamp(row.expires_at),
            )

    async def get_session(self, token: Optional[str] = None) -> Optional[SessionRecord]:
        if not token:
            return None
        return await self._run(self._get_session_sync, token)

    def _fetch_data_sync(self, user_id: str) -> List[DataItemRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(DataItemRow)
                .where(DataItemRow.user_id == user_id)
                .order_by(DataItemRow.created_at.desc())
            ).scalars()
            return [self._to_item_record(row) for row in rows]

    async def fetch_data(self, user_id: str) -> List[DataItemRecord]:
        return await self._run(self._fetch_data_sync, user_id)

    def _get_item_sync(self, item_id: str) -> DataItemRecord:
        with self.Session() as session:
            row = session.get(DataItemRow, item_id)
            if not row:
                raise NotFound("Item not found")
            return self._to_item_record(row)

    async def get_item(self, item_id: str) -> DataItemRecord:
        return await self._run(self._get_item_sync, item_id)

    def _create_item_sync(self, fields: dict) -> DataItemRecord:
        now = time.time()
        with self.Session() as session:
            row = DataItemRow(id=uuid.uuid4().hex, created_at=now, updated_at=now, **fields)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_item_record(row)

    async def create_item(self, payload: Mapping[str, Any]) -> DataItemRecord:
        return await self._run(self._create_item_sync, validate_new_item(payload))

    def _update_item_sync(self, item_id: str, changes: dict) -> DataItemRecord:
        with self.Session() as session, session.begin():
            row = session.execute(
                select(DataItemRow).where(DataItemRow.id == item_id).with_for_update()
            ).scalar_one_or_none()
            if not row:
                raise NotFound("Item not found")
            # SET clause covers only the provided columns; updated_at comes from onupdate.
            session.execute(
                update(DataItemRow).where(DataItemRow.id == item_id).values(**changes)
            )
            session.flush()
            session.refresh(row)
            return self._to_item_record(row)

    async def update_item(self, item_id: str, patch: Mapping[str, Any]) -> DataItemRecord:
        changes = clean_patch(patch)
        if not changes:
            raise ValidationError("No valid fields to update")
        return await self._run(self._update_item_sync, item_id, changes)

    def _delete_item_sync(self, item_id: str) -> DataItemRecord:
        with self.Session() as session, session.begin():
            row = session.execute(
                select(DataItemRow).where(DataItemRow.id == item_id).with_for_update()
            ).scalar_one_or_none()
            if not row:
                raise NotFound("Item not found")
            record = self._to_item_record(row)
            session.delete(row)
            return record

    async def delete_item(self, item_id: str) -> DataItemRecord:
        return await self._run(self._delete_item_sync, item_id)

    def _health_check_sync(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    async def health_check(self) -> bool:
        if not self._connected:
            return False
        try:
            return await asyncio.to_thread(self._health_check_sync)
        except (SQLAlchemyError, OSError):
            return False

    def _reset_sync(self) -> None:
        with self.Session() as session:
            # Items and sessions go with their users through ON DELETE CASCADE.
            session.execute(delete(UserRow))
            session.commit()
        self._seed_sync()

    async def reset(self) -> None:
        await self._run(self._reset_sync)

    async def close(self) -> None:
        self._connected = False
        await asyncio.to_thread(self.engine.dispose)


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    password = Column(String(255), nullable=False)
    created_at = Column(Float, nullable=False, default=time.time)


class DataItemRow(Base):
    __tablename__ = "data_items"

    id = Column(String, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default="pending")
    category = Column(String(100), nullable=True)
    quantity = Column(Float, nullable=True)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = Column(Float, nullable=False, default=time.time, index=True)
    updated_at = Column(Float, nullable=False, default=time.time, onupdate=time.time)


class SessionRow(Base):
    __tablename__ = "sessions"

    token = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)
