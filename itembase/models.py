"""
Entity records shared by all storage backends, plus seed data and payload
validation used before anything reaches a backend.
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from itembase.errors import ValidationError


class BackendKind(str, Enum):
    RELATIONAL = "relational"
    KV = "kv"
    LOCAL = "local"


SEED_USER_ID = "test-user-1"
SEED_EMAIL = "test@example.com"
SEED_PASSWORD = "password123"

ITEM_FIELDS = ("name", "description", "status", "category", "quantity")
REQUIRED_ITEM_FIELDS = ("name", "description", "status")
IMMUTABLE_ITEM_FIELDS = frozenset({"id", "created_at", "updated_at", "user_id"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Any) -> datetime:
    """Accept an aware/naive datetime, an ISO-8601 string or an epoch float."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError(f"Unsupported timestamp value: {value!r}")


@dataclass
class UserRecord:
    id: str
    email: str
    password: str
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "password": self.password,
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserRecord":
        return cls(
            id=str(data["id"]),
            email=data["email"],
            password=data["password"],
            created_at=parse_timestamp(data["created_at"]),
        )


@dataclass
class SessionUser:
    id: str
    email: str

    def as_dict(self) -> dict:
        return {"id": self.id, "email": self.email}


@dataclass
class SessionRecord:
    access_token: str
    user: SessionUser
    expires_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "user": self.user.as_dict(),
            "expires_at": to_iso(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionRecord":
        user = data["user"]
        expires_at = data.get("expires_at")
        return cls(
            access_token=data["access_token"],
            user=SessionUser(id=str(user["id"]), email=user["email"]),
            expires_at=parse_timestamp(expires_at) if expires_at else None,
        )


@dataclass
class DataItemRecord:
    id: str
    name: str
    description: str
    status: str
    user_id: str
    category: Optional[str] = None
    quantity: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "category": self.category,
            "quantity": self.quantity,
            "user_id": self.user_id,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DataItemRecord":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            description=data.get("description") or "",
            status=data["status"],
            user_id=str(data["user_id"]),
            category=data.get("category"),
            quantity=data.get("quantity"),
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )

    def merged(self, patch: Mapping[str, Any], now: datetime | None = None) -> "DataItemRecord":
        """Return a copy with ``patch`` applied; id and created_at never change."""
        changes = {key: value for key, value in patch.items() if key in ITEM_FIELDS}
        updated_at = max(now or utcnow(), self.created_at)
        return replace(self, **changes, updated_at=updated_at)


def _check_quantity(value: Any) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or value < 0:
        raise ValidationError("Quantity must be a non-negative number")


def validate_new_item(payload: Mapping[str, Any]) -> dict:
    """
    Check a create payload and strip everything the backend assigns itself.
    Returns a dict holding only item fields plus ``user_id``.
    """
    for name in REQUIRED_ITEM_FIELDS:
        value = payload.get(name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Name, description, and status are required")
    _check_quantity(payload.get("quantity"))
    category = payload.get("category")
    if category is not None and not isinstance(category, str):
        raise ValidationError("Category must be a string")
    user_id = payload.get("user_id")
    if not user_id:
        raise ValidationError("user_id is required")
    cleaned = {name: payload.get(name) for name in ITEM_FIELDS}
    cleaned["user_id"] = str(user_id)
    return cleaned


def clean_patch(patch: Mapping[str, Any]) -> dict:
    """
    Drop immutable keys from a partial update and reject unknown or invalid
    ones. May return an empty dict.
    """
    cleaned: dict[str, Any] = {}
    for key, value in patch.items():
        if key in IMMUTABLE_ITEM_FIELDS:
            continue
        if key not in ITEM_FIELDS:
            raise ValidationError(f"Unknown field: {key}")
        if key in REQUIRED_ITEM_FIELDS and (not isinstance(value, str) or not value.strip()):
            raise ValidationError(f"Field '{key}' must be a non-empty string")
        if key == "quantity":
            _check_quantity(value)
        cleaned[key] = value
    return cleaned


def seed_item_payloads(label: str, user_id: str) -> list[dict]:
    """The two sample items every backend seeds on first run."""
    return [
        {
            "name": f"{label} Test Item 1",
            "description": f"This is a test item from {label} database",
            "status": "active",
            "category": "electronics",
            "quantity": 5,
            "user_id": user_id,
        },
        {
            "name": f"{label} Test Item 2",
            "description": f"Another test item for {label} testing",
            "status": "pending",
            "category": "books",
            "quantity": 3,
            "user_id": user_id,
        },
    ]
