"""Common helper functions for service layer.

This module provides reusable utilities for:
- UUID handling
- Query ordering and pagination
- Enum validation
- Entity retrieval with not-found handling
- Timezone normalization
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

from app.services.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

T = TypeVar("T")


def coerce_uuid(value):
    """Convert value to UUID, returning None if value is None.

    Raises:
        ValidationError: if value is not a valid UUID
    """
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid identifier: {value}") from exc


def apply_ordering(query, order_by: str, order_dir: str, allowed_columns: dict):
    """Apply ordering to a query with validation.

    Args:
        query: SQLAlchemy query object
        order_by: Column name to order by
        order_dir: Direction ('asc' or 'desc')
        allowed_columns: Dict mapping column names to SQLAlchemy columns

    Raises:
        ValidationError: if order_by is not in allowed_columns
    """
    if order_by not in allowed_columns:
        raise ValidationError(
            f"Invalid order_by. Allowed: {', '.join(sorted(allowed_columns))}"
        )
    column = allowed_columns[order_by]
    if order_dir == "desc":
        return query.order_by(column.desc())
    return query.order_by(column.asc())


def apply_pagination(query, limit: int, offset: int):
    return query.limit(limit).offset(offset)


def validate_enum(value, enum_cls, label: str):
    """Validate and convert a value to an enum member.

    Accepts either the member value ("YEARLY") or the member name ("yearly").

    Returns:
        Enum member or None if value is None

    Raises:
        ValidationError: if value is not a valid enum member
    """
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        pass
    try:
        return enum_cls[str(value).lower()]
    except KeyError as exc:
        raise ValidationError(f"Invalid {label}") from exc


def get_by_id(db: Session, model: type[T], value, **kwargs) -> T | None:
    """Get entity by ID, returning None if not found or value is None."""
    if value is None:
        return None
    return db.get(model, coerce_uuid(value), **kwargs)


def get_or_404(db: Session, model: type[T], id, detail: str | None = None, **options) -> T:
    """Get entity by ID or raise NotFoundError.

    Args:
        db: Database session
        model: SQLAlchemy model class
        id: Entity ID (string or UUID)
        detail: Custom error message (defaults to "{ModelName} not found")
        **options: Additional options passed to db.get()
    """
    entity = get_by_id(db, model, id, **options)
    if not entity:
        raise NotFoundError(detail or f"{model.__name__} not found")
    return entity


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def utcnow() -> datetime:
    return datetime.now(UTC)
