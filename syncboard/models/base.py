"""Declarative base and column types shared by all ORM models."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Integer, Text
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from syncboard.services.datetime_service import format_iso, parse_optional_datetime

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect


class Base(DeclarativeBase):
    """Base class for SyncBoard ORM models."""


class IntBool(TypeDecorator[bool]):
    """Boolean stored as INTEGER 0/1."""

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value: bool | None, dialect: Dialect) -> int | None:
        if value is None:
            return None
        return 1 if value else 0

    def process_result_value(self, value: Any, dialect: Dialect) -> bool | None:
        if value is None:
            return None
        return bool(value)


class IsoDateTime(TypeDecorator[datetime]):
    """Timestamp stored as RFC3339 UTC TEXT."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: datetime | str | None, dialect: Dialect) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            return value
        return format_iso(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        return parse_optional_datetime(value)

