"""Profile CRUD with admission-time validation."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select

from syncboard.exceptions import (
    AlreadyExistsError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    wrap_error,
)
from syncboard.models.profile import ProfileRow
from syncboard.schemas.profile import Profile
from syncboard.services.event_bus import EventType
from syncboard.services.validation import validate_profile

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncboard.services.event_bus import EventBus

logger = logging.getLogger(__name__)

# Profile attributes stored 1:1 in same-named columns.
_PLAIN_FIELDS: tuple[str, ...] = tuple(
    name
    for name in Profile.model_fields
    if name not in ("name", "from_path", "to_path", "included_paths", "excluded_paths")
)


def decode_patterns(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed pattern list %r", raw)
        return []
    return [str(item) for item in value] if isinstance(value, list) else []


def row_to_profile(row: ProfileRow) -> Profile:
    values: dict[str, Any] = {field: getattr(row, field) for field in _PLAIN_FIELDS}
    return Profile(
        name=row.name,
        from_path=row.from_path,
        to_path=row.to_path,
        included_paths=decode_patterns(row.included_paths),
        excluded_paths=decode_patterns(row.excluded_paths),
        **values,
    )


def profile_to_row(profile: Profile) -> ProfileRow:
    values: dict[str, Any] = {field: getattr(profile, field) for field in _PLAIN_FIELDS}
    return ProfileRow(
        name=profile.name,
        from_path=profile.from_path,
        to_path=profile.to_path,
        included_paths=json.dumps(profile.included_paths),
        excluded_paths=json.dumps(profile.excluded_paths),
        **values,
    )


def _admit(profile: Profile) -> None:
    try:
        validate_profile(profile)
    except ValidationError as exc:
        raise ValidationError(f"invalid profile: {exc.message}", details=exc.details) from exc


class ProfileService:
    """Named transfer configurations persisted in the ``profiles`` table."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        self._session_factory = session_factory
        self._event_bus = event_bus
        self._lock = asyncio.Lock()

    def _emit(self, event_type: EventType, profile_name: str, data: Any) -> None:
        self._event_bus.emit(event_type, profileId=profile_name, data=data)

    async def get_profiles(self) -> list[Profile]:
        async with self._session_factory() as session:
            rows = (
                (await session.execute(select(ProfileRow).order_by(ProfileRow.name)))
                .scalars()
                .all()
            )
        return [row_to_profile(row) for row in rows]

    async def get_profile(self, name: str) -> Profile:
        async with self._session_factory() as session:
            row = await session.get(ProfileRow, name)
        if row is None:
            raise NotFoundError(f"profile '{name}' not found")
        return row_to_profile(row)

    async def find_profile(self, name: str) -> Profile | None:
        async with self._session_factory() as session:
            row = await session.get(ProfileRow, name)
        return row_to_profile(row) if row is not None else None

    async def add_profile(self, profile: Profile) -> Profile:
        _admit(profile)
        async with self._lock, self._session_factory() as session:
            if await session.get(ProfileRow, profile.name) is not None:
                raise AlreadyExistsError(f"profile with name '{profile.name}' already exists")
            session.add(profile_to_row(profile))
            try:
                await session.commit()
            except Exception as exc:
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to save profile") from exc
        self._emit(EventType.PROFILE_ADDED, profile.name, profile.model_dump(by_alias=True))
        logger.info("Added profile %r", profile.name)
        return profile

    async def update_profile(self, profile: Profile) -> Profile:
        _admit(profile)
        async with self._lock, self._session_factory() as session:
            if await session.get(ProfileRow, profile.name) is None:
                raise NotFoundError(f"profile '{profile.name}' not found")
            await session.merge(profile_to_row(profile))
            try:
                await session.commit()
            except Exception as exc:
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to save profile") from exc
        self._emit(EventType.PROFILE_UPDATED, profile.name, profile.model_dump(by_alias=True))
        return profile

    async def delete_profile(self, name: str) -> None:
        async with self._lock, self._session_factory() as session:
            result = await session.execute(delete(ProfileRow).where(ProfileRow.name == name))
            if not result.rowcount:
                raise NotFoundError(f"profile '{name}' not found")
            await session.commit()
        self._emit(EventType.PROFILE_DELETED, name, None)
        logger.info("Deleted profile %r", name)
