"""Application preference endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from syncboard.api.deps import get_notification_service
from syncboard.schemas.settings import AppSettings
from syncboard.services.notification_service import NotificationService

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=AppSettings)
async def get_app_settings(
    notifications: Annotated[NotificationService, Depends(get_notification_service)],
) -> AppSettings:
    return await notifications.get_settings()


@router.put("", response_model=AppSettings)
async def update_app_settings(
    body: AppSettings,
    notifications: Annotated[NotificationService, Depends(get_notification_service)],
) -> AppSettings:
    return await notifications.update_settings(body)
