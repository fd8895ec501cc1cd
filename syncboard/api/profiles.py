"""Profile API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from syncboard.api.deps import get_profile_service
from syncboard.exceptions import ValidationError
from syncboard.schemas.profile import Profile
from syncboard.services.profile_service import ProfileService

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.get("", response_model=list[Profile], response_model_by_alias=True)
async def list_profiles(
    profiles: Annotated[ProfileService, Depends(get_profile_service)],
) -> list[Profile]:
    return await profiles.get_profiles()


@router.get("/{name}", response_model=Profile, response_model_by_alias=True)
async def get_profile_endpoint(
    name: str,
    profiles: Annotated[ProfileService, Depends(get_profile_service)],
) -> Profile:
    return await profiles.get_profile(name)


@router.post("", response_model=Profile, response_model_by_alias=True, status_code=201)
async def create_profile_endpoint(
    body: Profile,
    profiles: Annotated[ProfileService, Depends(get_profile_service)],
) -> Profile:
    return await profiles.add_profile(body)


@router.put("/{name}", response_model=Profile, response_model_by_alias=True)
async def update_profile_endpoint(
    name: str,
    body: Profile,
    profiles: Annotated[ProfileService, Depends(get_profile_service)],
) -> Profile:
    if body.name != name:
        raise ValidationError("profile name in body does not match the URL")
    return await profiles.update_profile(body)


@router.delete("/{name}", status_code=204)
async def delete_profile_endpoint(
    name: str,
    profiles: Annotated[ProfileService, Depends(get_profile_service)],
) -> None:
    await profiles.delete_profile(name)
