"""Remote API endpoints, including encrypted (crypt) remotes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from syncboard.api.deps import get_crypt_service, get_remote_service
from syncboard.schemas.remote import CryptRemoteConfig, RemoteCreate, RemoteInfo, RemoteUpdate
from syncboard.services.crypt_service import CryptService
from syncboard.services.remote_service import RemoteService

router = APIRouter(prefix="/api/remotes", tags=["remotes"])
crypt_router = APIRouter(prefix="/api/crypt", tags=["crypt"])


@router.get("", response_model=list[RemoteInfo])
async def list_remotes(
    remotes: Annotated[RemoteService, Depends(get_remote_service)],
) -> list[RemoteInfo]:
    return await remotes.get_remotes()


@router.get("/{name}", response_model=RemoteInfo)
async def get_remote_endpoint(
    name: str,
    remotes: Annotated[RemoteService, Depends(get_remote_service)],
) -> RemoteInfo:
    return await remotes.get_remote(name)


@router.post("", response_model=RemoteInfo, status_code=201)
async def create_remote_endpoint(
    body: RemoteCreate,
    remotes: Annotated[RemoteService, Depends(get_remote_service)],
) -> RemoteInfo:
    return await remotes.add_remote(body.name, body.type, body.config)


@router.put("/{name}", response_model=RemoteInfo)
async def update_remote_endpoint(
    name: str,
    body: RemoteUpdate,
    remotes: Annotated[RemoteService, Depends(get_remote_service)],
) -> RemoteInfo:
    return await remotes.update_remote(name, body.config)


@router.delete("/{name}", status_code=204)
async def delete_remote_endpoint(
    name: str,
    remotes: Annotated[RemoteService, Depends(get_remote_service)],
) -> None:
    """Delete the remote; boards and flows referencing it are cleaned up."""
    await remotes.delete_remote(name)


@router.post("/{name}/test", status_code=204)
async def test_remote_endpoint(
    name: str,
    remotes: Annotated[RemoteService, Depends(get_remote_service)],
) -> None:
    await remotes.test_remote(name)


@crypt_router.get("", response_model=list[str])
async def list_crypt_remotes(
    crypt: Annotated[CryptService, Depends(get_crypt_service)],
) -> list[str]:
    return await crypt.list_crypt_remotes()


@crypt_router.post("", status_code=201)
async def create_crypt_remote_endpoint(
    body: CryptRemoteConfig,
    crypt: Annotated[CryptService, Depends(get_crypt_service)],
) -> dict[str, str]:
    await crypt.create_crypt_remote(body)
    return {"name": body.name}


@crypt_router.delete("/{name}", status_code=204)
async def delete_crypt_remote_endpoint(
    name: str,
    crypt: Annotated[CryptService, Depends(get_crypt_service)],
) -> None:
    await crypt.delete_crypt_remote(name)
