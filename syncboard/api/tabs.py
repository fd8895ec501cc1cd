"""Tab API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from syncboard.api.deps import get_tab_service
from syncboard.schemas.tab import Tab, TabCreate, TabUpdate
from syncboard.services.tab_service import TabService

router = APIRouter(prefix="/api/tabs", tags=["tabs"])


class TabOutput(BaseModel):
    line: str


class TabOutputResponse(BaseModel):
    total: int


@router.get("", response_model=dict[str, Tab])
async def list_tabs(
    tabs: Annotated[TabService, Depends(get_tab_service)],
) -> dict[str, Tab]:
    return await tabs.get_all_tabs()


@router.post("", response_model=Tab, status_code=201)
async def create_tab_endpoint(
    body: TabCreate,
    tabs: Annotated[TabService, Depends(get_tab_service)],
) -> Tab:
    return await tabs.create_tab(body.name)


@router.get("/{tab_id}", response_model=Tab)
async def get_tab_endpoint(
    tab_id: str,
    tabs: Annotated[TabService, Depends(get_tab_service)],
) -> Tab:
    return await tabs.get_tab(tab_id)


@router.patch("/{tab_id}", response_model=Tab)
async def update_tab_endpoint(
    tab_id: str,
    body: TabUpdate,
    tabs: Annotated[TabService, Depends(get_tab_service)],
) -> Tab:
    return await tabs.update_tab(tab_id, body.updates)


@router.post("/{tab_id}/output", response_model=TabOutputResponse)
async def add_tab_output_endpoint(
    tab_id: str,
    body: TabOutput,
    tabs: Annotated[TabService, Depends(get_tab_service)],
) -> TabOutputResponse:
    return TabOutputResponse(total=await tabs.add_tab_output(tab_id, body.line))


@router.delete("/{tab_id}/output", status_code=204)
async def clear_tab_output_endpoint(
    tab_id: str,
    tabs: Annotated[TabService, Depends(get_tab_service)],
) -> None:
    await tabs.clear_tab_output(tab_id)


@router.delete("/{tab_id}", status_code=204)
async def delete_tab_endpoint(
    tab_id: str,
    tabs: Annotated[TabService, Depends(get_tab_service)],
) -> None:
    await tabs.delete_tab(tab_id)
