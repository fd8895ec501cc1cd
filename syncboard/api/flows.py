"""Flow API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from syncboard.api.deps import get_flow_service
from syncboard.schemas.flow import Flow
from syncboard.services.flow_service import FlowService

router = APIRouter(prefix="/api/flows", tags=["flows"])


@router.get("", response_model=list[Flow], response_model_by_alias=True)
async def list_flows(
    flows: Annotated[FlowService, Depends(get_flow_service)],
) -> list[Flow]:
    return await flows.get_flows()


@router.put("", response_model=list[Flow], response_model_by_alias=True)
async def save_flows_endpoint(
    body: list[Flow],
    flows: Annotated[FlowService, Depends(get_flow_service)],
) -> list[Flow]:
    """Replace every flow and operation in one transaction."""
    await flows.save_flows(body)
    return await flows.get_flows()
