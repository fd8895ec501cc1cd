"""Board API endpoints: CRUD plus execute, stop and status."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from syncboard.api.deps import get_board_service
from syncboard.exceptions import ValidationError
from syncboard.schemas.board import Board, BoardExecutionStatus
from syncboard.services.board_service import BoardService

router = APIRouter(prefix="/api/boards", tags=["boards"])


@router.get("", response_model=list[Board], response_model_by_alias=True)
async def list_boards(
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> list[Board]:
    return await boards.get_boards()


@router.get("/{board_id}", response_model=Board, response_model_by_alias=True)
async def get_board_endpoint(
    board_id: str,
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> Board:
    return await boards.get_board(board_id)


@router.post("", response_model=Board, response_model_by_alias=True, status_code=201)
async def create_board_endpoint(
    body: Board,
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> Board:
    return await boards.add_board(body)


@router.put("/{board_id}", response_model=Board, response_model_by_alias=True)
async def update_board_endpoint(
    board_id: str,
    body: Board,
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> Board:
    if body.id != board_id:
        raise ValidationError("board ID in body does not match the URL")
    return await boards.update_board(body)


@router.delete("/{board_id}", status_code=204)
async def delete_board_endpoint(
    board_id: str,
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> None:
    await boards.delete_board(board_id)


@router.post("/{board_id}/execute", response_model=BoardExecutionStatus, status_code=202)
async def execute_board_endpoint(
    board_id: str,
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> BoardExecutionStatus:
    """Start a run. The run is not tied to this request and keeps going after it returns."""
    return await boards.execute_board(board_id)


@router.post("/{board_id}/stop", status_code=204)
async def stop_board_endpoint(
    board_id: str,
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> None:
    await boards.stop_board_execution(board_id)


@router.get("/{board_id}/status", response_model=BoardExecutionStatus)
async def board_status_endpoint(
    board_id: str,
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> BoardExecutionStatus:
    return await boards.get_board_execution_status(board_id)


@router.get("/{board_id}/wait", response_model=BoardExecutionStatus)
async def wait_board_endpoint(
    board_id: str,
    boards: Annotated[BoardService, Depends(get_board_service)],
) -> BoardExecutionStatus | Response:
    """Block until the active run finishes; 204 when nothing is running."""
    status = await boards.wait_for_execution(board_id)
    if status is None:
        return Response(status_code=204)
    return status
