"""
Signature field placement endpoints for task owners.
"""
from typing import List

from fastapi import APIRouter, Depends, Path, Response

from signflow.auth import get_current_user
from signflow.dependencies import get_position_store
from signflow.models import (
    AuthenticatedUser,
    ConflictCheckResponse,
    FilePositionsGroup,
    PositionCreateRequest,
    PositionUpdateRequest,
    PositionView,
    PositionWriteResponse,
)
from signflow.services.positions import PositionStore

router = APIRouter(
    prefix="/v1",
    tags=["positions"],
)


@router.post("/positions", response_model=PositionWriteResponse, status_code=201)
async def create_position(
    body: PositionCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: PositionStore = Depends(get_position_store),
):
    """
    Place a field for a recipient.

    Invalid geometry is rejected with every violation listed. Overlaps
    with other fields are only reported in `warnings`.
    """
    return await store.create(user, body)


@router.post("/positions/check-conflicts", response_model=ConflictCheckResponse)
async def check_position_conflicts(
    body: PositionCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: PositionStore = Depends(get_position_store),
):
    return await store.check_conflicts(user, body)


@router.patch("/positions/{position_id}", response_model=PositionWriteResponse)
async def update_position(
    body: PositionUpdateRequest,
    position_id: str = Path(..., description="Position ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    store: PositionStore = Depends(get_position_store),
):
    return await store.update_geometry(user, position_id, body)


@router.delete("/positions/{position_id}", status_code=204)
async def delete_position(
    position_id: str = Path(..., description="Position ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    store: PositionStore = Depends(get_position_store),
):
    await store.delete(user, position_id)
    return Response(status_code=204)


@router.get("/recipients/{recipient_id}/positions", response_model=List[FilePositionsGroup])
async def list_recipient_positions(
    recipient_id: str = Path(..., description="Recipient ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    store: PositionStore = Depends(get_position_store),
):
    return await store.list_for_recipient(user, recipient_id)


@router.get("/files/{file_id}/positions", response_model=List[PositionView])
async def list_file_positions(
    file_id: str = Path(..., description="File ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    store: PositionStore = Depends(get_position_store),
):
    return await store.list_for_file(user, file_id)
