"""
Recipient endpoints for task owners.
"""
from typing import List

from fastapi import APIRouter, Depends, Path, Response

from signflow.auth import get_current_user
from signflow.config import Settings
from signflow.dependencies import get_app_settings, get_task_service
from signflow.models import (
    AuthenticatedUser,
    RecipientCreateRequest,
    RecipientResponse,
    RecipientUpdateRequest,
)
from signflow.services.tasks import TaskService, to_recipient_response

router = APIRouter(
    prefix="/v1",
    tags=["recipients"],
)


@router.post("/tasks/{task_id}/recipients", response_model=RecipientResponse, status_code=201)
async def add_recipient(
    body: RecipientCreateRequest,
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
    settings: Settings = Depends(get_app_settings),
):
    recipient = await service.add_recipient(user, task_id, body.name, body.email)
    return to_recipient_response(recipient, settings)


@router.get("/tasks/{task_id}/recipients", response_model=List[RecipientResponse])
async def list_recipients(
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
    settings: Settings = Depends(get_app_settings),
):
    recipients = await service.list_recipients(user, task_id)
    return [to_recipient_response(r, settings) for r in recipients]


@router.patch("/recipients/{recipient_id}", response_model=RecipientResponse)
async def update_recipient(
    body: RecipientUpdateRequest,
    recipient_id: str = Path(..., description="Recipient ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
    settings: Settings = Depends(get_app_settings),
):
    recipient = await service.update_recipient(user, recipient_id, body.name, body.email)
    return to_recipient_response(recipient, settings)


@router.delete("/recipients/{recipient_id}", status_code=204)
async def delete_recipient(
    recipient_id: str = Path(..., description="Recipient ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    await service.delete_recipient(user, recipient_id)
    return Response(status_code=204)


@router.post("/recipients/{recipient_id}/regenerate-token", response_model=RecipientResponse)
async def regenerate_recipient_token(
    recipient_id: str = Path(..., description="Recipient ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
    settings: Settings = Depends(get_app_settings),
):
    """New signing link valid for RECIPIENT_TOKEN_TTL_DAYS from now; the old link stops working."""
    recipient = await service.regenerate_token(user, recipient_id)
    return to_recipient_response(recipient, settings)


@router.post("/recipients/{recipient_id}/resend")
async def resend_invitation(
    recipient_id: str = Path(..., description="Recipient ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    warning = await service.resend_invitation(user, recipient_id)
    return {"sent": warning is None, "warning": warning}
