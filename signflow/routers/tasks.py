"""
Task endpoints: lifecycle, files and final documents.
All endpoints require an authenticated owner.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Path, Query, Response, UploadFile

from signflow.auth import get_current_user
from signflow.config import Settings
from signflow.dependencies import get_app_settings, get_task_service
from signflow.models import (
    AuthenticatedUser,
    DownloadUrlResponse,
    FileOrderRequest,
    PipelineResult,
    PublishRequest,
    PublishResponse,
    SendFinalResponse,
    StatusChangeRequest,
    Task,
    TaskCreateRequest,
    TaskDetailResponse,
    TaskFile,
    TaskListResponse,
    TaskStatus,
    TaskUpdateRequest,
    TransitionResponse,
)
from signflow.services.tasks import TaskService, to_recipient_response
from signflow.status import TRANSITION_RULES, get_valid_transitions

router = APIRouter(
    prefix="/v1",
    tags=["tasks"],
)


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(
    status: Optional[TaskStatus] = Query(default=None, description="Filter by status"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    tasks = await service.list_tasks(user, status)
    return TaskListResponse(tasks=tasks, total=len(tasks))


@router.post("/tasks", response_model=Task, status_code=201)
async def create_task(
    body: TaskCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return await service.create_task(user, body.title, body.description)


@router.get("/tasks/{task_id}", response_model=TaskDetailResponse)
async def get_task(
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
    settings: Settings = Depends(get_app_settings),
):
    """Task with its files, recipients and the statuses it can move to."""
    task = await service.get_task(user, task_id)
    files = await service.list_files(user, task.id)
    recipients = await service.list_recipients(user, task.id)
    return TaskDetailResponse(
        task=task,
        files=files,
        recipients=[to_recipient_response(r, settings) for r in recipients],
        valid_transitions=get_valid_transitions(task.status),
    )


@router.patch("/tasks/{task_id}", response_model=Task)
async def update_task(
    body: TaskUpdateRequest,
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return await service.update_task(user, task_id, body.title, body.description)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Permanently delete a trashed task."""
    await service.delete_task(user, task_id)
    return Response(status_code=204)


@router.post(
    "/tasks/{task_id}/status",
    response_model=TransitionResponse,
    responses={409: {"description": "Transition not allowed from the current status"}},
)
async def change_task_status(
    body: StatusChangeRequest,
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """
    Move a task to another status.

    A refused transition returns 409 with the current status, the
    attempted status and the valid next statuses in `details`.
    """
    return await service.change_status(user, task_id, body.status)


@router.get("/tasks/{task_id}/transitions")
async def get_task_transitions(
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    task = await service.get_task(user, task_id)
    return {
        "current_status": task.status,
        "valid_transitions": get_valid_transitions(task.status),
        "rule": TRANSITION_RULES[task.status].description,
    }


@router.post("/tasks/{task_id}/publish", response_model=PublishResponse)
async def publish_task(
    body: Optional[PublishRequest] = None,
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Send a draft to its recipients. With dry_run only the checks run."""
    dry_run = body.dry_run if body else False
    return await service.publish(user, task_id, dry_run=dry_run)


# Files

@router.post("/tasks/{task_id}/files", response_model=TaskFile, status_code=201)
async def upload_file(
    task_id: str = Path(..., description="Task ID"),
    file: UploadFile = File(..., description="PDF, PNG or JPEG"),
    display_name: Optional[str] = Form(default=None),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    data = await file.read()
    return await service.add_file(
        user,
        task_id,
        filename=file.filename,
        content_type=file.content_type,
        data=data,
        display_name=display_name,
    )


@router.get("/tasks/{task_id}/files", response_model=List[TaskFile])
async def list_files(
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return await service.list_files(user, task_id)


@router.put("/tasks/{task_id}/files/order", response_model=List[TaskFile])
async def reorder_files(
    body: FileOrderRequest,
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return await service.reorder_files(user, task_id, body.file_ids)


@router.delete("/files/{file_id}", status_code=204)
async def delete_file(
    file_id: str = Path(..., description="File ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    await service.delete_file(user, file_id)
    return Response(status_code=204)


@router.get("/files/{file_id}/download", response_model=DownloadUrlResponse)
async def get_file_download_url(
    file_id: str = Path(..., description="File ID"),
    final: bool = Query(default=False, description="Download the signed document"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return await service.get_download_url(user, file_id, final=final)


# Final documents

@router.post("/tasks/{task_id}/generate-final-pdf", response_model=PipelineResult)
async def generate_final_pdf(
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Regenerate the final documents of a completed task."""
    return await service.generate_final_documents(user, task_id)


@router.post("/tasks/{task_id}/send-final-pdf", response_model=SendFinalResponse)
async def send_final_pdf(
    task_id: str = Path(..., description="Task ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return await service.send_final_documents(user, task_id)
