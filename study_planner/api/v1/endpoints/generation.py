"""Study-plan generation endpoints.

``POST`` accepts a survey and returns a task id immediately; the plan is
built in the background.  ``GET`` reports the task's status and ``DELETE``
cancels it.  Errors raised by the task manager are turned into JSON
responses by :class:`~study_planner.api.v1.middleware.error_handler.ErrorHandlerMiddleware`.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from study_planner.api.v1.schemas.common import ErrorResponse
from study_planner.api.v1.schemas.generation import (
    SubmitGenerationRequest,
    SubmitGenerationResponse,
    TaskStatusResponse,
)
from study_planner.core.task.manager import GenerationTaskManager
from study_planner.dependencies import get_task_manager

router = APIRouter()

_PATH = "/study-plans/generate"


@router.post(
    _PATH,
    status_code=202,
    response_model=SubmitGenerationResponse,
    response_model_by_alias=True,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
    summary="Start study-plan generation",
    description=(
        "Validate the survey, record a pending generation task and start it "
        "in the background.  Poll the status endpoint with the returned task id."
    ),
)
async def submit_generation(
    request: SubmitGenerationRequest,
    manager: GenerationTaskManager = Depends(get_task_manager),
) -> SubmitGenerationResponse:
    receipt = await manager.submit(request.owner_id, request.survey_input)
    return SubmitGenerationResponse.from_receipt(receipt)


@router.get(
    _PATH,
    response_model=TaskStatusResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get generation status",
)
async def get_generation_status(
    task_id: str | None = Query(default=None, alias="taskId"),
    owner_id: str | None = Query(default=None, alias="ownerId"),
    manager: GenerationTaskManager = Depends(get_task_manager),
) -> TaskStatusResponse:
    view = await manager.get_status(task_id, owner_id)
    return TaskStatusResponse.from_view(view)


@router.delete(
    _PATH,
    response_model=TaskStatusResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Cancel a generation task",
)
async def cancel_generation(
    task_id: str | None = Query(default=None, alias="taskId"),
    owner_id: str | None = Query(default=None, alias="ownerId"),
    manager: GenerationTaskManager = Depends(get_task_manager),
) -> TaskStatusResponse:
    view = await manager.cancel(task_id, owner_id)
    return TaskStatusResponse.from_view(view)
