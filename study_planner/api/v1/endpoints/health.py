from fastapi import APIRouter, Depends

from study_planner import __version__
from study_planner.core.task.manager import GenerationTaskManager
from study_planner.dependencies import get_task_manager

router = APIRouter()


@router.get("/health")
async def health_check(manager: GenerationTaskManager = Depends(get_task_manager)):
    return {
        "status": "healthy",
        "service": "study-planner",
        "version": __version__,
        "inFlight": manager.in_flight,
    }
