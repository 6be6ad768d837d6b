from fastapi import APIRouter, Depends

from opsflow.core.security import AuthenticatedUser, require_permission
from opsflow.dependencies import get_workflow_service
from opsflow.models import StepDetailView, StepUpdate
from opsflow.services import WorkflowService

router = APIRouter(prefix="/api/workflows/steps", tags=["workflow_steps"])

RESOURCE = "workflows.tasks"


@router.get("/{step_id}", response_model=StepDetailView)
async def get_step(
        step_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "view")),
):
    return await service.get_step(step_id, current_user.org_id)


@router.patch("/{step_id}", response_model=StepDetailView)
async def update_step(
        step_id: str,
        payload: StepUpdate,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "edit")),
):
    """Change a step's status, assignment, notes or metadata."""
    return await service.update_step(step_id, current_user.org_id, current_user.user_id, payload)
