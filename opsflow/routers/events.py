from fastapi import APIRouter, Depends

from opsflow.core.security import AuthenticatedUser, require_permission
from opsflow.dependencies import get_workflow_service
from opsflow.models import EventProcessResult, WorkflowEvent
from opsflow.services import WorkflowService

router = APIRouter(prefix="/api/workflows/events", tags=["workflow_events"])


@router.post("", response_model=EventProcessResult)
async def process_event(
        event: WorkflowEvent,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission("workflows.instances", "create")),
):
    """Report a people/asset event; matching trigger rules start workflows."""
    return await service.process_event(current_user.org_id, current_user.user_id, event)
