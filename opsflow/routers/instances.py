from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from opsflow.core.security import AuthenticatedUser, require_permission
from opsflow.dependencies import get_workflow_service
from opsflow.models import InstanceCreate, InstanceSummary, InstanceUpdate, InstanceView
from opsflow.services import WorkflowService

router = APIRouter(prefix="/api/workflows/instances", tags=["workflow_instances"])

RESOURCE = "workflows.instances"


@router.get("", response_model=List[InstanceSummary])
async def list_instances(
        search: Optional[str] = None,
        instance_status: Optional[str] = Query(None, alias="status"),
        template_id: Optional[str] = Query(None, alias="templateId"),
        entity_type: Optional[str] = Query(None, alias="entityType"),
        entity_id: Optional[str] = Query(None, alias="entityId"),
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "view")),
):
    """List instances, newest first. ``status`` takes a comma-separated list."""
    return await service.list_instances(
        current_user.org_id,
        search=search,
        status=instance_status,
        template_id=template_id,
        entity_type=entity_type,
        entity_id=entity_id,
    )


@router.post("", response_model=InstanceView, status_code=status.HTTP_201_CREATED)
async def create_instance(
        payload: InstanceCreate,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "create")),
):
    """Start a workflow from an active template."""
    return await service.create_instance(current_user.org_id, current_user.user_id, payload)


@router.get("/{instance_id}", response_model=InstanceView)
async def get_instance(
        instance_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "view")),
):
    return await service.get_instance(instance_id, current_user.org_id)


@router.patch("/{instance_id}", response_model=InstanceView)
async def update_instance(
        instance_id: str,
        payload: InstanceUpdate,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "edit")),
):
    return await service.update_instance(instance_id, current_user.org_id, current_user.user_id, payload)


@router.delete("/{instance_id}", response_model=InstanceView)
async def cancel_instance(
        instance_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "edit")),
):
    """Cancel the workflow. Nothing is deleted and its steps keep their status."""
    return await service.cancel_instance(instance_id, current_user.org_id, current_user.user_id)
