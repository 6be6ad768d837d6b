from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from opsflow.core.security import AuthenticatedUser, require_permission
from opsflow.db_models.enums import TemplateStatus
from opsflow.dependencies import get_workflow_service
from opsflow.models import TemplateCreate, TemplateSummary, TemplateUpdate, TemplateView
from opsflow.services import WorkflowService

router = APIRouter(prefix="/api/workflows/templates", tags=["workflow_templates"])

RESOURCE = "workflows.templates"


@router.get("", response_model=List[TemplateSummary])
async def list_templates(
        search: Optional[str] = None,
        template_status: Optional[TemplateStatus] = Query(None, alias="status"),
        module_scope: Optional[str] = Query(None, alias="moduleScope"),
        trigger_type: Optional[str] = Query(None, alias="triggerType"),
        active_only: bool = Query(False, alias="activeOnly"),
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "view")),
):
    """List the organization's templates, most recently edited first."""
    return await service.list_templates(
        current_user.org_id,
        search=search,
        status=template_status,
        module_scope=module_scope,
        trigger_type=trigger_type,
        active_only=active_only,
    )


@router.post("", response_model=TemplateView, status_code=status.HTTP_201_CREATED)
async def create_template(
        payload: TemplateCreate,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "create")),
):
    return await service.create_template(current_user.org_id, current_user.user_id, payload)


@router.get("/{template_id}", response_model=TemplateView)
async def get_template(
        template_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "view")),
):
    """Template with its full step/edge graph."""
    return await service.get_template(template_id, current_user.org_id)


@router.patch("/{template_id}", response_model=TemplateView)
async def update_template(
        template_id: str,
        payload: TemplateUpdate,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "edit")),
):
    """Patch scalar fields; a ``steps`` array replaces the whole graph."""
    return await service.update_template(template_id, current_user.org_id, current_user.user_id, payload)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
        template_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(require_permission(RESOURCE, "delete")),
):
    await service.delete_template(template_id, current_user.org_id, current_user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
