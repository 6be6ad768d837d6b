import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from opsflow.assignees import AssigneeRegistry, AssignmentContext
from opsflow.compiler import IdRemap
from opsflow.db_models import InstanceStep, TemplateStep, WorkflowInstance
from opsflow.db_models.enums import AssigneeType, DueAnchor, InstanceStatus, StepStatus, StepType, TemplateStatus
from opsflow.exceptions import NotFoundError, ValidationError
from opsflow.repository import DirectoryRepository, WorkflowInstanceRepository, WorkflowTemplateRepository
from opsflow.utils import ensure_utc, new_id, utcnow

logger = logging.getLogger(__name__)


def _enum_value(value) -> Optional[str]:
    return getattr(value, "value", value)


def due_anchor(step: TemplateStep) -> DueAnchor:
    raw = step.due_offset_from or DueAnchor.workflow_start.value
    try:
        return DueAnchor(raw)
    except ValueError:
        raise ValidationError(f"Step '{step.name}' has unknown due date anchor '{raw}'")


def compute_step_due(
        step: TemplateStep,
        started_at: datetime,
        instance_due_at: Optional[datetime],
) -> Optional[datetime]:
    """Due date of a freshly materialized step, or None when it has no
    offset or is anchored on a step that hasn't completed yet."""
    anchor = due_anchor(step)
    if step.due_offset_days is None:
        return None
    if anchor == DueAnchor.previous_step:
        return None
    if anchor == DueAnchor.workflow_due:
        if instance_due_at is None:
            raise ValidationError(
                f"Step '{step.name}' is due relative to the workflow due date, but the workflow has none"
            )
        reference = instance_due_at
    else:
        reference = started_at
    due_at = reference + timedelta(days=step.due_offset_days)
    if due_at < started_at:
        raise ValidationError(
            f"Step '{step.name}' would be due before the workflow starts",
            details={"dueAt": due_at.isoformat(), "startedAt": started_at.isoformat()},
        )
    return due_at


def step_metadata(step: TemplateStep) -> Dict[str, Any]:
    metadata = dict(step.meta or {})
    metadata.update({
        "stepType": _enum_value(step.step_type) or StepType.task.value,
        "assigneeType": _enum_value(step.assignee_type) or AssigneeType.unassigned.value,
        "assigneeConfig": step.assignee_config,
        "isRequired": True if step.is_required is None else step.is_required,
    })
    return metadata


class InstanceMaterializer:
    def __init__(
            self,
            template_repo: WorkflowTemplateRepository,
            instance_repo: WorkflowInstanceRepository,
            directory_repo: DirectoryRepository,
            assignees: Optional[AssigneeRegistry] = None,
    ):
        self.template_repo = template_repo
        self.instance_repo = instance_repo
        self.directory_repo = directory_repo
        self.assignees = assignees or AssigneeRegistry(directory_repo)

    async def materialize(
            self,
            org_id: str,
            actor_user_id: Optional[str],
            template_id: str,
            entity_type: str,
            entity_id: str,
            name: Optional[str] = None,
            due_at: Optional[datetime] = None,
            owner_id: Optional[str] = None,
            metadata: Optional[Dict[str, Any]] = None,
            now: Optional[datetime] = None,
    ) -> WorkflowInstance:
        """Start a running instance of the template's current graph.

        Writes the instance and its steps; the caller owns the transaction.
        """
        template = await self.template_repo.get_template(template_id, org_id)
        if template is None or not template.is_active:
            raise NotFoundError("Template not found or inactive")
        if template.status == TemplateStatus.archived:
            raise ValidationError("Archived templates cannot start new workflows")

        if owner_id and await self.directory_repo.get_person(owner_id, org_id) is None:
            raise ValidationError(f"Owner '{owner_id}' does not exist")

        started_at = ensure_utc(now) or utcnow()
        if due_at is not None:
            due_at = ensure_utc(due_at)
            if due_at < started_at:
                raise ValidationError("Workflow due date cannot be before its start")
        elif template.default_due_days is not None:
            due_at = started_at + timedelta(days=template.default_due_days)

        template_steps = await self.template_repo.get_steps(template.id)

        instance = WorkflowInstance(
            id=new_id(),
            template_id=template.id,
            org_id=org_id,
            entity_type=entity_type,
            entity_id=entity_id,
            name=name or template.name,
            status=InstanceStatus.pending,
            started_at=started_at,
            due_at=due_at,
            total_steps=len(template_steps),
            completed_steps=0,
            started_by_id=actor_user_id,
            owner_id=owner_id or template.default_owner_id,
            meta=metadata,
        )
        context = AssignmentContext(
            org_id=org_id,
            actor_user_id=actor_user_id,
            entity_type=entity_type,
            entity_id=entity_id,
        )

        remap = IdRemap()
        rows: List[InstanceStep] = []
        for template_step in template_steps:
            assignment = await self.assignees.resolve(template_step, context)
            rows.append(InstanceStep(
                id=remap.allocate(template_step.id),
                instance_id=instance.id,
                template_step_id=template_step.id,
                parent_step_id=None,
                name=template_step.name,
                description=template_step.description,
                order_index=template_step.order_index or 0,
                status=StepStatus.pending,
                assignee_id=assignment.assignee_id,
                assigned_person_id=assignment.assigned_person_id,
                due_at=compute_step_due(template_step, started_at, due_at),
                meta=step_metadata(template_step),
            ))

        await self.instance_repo.create_instance(instance)
        await self.instance_repo.add_steps(rows)
        for template_step, row in zip(template_steps, rows):
            if template_step.parent_step_id:
                row.parent_step_id = remap.resolve(template_step.parent_step_id)
        await self.instance_repo.save()

        logger.info(
            "Materialized instance %s from template %s for %s %s with %d steps",
            instance.id, template.id, entity_type, entity_id, len(rows),
        )
        return instance
