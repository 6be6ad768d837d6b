# services.py
import logging
from typing import List, Optional

from opsflow.audit import AuditLogger, SafeAudit, snapshot
from opsflow.compiler import GraphCompiler
from opsflow.db_models import WorkflowTemplate
from opsflow.db_models.enums import InstanceStatus, TemplateStatus
from opsflow.exceptions import ConflictError, NotFoundError, ValidationError
from opsflow.materializer import InstanceMaterializer
from opsflow.models import (
    EventProcessResult,
    InstanceCreate,
    InstanceSummary,
    InstanceUpdate,
    InstanceView,
    StepDetailView,
    StepUpdate,
    TemplateCreate,
    TemplateSummary,
    TemplateUpdate,
    TemplateView,
    WorkflowEvent,
)
from opsflow.projections import ProjectionService
from opsflow.repository import DirectoryRepository, WorkflowInstanceRepository, WorkflowTemplateRepository
from opsflow.transitions import TERMINAL_INSTANCE_STATUSES, TransitionEngine
from opsflow.triggers import TriggerProcessor
from opsflow.utils import ensure_utc, new_id, utcnow

logger = logging.getLogger(__name__)


def parse_status_filter(raw: Optional[str]) -> Optional[List[str]]:
    """``"pending,in_progress"`` -> validated status values."""
    if not raw:
        return None
    statuses = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            statuses.append(InstanceStatus(part).value)
        except ValueError:
            raise ValidationError(f"Unknown workflow status '{part}'")
    return statuses or None


class WorkflowService:
    def __init__(
            self,
            template_repo: WorkflowTemplateRepository,
            instance_repo: WorkflowInstanceRepository,
            directory_repo: DirectoryRepository,
            audit_logger: Optional[AuditLogger] = None,
    ):
        self.template_repo = template_repo
        self.instance_repo = instance_repo
        self.directory_repo = directory_repo
        self.audit = SafeAudit(audit_logger)
        self.compiler = GraphCompiler(template_repo, directory_repo)
        self.materializer = InstanceMaterializer(template_repo, instance_repo, directory_repo)
        self.transitions = TransitionEngine(instance_repo, template_repo)
        self.projections = ProjectionService(template_repo, instance_repo, directory_repo)
        self.triggers = TriggerProcessor(template_repo, directory_repo, self.materializer)

    # --- templates ---

    async def list_templates(
            self,
            org_id: str,
            search: Optional[str] = None,
            status: Optional[TemplateStatus] = None,
            module_scope: Optional[str] = None,
            trigger_type: Optional[str] = None,
            active_only: bool = False,
    ) -> List[TemplateSummary]:
        templates = await self.template_repo.list_templates(
            org_id, search=search, status=status, module_scope=module_scope,
            trigger_type=trigger_type, active_only=active_only,
        )
        return await self.projections.template_summaries(templates)

    async def _require_template(self, template_id: str, org_id: str) -> WorkflowTemplate:
        template = await self.template_repo.get_template(template_id, org_id)
        if template is None:
            raise NotFoundError("Template not found")
        return template

    async def get_template(self, template_id: str, org_id: str) -> TemplateView:
        template = await self._require_template(template_id, org_id)
        return await self.projections.template_view(template)

    async def _check_owner(self, org_id: str, owner_id: Optional[str]) -> None:
        if owner_id and await self.directory_repo.get_person(owner_id, org_id) is None:
            raise ValidationError(f"Owner '{owner_id}' does not exist")

    async def create_template(self, org_id: str, actor_user_id: Optional[str], data: TemplateCreate) -> TemplateView:
        if not data.name.strip():
            raise ValidationError("Template name cannot be empty.")
        if data.edges and data.steps is None:
            raise ValidationError("Edges can only be saved together with steps")

        with self.template_repo.transaction():
            await self._check_owner(org_id, data.default_owner_id)
            template = await self.template_repo.create_template(WorkflowTemplate(
                id=new_id(),
                org_id=org_id,
                name=data.name.strip(),
                description=data.description,
                module_scope=data.module_scope,
                trigger_type=data.trigger_type,
                status=data.status,
                is_active=data.is_active,
                default_due_days=data.default_due_days,
                default_owner_id=data.default_owner_id,
                settings=data.settings,
                created_by_id=actor_user_id,
            ))
            template_id = template.id
            if data.steps is not None:
                await self.compiler.replace_graph(template, data.steps, data.edges or [])

        template = await self._require_template(template_id, org_id)
        self.audit.created("workflow_template", template.id, template.name, after=snapshot(template))
        return await self.projections.template_view(template)

    async def update_template(
            self,
            template_id: str,
            org_id: str,
            actor_user_id: Optional[str],
            data: TemplateUpdate,
    ) -> TemplateView:
        """Apply scalar changes and, when ``steps`` is present, replace the graph.

        Without ``steps`` the existing steps and edges are left exactly as they are.
        """
        fields = data.scalar_fields()
        if "name" in fields and (fields["name"] is None or not fields["name"].strip()):
            raise ValidationError("Template name cannot be empty.")
        for required in ("status", "is_active"):
            if required in fields and fields[required] is None:
                raise ValidationError(f"'{required}' cannot be null")
        if data.edges and data.steps is None:
            raise ValidationError("Edges can only be saved together with steps")

        with self.template_repo.transaction():
            template = await self._require_template(template_id, org_id)
            before = snapshot(template)
            if "default_owner_id" in fields:
                await self._check_owner(org_id, fields["default_owner_id"])
            if fields:
                await self.template_repo.update_template(template, fields)
            if data.steps is not None:
                await self.template_repo.update_template(template, {"updated_at": utcnow()})
                await self.compiler.replace_graph(template, data.steps, data.edges or [])

        template = await self._require_template(template_id, org_id)
        logger.info("Template %s updated by %s", template_id, actor_user_id)
        self.audit.updated("workflow_template", template.id, template.name, before=before, after=snapshot(template))
        return await self.projections.template_view(template)

    async def delete_template(self, template_id: str, org_id: str, actor_user_id: Optional[str]) -> None:
        with self.template_repo.transaction():
            template = await self._require_template(template_id, org_id)
            counts = await self.template_repo.count_instances([template.id])
            if counts.get(template.id, 0) > 0:
                raise ConflictError(
                    "Cannot delete template with existing instances. Archive it instead.",
                    details={"instancesCount": counts[template.id]},
                )
            before = snapshot(template)
            await self.template_repo.delete_template(template.id)
        logger.info("Template %s deleted by %s", template_id, actor_user_id)
        self.audit.deleted("workflow_template", template_id, before.get("name"), before=before)

    # --- instances ---

    async def list_instances(
            self,
            org_id: str,
            search: Optional[str] = None,
            status: Optional[str] = None,
            template_id: Optional[str] = None,
            entity_type: Optional[str] = None,
            entity_id: Optional[str] = None,
    ) -> List[InstanceSummary]:
        instances = await self.instance_repo.list_instances(
            org_id, search=search, statuses=parse_status_filter(status), template_id=template_id,
            entity_type=entity_type, entity_id=entity_id,
        )
        return await self.projections.instance_summaries(instances)

    async def get_instance(self, instance_id: str, org_id: str) -> InstanceView:
        instance = await self.instance_repo.get_instance(instance_id, org_id)
        if instance is None:
            raise NotFoundError("Workflow instance not found")
        return await self.projections.instance_view(instance)

    async def create_instance(self, org_id: str, actor_user_id: Optional[str], data: InstanceCreate) -> InstanceView:
        with self.instance_repo.transaction():
            instance = await self.materializer.materialize(
                org_id=org_id,
                actor_user_id=actor_user_id,
                template_id=data.template_id,
                entity_type=data.entity_type,
                entity_id=data.entity_id,
                name=data.name,
                due_at=data.due_at,
                owner_id=data.owner_id,
                metadata=data.metadata,
            )
            instance_id = instance.id

        view = await self.get_instance(instance_id, org_id)
        self.audit.created("workflow_instance", view.id, view.name, after=snapshot_view(view))
        return view

    async def update_instance(
            self,
            instance_id: str,
            org_id: str,
            actor_user_id: Optional[str],
            data: InstanceUpdate,
    ) -> InstanceView:
        fields = data.model_dump(exclude_unset=True)
        with self.instance_repo.transaction():
            instance = await self.instance_repo.get_instance(instance_id, org_id, for_update=True)
            if instance is None:
                raise NotFoundError("Workflow instance not found")
            before = snapshot(instance)

            if "due_at" in fields:
                due_at = ensure_utc(fields["due_at"])
                started_at = ensure_utc(instance.started_at)
                if due_at is not None and started_at is not None and due_at < started_at:
                    raise ValidationError("Workflow due date cannot be before its start")
                instance.due_at = due_at
            if "owner_id" in fields:
                await self._check_owner(org_id, fields["owner_id"])
                instance.owner_id = fields["owner_id"]
            if "metadata" in fields:
                instance.meta = fields["metadata"]
            if fields.get("status") is not None:
                await self.transitions.change_instance_status(instance, fields["status"])
            await self.instance_repo.save()

        view = await self.get_instance(instance_id, org_id)
        self.audit.updated("workflow_instance", view.id, view.name, before=before, after=snapshot_view(view))
        return view

    async def cancel_instance(self, instance_id: str, org_id: str, actor_user_id: Optional[str]) -> InstanceView:
        """Soft cancel: the instance stops, its steps keep their status."""
        with self.instance_repo.transaction():
            instance = await self.instance_repo.get_instance(instance_id, org_id, for_update=True)
            if instance is None:
                raise NotFoundError("Workflow instance not found")
            before = snapshot(instance)
            await self.transitions.change_instance_status(instance, InstanceStatus.cancelled)

        view = await self.get_instance(instance_id, org_id)
        logger.info("Workflow %s cancelled by %s", instance_id, actor_user_id)
        self.audit.updated("workflow_instance", view.id, view.name, before=before, after=snapshot_view(view))
        return view

    # --- steps ---

    async def get_step(self, step_id: str, org_id: str) -> StepDetailView:
        step = await self.instance_repo.get_step(step_id, org_id)
        if step is None:
            raise NotFoundError("Step not found")
        instance = await self.instance_repo.get_instance(step.instance_id, org_id)
        if instance is None:
            raise NotFoundError("Workflow instance not found")
        return await self.projections.step_view(step, instance)

    async def update_step(
            self,
            step_id: str,
            org_id: str,
            actor_user_id: Optional[str],
            data: StepUpdate,
    ) -> StepDetailView:
        fields = data.model_dump(exclude_unset=True)
        with self.instance_repo.transaction():
            # Lock the instance before any of its steps; every writer takes them in that order
            located = await self.instance_repo.get_step(step_id, org_id)
            if located is None:
                raise NotFoundError("Step not found")
            instance = await self.instance_repo.get_instance(located.instance_id, org_id, for_update=True)
            if instance is None:
                raise NotFoundError("Workflow instance not found")
            step = await self.instance_repo.get_step(step_id, org_id, for_update=True)
            if step is None:
                raise NotFoundError("Step not found")
            before = snapshot(step)

            edits = {key: value for key, value in fields.items() if key != "status"}
            if edits and InstanceStatus(instance.status) in TERMINAL_INSTANCE_STATUSES:
                raise ValidationError("Cannot update steps of a completed or cancelled workflow")
            if edits.get("assigned_person_id"):
                if await self.directory_repo.get_person(edits["assigned_person_id"], org_id) is None:
                    raise ValidationError(f"Person '{edits['assigned_person_id']}' does not exist")
            if edits.get("assignee_id"):
                users = await self.directory_repo.get_users([edits["assignee_id"]])
                if edits["assignee_id"] not in users:
                    raise ValidationError(f"User '{edits['assignee_id']}' does not exist")

            if "assignee_id" in edits:
                step.assignee_id = edits["assignee_id"]
            if "assigned_person_id" in edits:
                step.assigned_person_id = edits["assigned_person_id"]
            if "notes" in edits:
                step.notes = edits["notes"]
            if "metadata" in edits:
                step.meta = edits["metadata"]
            if fields.get("status") is not None:
                await self.transitions.change_step_status(step, instance, fields["status"], actor_user_id)
            await self.instance_repo.save()

        view = await self.get_step(step_id, org_id)
        self.audit.updated("workflow_step", view.id, view.name, before=before, after=snapshot_view(view))
        return view

    # --- events ---

    async def process_event(self, org_id: str, actor_user_id: Optional[str],
                            event: WorkflowEvent) -> EventProcessResult:
        with self.instance_repo.transaction():
            result = await self.triggers.process_event(event, org_id, actor_user_id)
        for triggered in result.workflows_triggered:
            self.audit.created("workflow_instance", triggered.instance_id, triggered.template_name)
        return result


def snapshot_view(view) -> dict:
    return view.model_dump(mode="json", exclude={"steps"})
