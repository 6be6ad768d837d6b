"""Read views: rows joined with the people, users and template details a
client needs to render them. Nothing here writes.

Any reference that no longer resolves (a deleted user, a replaced template
step) comes back as ``None`` instead of failing the request.
"""
from typing import Dict, Iterable, List, Optional

from opsflow.assignees import PERSON_ENTITY
from opsflow.db_models import (
    InstanceStep,
    Person,
    TemplateEdge,
    TemplateStep,
    User,
    WorkflowInstance,
    WorkflowTemplate,
)
from opsflow.models import (
    EntityRef,
    InstanceBrief,
    InstanceStepView,
    InstanceSummary,
    InstanceView,
    PersonRef,
    StepDetailView,
    TemplateEdgeView,
    TemplateInfo,
    TemplateStepInfo,
    TemplateStepView,
    TemplateSummary,
    TemplateView,
    UserRef,
)
from opsflow.repository import DirectoryRepository, WorkflowInstanceRepository, WorkflowTemplateRepository
from opsflow.utils import ensure_utc, progress_percent


def user_ref(users: Dict[str, User], user_id: Optional[str]) -> Optional[UserRef]:
    user = users.get(user_id) if user_id else None
    if user is None:
        return None
    return UserRef(id=user.id, name=user.name, email=user.email)


def person_ref(persons: Dict[str, Person], person_id: Optional[str]) -> Optional[PersonRef]:
    person = persons.get(person_id) if person_id else None
    if person is None:
        return None
    return PersonRef(id=person.id, name=person.name or "Unknown", email=person.email)


def _ids(*groups: Iterable[Optional[str]]) -> List[str]:
    return [value for group in groups for value in group if value]


class ProjectionService:
    def __init__(
            self,
            template_repo: WorkflowTemplateRepository,
            instance_repo: WorkflowInstanceRepository,
            directory_repo: DirectoryRepository,
    ):
        self.template_repo = template_repo
        self.instance_repo = instance_repo
        self.directory_repo = directory_repo

    # --- templates ---

    def _template_fields(self, template: WorkflowTemplate) -> dict:
        return dict(
            id=template.id,
            org_id=template.org_id,
            name=template.name,
            description=template.description,
            module_scope=template.module_scope,
            trigger_type=template.trigger_type,
            status=template.status,
            is_active=template.is_active,
            default_due_days=template.default_due_days,
            default_owner_id=template.default_owner_id,
            settings=template.settings,
            created_by_id=template.created_by_id,
            created_at=ensure_utc(template.created_at),
            updated_at=ensure_utc(template.updated_at),
        )

    async def template_summaries(self, templates: List[WorkflowTemplate]) -> List[TemplateSummary]:
        template_ids = [template.id for template in templates]
        steps_count = await self.template_repo.count_steps(template_ids)
        instances_count = await self.template_repo.count_instances(template_ids)
        users = await self.directory_repo.get_users(_ids(t.created_by_id for t in templates))
        persons = await self.directory_repo.get_persons(_ids(t.default_owner_id for t in templates))
        return [
            TemplateSummary(
                **self._template_fields(template),
                created_by=user_ref(users, template.created_by_id),
                default_owner=person_ref(persons, template.default_owner_id),
                steps_count=steps_count.get(template.id, 0),
                instances_count=instances_count.get(template.id, 0),
            )
            for template in templates
        ]

    async def template_view(self, template: WorkflowTemplate) -> TemplateView:
        steps = await self.template_repo.get_steps(template.id)
        edges = await self.template_repo.get_edges(template.id)
        instances_count = await self.template_repo.count_instances([template.id])
        users = await self.directory_repo.get_users(_ids([template.created_by_id]))
        persons = await self.directory_repo.get_persons(
            _ids([template.default_owner_id], (step.default_assignee_id for step in steps))
        )
        return TemplateView(
            **self._template_fields(template),
            created_by=user_ref(users, template.created_by_id),
            default_owner=person_ref(persons, template.default_owner_id),
            steps_count=len(steps),
            instances_count=instances_count.get(template.id, 0),
            steps=[self._template_step_view(step, persons) for step in steps],
            edges=[self._edge_view(edge) for edge in edges],
        )

    @staticmethod
    def _template_step_view(step: TemplateStep, persons: Dict[str, Person]) -> TemplateStepView:
        return TemplateStepView(
            id=step.id,
            template_id=step.template_id,
            parent_step_id=step.parent_step_id,
            name=step.name,
            description=step.description,
            step_type=step.step_type,
            order_index=step.order_index,
            position_x=step.position_x,
            position_y=step.position_y,
            assignee_type=step.assignee_type,
            assignee_config=step.assignee_config,
            default_assignee_id=step.default_assignee_id,
            default_assignee=person_ref(persons, step.default_assignee_id),
            due_offset_days=step.due_offset_days,
            due_offset_from=step.due_offset_from or "workflow_start",
            is_required=step.is_required,
            metadata=step.meta,
            created_at=ensure_utc(step.created_at),
            updated_at=ensure_utc(step.updated_at),
        )

    @staticmethod
    def _edge_view(edge: TemplateEdge) -> TemplateEdgeView:
        return TemplateEdgeView(
            id=edge.id,
            template_id=edge.template_id,
            source_step_id=edge.source_step_id,
            target_step_id=edge.target_step_id,
            condition_type=edge.condition_type,
            condition_config=edge.condition_config,
            label=edge.label,
            created_at=ensure_utc(edge.created_at),
        )

    # --- instances ---

    async def _instance_context(self, instances: List[WorkflowInstance], steps: List[InstanceStep]):
        templates = {}
        for instance in instances:
            if instance.template_id not in templates:
                templates[instance.template_id] = await self.template_repo.get_template(
                    instance.template_id, instance.org_id
                )
        users = await self.directory_repo.get_users(_ids(
            (i.started_by_id for i in instances),
            (s.assignee_id for s in steps),
            (s.completed_by_id for s in steps),
        ))
        subject_ids = [i.entity_id for i in instances if i.entity_type == PERSON_ENTITY]
        persons = {}
        for org_id in {i.org_id for i in instances}:
            persons.update(await self.directory_repo.get_persons(
                _ids(
                    (i.owner_id for i in instances if i.org_id == org_id),
                    (s.assigned_person_id for s in steps),
                    subject_ids,
                ),
                org_id=org_id,
            ))
        return templates, users, persons

    @staticmethod
    def _entity_ref(instance: WorkflowInstance, persons: Dict[str, Person]) -> Optional[EntityRef]:
        if instance.entity_type != PERSON_ENTITY:
            return None
        person = persons.get(instance.entity_id)
        if person is None:
            return None
        return EntityRef(id=person.id, name=person.name, email=person.email, type=PERSON_ENTITY)

    def _instance_fields(self, instance: WorkflowInstance, templates, users, persons) -> dict:
        template = templates.get(instance.template_id)
        return dict(
            id=instance.id,
            template_id=instance.template_id,
            template=TemplateInfo(
                id=template.id,
                name=template.name,
                module_scope=template.module_scope,
                trigger_type=template.trigger_type,
            ) if template is not None else None,
            org_id=instance.org_id,
            entity_type=instance.entity_type,
            entity_id=instance.entity_id,
            entity=self._entity_ref(instance, persons),
            name=instance.name,
            status=instance.status,
            started_at=ensure_utc(instance.started_at),
            due_at=ensure_utc(instance.due_at),
            completed_at=ensure_utc(instance.completed_at),
            total_steps=instance.total_steps,
            completed_steps=instance.completed_steps,
            progress=progress_percent(instance.completed_steps, instance.total_steps),
            started_by_id=instance.started_by_id,
            started_by=user_ref(users, instance.started_by_id),
            owner_id=instance.owner_id,
            owner=person_ref(persons, instance.owner_id),
            metadata=instance.meta,
            created_at=ensure_utc(instance.created_at),
            updated_at=ensure_utc(instance.updated_at),
        )

    @staticmethod
    def _step_fields(step: InstanceStep, definitions: Dict[str, TemplateStep], users, persons) -> dict:
        definition = definitions.get(step.template_step_id) if step.template_step_id else None
        return dict(
            id=step.id,
            instance_id=step.instance_id,
            template_step_id=step.template_step_id,
            parent_step_id=step.parent_step_id,
            name=step.name,
            description=step.description,
            order_index=step.order_index,
            status=step.status,
            assignee_id=step.assignee_id,
            assignee=user_ref(users, step.assignee_id),
            assigned_person_id=step.assigned_person_id,
            assigned_person=person_ref(persons, step.assigned_person_id),
            due_at=ensure_utc(step.due_at),
            started_at=ensure_utc(step.started_at),
            completed_at=ensure_utc(step.completed_at),
            completed_by_id=step.completed_by_id,
            completed_by=user_ref(users, step.completed_by_id),
            notes=step.notes,
            metadata=step.meta,
            template_step=TemplateStepInfo(
                step_type=definition.step_type,
                assignee_type=definition.assignee_type,
                is_required=definition.is_required,
                position_x=definition.position_x,
                position_y=definition.position_y,
                metadata=definition.meta,
            ) if definition is not None else None,
            created_at=ensure_utc(step.created_at),
            updated_at=ensure_utc(step.updated_at),
        )

    async def instance_summaries(self, instances: List[WorkflowInstance]) -> List[InstanceSummary]:
        templates, users, persons = await self._instance_context(instances, [])
        return [
            InstanceSummary(**self._instance_fields(instance, templates, users, persons))
            for instance in instances
        ]

    async def instance_view(self, instance: WorkflowInstance) -> InstanceView:
        steps = await self.instance_repo.get_steps(instance.id)
        templates, users, persons = await self._instance_context([instance], steps)
        definitions = await self.template_repo.get_steps_by_ids(s.template_step_id for s in steps)
        return InstanceView(
            **self._instance_fields(instance, templates, users, persons),
            steps=[
                InstanceStepView(**self._step_fields(step, definitions, users, persons))
                for step in steps
            ],
        )

    async def step_view(self, step: InstanceStep, instance: WorkflowInstance) -> StepDetailView:
        users = await self.directory_repo.get_users(_ids([step.assignee_id, step.completed_by_id]))
        persons = await self.directory_repo.get_persons(_ids([step.assigned_person_id]), org_id=instance.org_id)
        definitions = await self.template_repo.get_steps_by_ids([step.template_step_id])
        return StepDetailView(
            **self._step_fields(step, definitions, users, persons),
            instance=InstanceBrief(
                id=instance.id,
                name=instance.name,
                status=instance.status,
                entity_type=instance.entity_type,
                entity_id=instance.entity_id,
            ),
        )
