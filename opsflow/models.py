# models.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from opsflow.db_models.enums import (
    AssigneeType,
    DueAnchor,
    EdgeCondition,
    InstanceStatus,
    StepStatus,
    StepType,
    TemplateStatus,
)


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python; both accepted on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Designer submissions ---

class StepInput(ApiModel):
    # Durable id when editing an existing step, any client-chosen string for a new one
    id: Optional[str] = None
    parent_step_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    step_type: StepType = StepType.task
    order_index: int = 0
    position_x: float = 0
    position_y: float = 0
    assignee_type: AssigneeType = AssigneeType.unassigned
    assignee_config: Optional[Dict[str, Any]] = None
    default_assignee_id: Optional[str] = None
    due_offset_days: Optional[int] = None
    due_offset_from: DueAnchor = DueAnchor.workflow_start
    is_required: bool = True
    metadata: Optional[Dict[str, Any]] = None


class EdgeInput(ApiModel):
    id: Optional[str] = None
    source_step_id: str
    target_step_id: str
    condition_type: EdgeCondition = EdgeCondition.always
    condition_config: Optional[Dict[str, Any]] = None
    label: Optional[str] = None

    @model_validator(mode="after")
    def check_condition_config(self) -> "EdgeInput":
        if self.condition_type == EdgeCondition.conditional:
            config = self.condition_config or {}
            if not config.get("expression") and not (config.get("field") and config.get("operator")):
                raise ValueError(
                    "conditional edges need conditionConfig.expression or conditionConfig.field and operator"
                )
        return self


class TemplateCreate(ApiModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    module_scope: Optional[str] = None
    trigger_type: Optional[str] = None
    status: TemplateStatus = TemplateStatus.draft
    is_active: bool = True
    default_due_days: Optional[int] = Field(None, ge=0)
    default_owner_id: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    steps: Optional[List[StepInput]] = None
    edges: Optional[List[EdgeInput]] = None


class TemplateUpdate(ApiModel):
    """Partial update; only fields present in the payload are applied."""

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    module_scope: Optional[str] = None
    trigger_type: Optional[str] = None
    status: Optional[TemplateStatus] = None
    is_active: Optional[bool] = None
    default_due_days: Optional[int] = Field(None, ge=0)
    default_owner_id: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    steps: Optional[List[StepInput]] = None
    edges: Optional[List[EdgeInput]] = None

    def scalar_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"steps", "edges"})


# --- Instance and step commands ---

class InstanceCreate(ApiModel):
    template_id: str
    entity_type: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    due_at: Optional[datetime] = None
    owner_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class InstanceUpdate(ApiModel):
    status: Optional[InstanceStatus] = None
    due_at: Optional[datetime] = None
    owner_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class StepUpdate(ApiModel):
    status: Optional[StepStatus] = None
    assignee_id: Optional[str] = None
    assigned_person_id: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


# --- Read views ---

class UserRef(ApiModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class PersonRef(ApiModel):
    id: str
    name: str
    email: Optional[str] = None


class EntityRef(ApiModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    type: str


class TemplateStepView(ApiModel):
    id: str
    template_id: str
    parent_step_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    step_type: StepType
    order_index: int
    position_x: float
    position_y: float
    assignee_type: AssigneeType
    assignee_config: Optional[Dict[str, Any]] = None
    default_assignee_id: Optional[str] = None
    default_assignee: Optional[PersonRef] = None
    due_offset_days: Optional[int] = None
    due_offset_from: str = DueAnchor.workflow_start.value
    is_required: bool
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class TemplateEdgeView(ApiModel):
    id: str
    template_id: str
    source_step_id: str
    target_step_id: str
    condition_type: EdgeCondition
    condition_config: Optional[Dict[str, Any]] = None
    label: Optional[str] = None
    created_at: datetime


class TemplateSummary(ApiModel):
    id: str
    org_id: str
    name: str
    description: Optional[str] = None
    module_scope: Optional[str] = None
    trigger_type: Optional[str] = None
    status: TemplateStatus
    is_active: bool
    default_due_days: Optional[int] = None
    default_owner_id: Optional[str] = None
    default_owner: Optional[PersonRef] = None
    settings: Optional[Dict[str, Any]] = None
    created_by_id: Optional[str] = None
    created_by: Optional[UserRef] = None
    steps_count: int = 0
    instances_count: int = 0
    created_at: datetime
    updated_at: datetime


class TemplateView(TemplateSummary):
    steps: List[TemplateStepView] = Field(default_factory=list)
    edges: List[TemplateEdgeView] = Field(default_factory=list)


class TemplateInfo(ApiModel):
    id: str
    name: str
    module_scope: Optional[str] = None
    trigger_type: Optional[str] = None


class TemplateStepInfo(ApiModel):
    step_type: StepType
    assignee_type: AssigneeType
    is_required: bool
    position_x: float
    position_y: float
    metadata: Optional[Dict[str, Any]] = None


class InstanceBrief(ApiModel):
    id: str
    name: str
    status: InstanceStatus
    entity_type: str
    entity_id: str


class InstanceStepView(ApiModel):
    id: str
    instance_id: str
    template_step_id: Optional[str] = None
    parent_step_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    order_index: int
    status: StepStatus
    assignee_id: Optional[str] = None
    assignee: Optional[UserRef] = None
    assigned_person_id: Optional[str] = None
    assigned_person: Optional[PersonRef] = None
    due_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by_id: Optional[str] = None
    completed_by: Optional[UserRef] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    template_step: Optional[TemplateStepInfo] = None
    created_at: datetime
    updated_at: datetime


class StepDetailView(InstanceStepView):
    instance: InstanceBrief


class InstanceSummary(ApiModel):
    id: str
    template_id: str
    template: Optional[TemplateInfo] = None
    org_id: str
    entity_type: str
    entity_id: str
    entity: Optional[EntityRef] = None
    name: str
    status: InstanceStatus
    started_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_steps: int
    completed_steps: int
    progress: int
    started_by_id: Optional[str] = None
    started_by: Optional[UserRef] = None
    owner_id: Optional[str] = None
    owner: Optional[PersonRef] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class InstanceView(InstanceSummary):
    steps: List[InstanceStepView] = Field(default_factory=list)


# --- Trigger events ---

EventType = Literal[
    "person.created",
    "person.status_changed",
    "person.deleted",
    "asset.assigned",
    "asset.returned",
    "asset.maintenance_started",
    "asset.maintenance_completed",
]


class WorkflowEvent(ApiModel):
    type: EventType
    person_id: Optional[str] = None
    person_name: Optional[str] = None
    status: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    asset_id: Optional[str] = None
    asset_name: Optional[str] = None
    previous_person_id: Optional[str] = None
    previous_person_name: Optional[str] = None
    maintenance_id: Optional[str] = None

    @model_validator(mode="after")
    def check_subject(self) -> "WorkflowEvent":
        if self.type.startswith("person.") and not self.person_id:
            raise ValueError(f"{self.type} events need personId")
        if self.type.startswith("asset.") and not self.asset_id:
            raise ValueError(f"{self.type} events need assetId")
        return self


class TriggeredWorkflow(ApiModel):
    instance_id: str
    template_name: Optional[str] = None
    message: Optional[str] = None


class EventProcessResult(ApiModel):
    success: bool = True
    workflows_triggered: List[TriggeredWorkflow] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
