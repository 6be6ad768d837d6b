from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SQLAlchemyEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from opsflow.db_models.base import Base
from opsflow.db_models.enums import (
    AssigneeType,
    EdgeCondition,
    InstanceStatus,
    StepStatus,
    StepType,
    TemplateStatus,
)
from opsflow.utils import new_id, utcnow


class WorkflowTemplate(Base):
    __tablename__ = "workflow_templates"

    id = Column(String, primary_key=True, index=True, default=new_id)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    module_scope = Column(String, nullable=True, index=True)
    trigger_type = Column(String, nullable=True, index=True)
    status = Column(SQLAlchemyEnum(TemplateStatus), nullable=False, default=TemplateStatus.draft)
    is_active = Column(Boolean, nullable=False, default=True)
    default_owner_id = Column(String, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)
    default_due_days = Column(Integer, nullable=True)
    settings = Column(JSON, nullable=True)
    created_by_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    steps = relationship(
        "TemplateStep",
        back_populates="template",
        order_by="TemplateStep.order_index",
    )
    edges = relationship(
        "TemplateEdge",
        back_populates="template",
    )
    instances = relationship("WorkflowInstance", back_populates="template")


class TemplateStep(Base):
    __tablename__ = "workflow_template_steps"
    __table_args__ = (
        Index("ix_workflow_template_steps_order", "template_id", "order_index"),
    )

    id = Column(String, primary_key=True, index=True, default=new_id)
    template_id = Column(
        String, ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_step_id = Column(
        String, ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    step_type = Column(SQLAlchemyEnum(StepType), nullable=False, default=StepType.task)
    order_index = Column(Integer, nullable=False, default=0)
    # Visual designer position, opaque to execution
    position_x = Column(Float, nullable=False, default=0)
    position_y = Column(Float, nullable=False, default=0)
    assignee_type = Column(SQLAlchemyEnum(AssigneeType), nullable=False, default=AssigneeType.unassigned)
    assignee_config = Column(JSON, nullable=True)
    default_assignee_id = Column(String, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)
    due_offset_days = Column(Integer, nullable=True)
    due_offset_from = Column(String, nullable=True, default="workflow_start")
    is_required = Column(Boolean, nullable=False, default=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    template = relationship("WorkflowTemplate", back_populates="steps")


class TemplateEdge(Base):
    __tablename__ = "workflow_template_edges"

    id = Column(String, primary_key=True, index=True, default=new_id)
    template_id = Column(
        String, ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_step_id = Column(
        String, ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_step_id = Column(
        String, ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    condition_type = Column(SQLAlchemyEnum(EdgeCondition), nullable=False, default=EdgeCondition.always)
    condition_config = Column(JSON, nullable=True)
    label = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    template = relationship("WorkflowTemplate", back_populates="edges")


class WorkflowInstance(Base):
    __tablename__ = "workflow_instances"
    __table_args__ = (
        Index("ix_workflow_instances_entity", "entity_type", "entity_id"),
    )

    id = Column(String, primary_key=True, index=True, default=new_id)
    template_id = Column(
        String, ForeignKey("workflow_templates.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    org_id = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    status = Column(SQLAlchemyEnum(InstanceStatus), nullable=False, default=InstanceStatus.pending, index=True)
    owner_id = Column(String, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    # Cached progress counters, maintained by the transition engine
    total_steps = Column(Integer, nullable=False, default=0)
    completed_steps = Column(Integer, nullable=False, default=0)
    started_by_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    template = relationship("WorkflowTemplate", back_populates="instances")
    steps = relationship(
        "InstanceStep",
        back_populates="instance",
        order_by="InstanceStep.order_index",
    )


class InstanceStep(Base):
    __tablename__ = "workflow_instance_steps"

    id = Column(String, primary_key=True, index=True, default=new_id)
    instance_id = Column(
        String, ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    template_step_id = Column(
        String, ForeignKey("workflow_template_steps.id", ondelete="SET NULL"), nullable=True, index=True
    )
    parent_step_id = Column(
        String, ForeignKey("workflow_instance_steps.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    status = Column(SQLAlchemyEnum(StepStatus), nullable=False, default=StepStatus.pending, index=True)
    assignee_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_person_id = Column(String, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True, index=True)
    due_at = Column(DateTime(timezone=True), nullable=True, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    instance = relationship("WorkflowInstance", back_populates="steps")


class WorkflowTriggerRule(Base):
    """Maps an organization's business event to the template it starts."""

    __tablename__ = "workflow_trigger_rules"

    id = Column(String, primary_key=True, index=True, default=new_id)
    org_id = Column(String, nullable=False, index=True)
    trigger_type = Column(String, nullable=False)
    template_id = Column(
        String, ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
