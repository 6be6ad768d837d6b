from opsflow.db_models.base import Base
from opsflow.db_models.directory import Person, Role, RoleMember, User
from opsflow.db_models.workflow import (
    InstanceStep,
    TemplateEdge,
    TemplateStep,
    WorkflowInstance,
    WorkflowTemplate,
    WorkflowTriggerRule,
)

__all__ = [
    "Base",
    "InstanceStep",
    "Person",
    "Role",
    "RoleMember",
    "TemplateEdge",
    "TemplateStep",
    "User",
    "WorkflowInstance",
    "WorkflowTemplate",
    "WorkflowTriggerRule",
]
