from enum import Enum


class TemplateStatus(str, Enum):
    draft = "draft"
    active = "active"
    archived = "archived"


class StepType(str, Enum):
    task = "task"
    notification = "notification"
    gateway = "gateway"
    group = "group"


class EdgeCondition(str, Enum):
    always = "always"
    if_approved = "if_approved"
    if_rejected = "if_rejected"
    conditional = "conditional"


class AssigneeType(str, Enum):
    specific_user = "specific_user"
    role = "role"
    dynamic_manager = "dynamic_manager"
    dynamic_creator = "dynamic_creator"
    unassigned = "unassigned"


class DueAnchor(str, Enum):
    workflow_start = "workflow_start"
    workflow_due = "workflow_due"
    previous_step = "previous_step"


class InstanceStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    on_hold = "on_hold"


class StepStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
