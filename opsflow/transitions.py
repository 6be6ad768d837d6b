"""State machines for instance steps and instances, plus the rollup that
keeps an instance's counters in line with its steps."""
import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from opsflow.db_models import InstanceStep, WorkflowInstance
from opsflow.db_models.enums import DueAnchor, InstanceStatus, StepStatus
from opsflow.exceptions import InvalidTransitionError
from opsflow.repository import WorkflowInstanceRepository, WorkflowTemplateRepository
from opsflow.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.pending: frozenset({StepStatus.in_progress, StepStatus.cancelled}),
    StepStatus.in_progress: frozenset({StepStatus.completed, StepStatus.cancelled}),
    StepStatus.completed: frozenset(),
    StepStatus.cancelled: frozenset(),
}

INSTANCE_TRANSITIONS: Dict[InstanceStatus, FrozenSet[InstanceStatus]] = {
    InstanceStatus.pending: frozenset({InstanceStatus.in_progress, InstanceStatus.on_hold, InstanceStatus.cancelled}),
    InstanceStatus.in_progress: frozenset({InstanceStatus.completed, InstanceStatus.on_hold, InstanceStatus.cancelled}),
    InstanceStatus.on_hold: frozenset({InstanceStatus.in_progress, InstanceStatus.cancelled}),
    InstanceStatus.completed: frozenset(),
    InstanceStatus.cancelled: frozenset(),
}

TERMINAL_INSTANCE_STATUSES = frozenset({InstanceStatus.completed, InstanceStatus.cancelled})
# Instances whose steps may not change status
FROZEN_INSTANCE_STATUSES = TERMINAL_INSTANCE_STATUSES | {InstanceStatus.on_hold}


def check_step_transition(current, requested) -> bool:
    """Return False for a no-op, True for a legal move; raise otherwise."""
    current, requested = StepStatus(current), StepStatus(requested)
    if current == requested:
        return False
    if requested not in STEP_TRANSITIONS[current]:
        raise InvalidTransitionError("step", current.value, requested.value)
    return True


def check_instance_transition(current, requested) -> bool:
    current, requested = InstanceStatus(current), InstanceStatus(requested)
    if current == requested:
        return False
    if requested not in INSTANCE_TRANSITIONS[current]:
        raise InvalidTransitionError("workflow", current.value, requested.value)
    return True


class TransitionEngine:
    def __init__(self, instance_repo: WorkflowInstanceRepository, template_repo: WorkflowTemplateRepository):
        self.instance_repo = instance_repo
        self.template_repo = template_repo

    async def change_step_status(
            self,
            step: InstanceStep,
            instance: WorkflowInstance,
            requested: StepStatus,
            actor_user_id: Optional[str],
            now: Optional[datetime] = None,
    ) -> bool:
        """Move a step and apply everything that follows from it.

        Both rows must have been read for update in the caller's
        transaction. Returns False when the step already had that status.
        """
        requested = StepStatus(requested)
        if not check_step_transition(step.status, requested):
            return False
        if InstanceStatus(instance.status) in FROZEN_INSTANCE_STATUSES:
            raise InvalidTransitionError(
                "step", StepStatus(step.status).value, requested.value,
                reason=f"workflow is {InstanceStatus(instance.status).value}",
            )

        now = now or utcnow()
        step.status = requested
        if requested == StepStatus.in_progress:
            if step.started_at is None:
                step.started_at = now
            if instance.status == InstanceStatus.pending:
                instance.status = InstanceStatus.in_progress
                logger.info("Workflow %s started by step %s", instance.id, step.id)
        elif requested == StepStatus.completed:
            step.completed_at = now
            step.completed_by_id = actor_user_id
            await self.stamp_successor_due_dates(step, now)

        await self.rollup(instance, now)
        return True

    async def change_instance_status(
            self,
            instance: WorkflowInstance,
            requested: InstanceStatus,
            now: Optional[datetime] = None,
    ) -> bool:
        requested = InstanceStatus(requested)
        if not check_instance_transition(instance.status, requested):
            return False
        instance.status = requested
        if requested == InstanceStatus.completed and instance.completed_at is None:
            instance.completed_at = now or utcnow()
        await self.instance_repo.save()
        logger.info("Workflow %s moved to %s", instance.id, requested.value)
        return True

    async def rollup(self, instance: WorkflowInstance, now: Optional[datetime] = None) -> None:
        # Flush first so the count sees this transaction's step changes
        await self.instance_repo.save()
        completed = await self.instance_repo.count_completed_steps(instance.id)
        instance.completed_steps = completed
        total = instance.total_steps or 0
        if total > 0 and completed == total and instance.status != InstanceStatus.completed:
            instance.status = InstanceStatus.completed
            if instance.completed_at is None:
                instance.completed_at = now or utcnow()
            logger.info("Workflow %s completed: all %d steps done", instance.id, total)
        await self.instance_repo.save()

    async def stamp_successor_due_dates(self, step: InstanceStep, completed_at: datetime) -> None:
        """Give steps anchored on this one their due date now that it is known."""
        if not step.template_step_id:
            return
        edges = await self.template_repo.get_outgoing_edges(step.template_step_id)
        target_ids = {edge.target_step_id for edge in edges}
        if not target_ids:
            return
        definitions = await self.template_repo.get_steps_by_ids(target_ids)
        completed_at = ensure_utc(completed_at)
        for sibling in await self.instance_repo.get_steps(step.instance_id, for_update=True):
            definition = definitions.get(sibling.template_step_id)
            if definition is None or sibling.due_at is not None:
                continue
            if sibling.status in (StepStatus.completed, StepStatus.cancelled):
                continue
            if definition.due_offset_from != DueAnchor.previous_step.value or definition.due_offset_days is None:
                continue
            sibling.due_at = completed_at + timedelta(days=definition.due_offset_days)
            logger.debug("Step %s due %s after predecessor %s", sibling.id, sibling.due_at, step.id)
