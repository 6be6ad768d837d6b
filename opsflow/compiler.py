"""Graph compiler: turns a designer submission into durable template rows.

A submission names its steps with whatever ids the client holds, durable ids
for steps that already exist and throwaway ids for new ones. Compiling
replaces the template's whole graph. Every submitted step gets a fresh
durable id; parent links and edges are rewritten through an :class:`IdRemap`
so the order of the submitted list never matters.
"""
import logging
from typing import Callable, Dict, List, Optional, Sequence

from opsflow.db_models import TemplateEdge, TemplateStep, WorkflowTemplate
from opsflow.db_models.enums import DueAnchor
from opsflow.exceptions import ValidationError
from opsflow.models import EdgeInput, StepInput
from opsflow.repository import DirectoryRepository, WorkflowTemplateRepository
from opsflow.utils import new_id

logger = logging.getLogger(__name__)


class IdRemap:
    """Arena mapping submitted (or source) ids to freshly allocated ids.

    Pass one calls :meth:`allocate` for every node; pass two calls
    :meth:`resolve` for every reference. A reference that was never
    allocated resolves to ``None``.
    """

    def __init__(self, id_factory: Callable[[], str] = new_id):
        self._id_factory = id_factory
        self._mapping: Dict[str, str] = {}

    def allocate(self, source_id: str) -> str:
        if source_id in self._mapping:
            raise ValidationError(f"Duplicate step id '{source_id}' in submission")
        durable_id = self._id_factory()
        self._mapping[source_id] = durable_id
        return durable_id

    def resolve(self, source_id: Optional[str]) -> Optional[str]:
        if source_id is None:
            return None
        return self._mapping.get(source_id)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)


def _submission_keys(steps: Sequence[StepInput]) -> List[str]:
    # Steps sent without an id can't be referenced, but still need an arena slot
    return [step.id if step.id else f"__unnamed_{index}" for index, step in enumerate(steps)]


def validate_graph(steps: Sequence[StepInput], edges: Sequence[EdgeInput]) -> None:
    """Structural checks that need no database access."""
    keys = _submission_keys(steps)
    seen = set()
    for key in keys:
        if key in seen:
            raise ValidationError(f"Duplicate step id '{key}' in submission")
        seen.add(key)

    for key, step in zip(keys, steps):
        if not step.name.strip():
            raise ValidationError("Step name cannot be blank", details={"stepId": key})
        _check_due_offset(key, step)

    parents: Dict[str, Optional[str]] = {}
    for key, step in zip(keys, steps):
        parent = step.parent_step_id
        if parent is None:
            parents[key] = None
            continue
        if parent == key:
            raise ValidationError(f"Step '{step.name}' cannot be its own parent")
        if parent not in seen:
            logger.warning("Rejected step %r: parent %r is not part of the submission", key, parent)
            raise ValidationError(
                f"Step '{step.name}' references unknown parent step '{parent}'",
                details={"stepId": key, "parentStepId": parent},
            )
        parents[key] = parent

    for key in keys:
        visited = {key}
        current = parents.get(key)
        while current is not None:
            if current in visited:
                raise ValidationError(f"Parent links form a cycle at step '{key}'")
            visited.add(current)
            current = parents.get(current)

    for edge in edges:
        for end in (edge.source_step_id, edge.target_step_id):
            if end not in seen:
                logger.warning(
                    "Rejected edge %s -> %s: step %r is not part of the submission",
                    edge.source_step_id, edge.target_step_id, end,
                )
                raise ValidationError(
                    f"Edge references unknown step '{end}'",
                    details={"sourceStepId": edge.source_step_id, "targetStepId": edge.target_step_id},
                )


def _check_due_offset(key: str, step: StepInput) -> None:
    # Only workflow_due offsets may count backwards
    if step.due_offset_days is None or step.due_offset_days >= 0:
        return
    anchor = DueAnchor(step.due_offset_from)
    if anchor in (DueAnchor.workflow_start, DueAnchor.previous_step):
        raise ValidationError(
            f"Step '{step.name}' cannot be due before its {anchor.value.replace('_', ' ')}",
            details={"stepId": key, "dueOffsetDays": step.due_offset_days, "dueOffsetFrom": anchor.value},
        )


class GraphCompiler:
    def __init__(self, template_repo: WorkflowTemplateRepository, directory_repo: DirectoryRepository):
        self.template_repo = template_repo
        self.directory_repo = directory_repo

    async def check_person_references(self, org_id: str, steps: Sequence[StepInput]) -> None:
        wanted = {step.default_assignee_id for step in steps if step.default_assignee_id}
        if not wanted:
            return
        found = await self.directory_repo.get_persons(wanted, org_id=org_id)
        missing = sorted(wanted - set(found))
        if missing:
            raise ValidationError(
                f"Default assignee '{missing[0]}' does not exist",
                details={"missingPersonIds": missing},
            )

    async def replace_graph(
            self,
            template: WorkflowTemplate,
            steps: Sequence[StepInput],
            edges: Sequence[EdgeInput],
    ) -> IdRemap:
        """Swap the template's graph for the submitted one.

        Must run inside the caller's transaction: a reader that sees the
        delete without the inserts would observe an empty template.
        """
        validate_graph(steps, edges)
        await self.check_person_references(template.org_id, steps)

        template_id = template.id
        await self.template_repo.clear_graph(template_id)

        remap = IdRemap()
        keys = _submission_keys(steps)
        rows: List[TemplateStep] = []
        for key, step in zip(keys, steps):
            rows.append(TemplateStep(
                id=remap.allocate(key),
                template_id=template_id,
                parent_step_id=None,
                name=step.name,
                description=step.description,
                step_type=step.step_type,
                order_index=step.order_index,
                position_x=step.position_x,
                position_y=step.position_y,
                assignee_type=step.assignee_type,
                assignee_config=step.assignee_config,
                default_assignee_id=step.default_assignee_id,
                due_offset_days=step.due_offset_days,
                due_offset_from=step.due_offset_from.value,
                is_required=step.is_required,
                meta=step.metadata,
            ))
        await self.template_repo.add_steps(rows)

        for step, row in zip(steps, rows):
            if step.parent_step_id is not None:
                row.parent_step_id = remap.resolve(step.parent_step_id)

        edge_rows = [
            TemplateEdge(
                template_id=template_id,
                source_step_id=remap.resolve(edge.source_step_id),
                target_step_id=remap.resolve(edge.target_step_id),
                condition_type=edge.condition_type,
                condition_config=edge.condition_config,
                label=edge.label,
            )
            for edge in edges
        ]
        await self.template_repo.add_edges(edge_rows)

        logger.info(
            "Compiled template %s: %d steps, %d edges", template_id, len(rows), len(edge_rows)
        )
        return remap
