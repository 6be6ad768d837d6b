import pytest
from pydantic import ValidationError as PydanticValidationError

from opsflow.compiler import IdRemap, validate_graph
from opsflow.db_models import TemplateEdge, TemplateStep
from opsflow.exceptions import ValidationError
from opsflow.models import EdgeInput, TemplateUpdate
from opsflow.tests.factories import (
    ACTOR_ID,
    ORG_ID,
    ab_template_payload,
    edge,
    instance_payload,
    step,
    template_payload,
)


def test_id_remap_allocates_fresh_ids():
    counter = iter(["d1", "d2"])
    remap = IdRemap(id_factory=lambda: next(counter))

    assert remap.allocate("tmp-a") == "d1"
    assert remap.allocate("tmp-b") == "d2"
    assert remap.resolve("tmp-b") == "d2"
    assert remap.resolve("missing") is None
    assert remap.resolve(None) is None
    assert "tmp-a" in remap
    assert len(remap) == 2


def test_id_remap_rejects_duplicate_source_ids():
    remap = IdRemap()
    remap.allocate("tmp-a")
    with pytest.raises(ValidationError):
        remap.allocate("tmp-a")


def test_validate_graph_accepts_children_before_parents():
    validate_graph(
        [step("c", parent_step_id="b"), step("b", parent_step_id="a"), step("a")],
        [edge("a", "b"), edge("b", "c")],
    )


def test_validate_graph_rejects_unknown_parent():
    with pytest.raises(ValidationError) as excinfo:
        validate_graph([step("a", parent_step_id="ghost")], [])
    assert "ghost" in excinfo.value.message


def test_validate_graph_rejects_dangling_edge():
    with pytest.raises(ValidationError):
        validate_graph([step("a")], [edge("a", "ghost")])


def test_validate_graph_rejects_self_parent():
    with pytest.raises(ValidationError):
        validate_graph([step("a", parent_step_id="a")], [])


def test_validate_graph_rejects_parent_cycle():
    with pytest.raises(ValidationError):
        validate_graph([step("a", parent_step_id="b"), step("b", parent_step_id="a")], [])


def test_validate_graph_rejects_duplicate_ids():
    with pytest.raises(ValidationError):
        validate_graph([step("a"), step("a", "Again")], [])


def test_validate_graph_rejects_blank_step_name():
    with pytest.raises(ValidationError) as excinfo:
        validate_graph([step("a"), step("b", "   ")], [])
    assert excinfo.value.details == {"stepId": "b"}


@pytest.mark.parametrize("anchor", ["workflow_start", "previous_step"])
def test_validate_graph_rejects_offsets_before_anchor(anchor):
    with pytest.raises(ValidationError) as excinfo:
        validate_graph(
            [step("a"), step("b", due_offset_days=-10, due_offset_from=anchor)],
            [edge("a", "b")],
        )
    assert excinfo.value.details["dueOffsetFrom"] == anchor
    assert excinfo.value.details["dueOffsetDays"] == -10


def test_validate_graph_allows_counting_back_from_workflow_due():
    validate_graph(
        [
            step("a", due_offset_days=-3, due_offset_from="workflow_due"),
            step("b", due_offset_days=0, due_offset_from="previous_step"),
        ],
        [edge("a", "b")],
    )


def test_conditional_edge_needs_config():
    with pytest.raises(PydanticValidationError):
        EdgeInput(source_step_id="a", target_step_id="b", condition_type="conditional")

    ok = EdgeInput(
        source_step_id="a",
        target_step_id="b",
        condition_type="conditional",
        condition_config={"field": "approved", "operator": "eq", "value": True},
    )
    assert ok.condition_config["operator"] == "eq"


@pytest.mark.asyncio
async def test_compile_resolves_parents_regardless_of_order(service, db_session):
    view = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload())

    by_name = {s.name: s for s in view.steps}
    assert by_name["B"].parent_step_id == by_name["A"].id
    assert by_name["A"].parent_step_id is None
    # Durable ids, not the submitted temporary ones
    assert {by_name["A"].id, by_name["B"].id}.isdisjoint({"tmp-a", "tmp-b"})
    assert all(s.template_id == view.id for s in view.steps)


@pytest.mark.asyncio
async def test_compiled_edges_point_at_steps_of_same_template(service, db_session):
    view = await service.create_template(ORG_ID, ACTOR_ID, template_payload(
        steps=[step("x"), step("y"), step("z")],
        edges=[edge("x", "y"), edge("y", "z", condition_type="if_approved", label="Approved")],
    ))

    step_ids = {s.id for s in view.steps}
    assert len(view.edges) == 2
    for compiled in view.edges:
        assert compiled.source_step_id in step_ids
        assert compiled.target_step_id in step_ids
        assert compiled.template_id == view.id
    labels = {e.label for e in view.edges}
    assert "Approved" in labels


@pytest.mark.asyncio
async def test_recompile_replaces_graph_and_detaches_instances(service, db_session):
    view = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload())
    instance = await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(view.id))

    old_ids = {s.id for s in view.steps}
    updated = await service.update_template(view.id, ORG_ID, ACTOR_ID, TemplateUpdate(
        steps=[step(view.steps[0].id, "Kept name"), step("new-1", "Brand new")],
        edges=[edge(view.steps[0].id, "new-1")],
    ))

    assert len(updated.steps) == 2
    assert old_ids.isdisjoint({s.id for s in updated.steps})
    assert db_session.query(TemplateStep).filter(TemplateStep.id.in_(old_ids)).count() == 0
    assert db_session.query(TemplateEdge).filter(TemplateEdge.template_id == view.id).count() == 1

    # The running instance keeps its steps, only the template link is cut
    refreshed = await service.get_instance(instance.id, ORG_ID)
    assert len(refreshed.steps) == 2
    assert all(s.template_step_id is None for s in refreshed.steps)
    assert all(s.template_step is None for s in refreshed.steps)


@pytest.mark.asyncio
async def test_rejected_submission_leaves_graph_untouched(service, db_session):
    view = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload())

    with pytest.raises(ValidationError):
        await service.update_template(view.id, ORG_ID, ACTOR_ID, TemplateUpdate(
            steps=[step("only")],
            edges=[edge("only", "missing")],
        ))

    again = await service.get_template(view.id, ORG_ID)
    assert [s.id for s in again.steps] == [s.id for s in view.steps]
    assert [e.id for e in again.edges] == [e.id for e in view.edges]


@pytest.mark.asyncio
async def test_unknown_default_assignee_is_rejected(service):
    with pytest.raises(ValidationError):
        await service.create_template(ORG_ID, ACTOR_ID, template_payload(
            steps=[step("a", default_assignee_id="person-nobody", assignee_type="specific_user")],
        ))


@pytest.mark.asyncio
async def test_blank_step_name_is_not_stored(service, db_session):
    with pytest.raises(ValidationError):
        await service.create_template(ORG_ID, ACTOR_ID, template_payload(steps=[step("a", "\t ")]))

    assert db_session.query(TemplateStep).count() == 0
    assert await service.list_templates(ORG_ID) == []


@pytest.mark.asyncio
async def test_negative_offset_is_rejected_on_graph_edit(service, db_session):
    view = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload())

    for anchor in ("workflow_start", "previous_step"):
        with pytest.raises(ValidationError):
            await service.update_template(view.id, ORG_ID, ACTOR_ID, TemplateUpdate(
                steps=[step("a"), step("b", due_offset_days=-10, due_offset_from=anchor)],
                edges=[edge("a", "b")],
            ))

    # The stored graph still starts instances
    instance = await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(view.id))
    assert instance.total_steps == 2
