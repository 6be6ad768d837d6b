from datetime import datetime, timedelta, timezone

import pytest

from opsflow.db_models import InstanceStep, TemplateStep, WorkflowInstance
from opsflow.db_models.enums import AssigneeType, StepStatus, StepType
from opsflow.exceptions import NotFoundError, ValidationError
from opsflow.materializer import compute_step_due, step_metadata
from opsflow.models import TemplateUpdate
from opsflow.tests.factories import (
    ACTOR_ID,
    ORG_ID,
    OTHER_ORG_ID,
    ab_template_payload,
    instance_payload,
    step,
    template_payload,
)

START = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


def _definition(**fields):
    fields.setdefault("name", "Issue laptop")
    return TemplateStep(**fields)


def test_due_relative_to_start():
    due = compute_step_due(_definition(due_offset_days=2, due_offset_from="workflow_start"), START, None)
    assert due == START + timedelta(days=2)


def test_no_offset_means_no_due_date():
    assert compute_step_due(_definition(due_offset_from="workflow_start"), START, None) is None


def test_previous_step_anchor_waits_for_predecessor():
    assert compute_step_due(_definition(due_offset_days=1, due_offset_from="previous_step"), START, None) is None


def test_due_relative_to_workflow_due():
    instance_due = START + timedelta(days=10)
    due = compute_step_due(_definition(due_offset_days=-3, due_offset_from="workflow_due"), START, instance_due)
    assert due == START + timedelta(days=7)


def test_workflow_due_anchor_needs_instance_due_date():
    with pytest.raises(ValidationError):
        compute_step_due(_definition(due_offset_days=1, due_offset_from="workflow_due"), START, None)


def test_negative_offset_before_start_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        compute_step_due(_definition(due_offset_days=-1, due_offset_from="workflow_start"), START, None)
    assert "before the workflow starts" in excinfo.value.message


def test_unknown_anchor_is_rejected():
    with pytest.raises(ValidationError):
        compute_step_due(_definition(due_offset_days=1, due_offset_from="next_full_moon"), START, None)


def test_step_metadata_carries_definition_details():
    metadata = step_metadata(_definition(
        step_type=StepType.notification,
        assignee_type=AssigneeType.role,
        assignee_config={"roleName": "HR"},
        is_required=False,
        meta={"checklist": ["badge"]},
    ))
    assert metadata == {
        "checklist": ["badge"],
        "stepType": "notification",
        "assigneeType": "role",
        "assigneeConfig": {"roleName": "HR"},
        "isRequired": False,
    }


@pytest.mark.asyncio
async def test_materialize_copies_every_step(service, db_session):
    template = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload(default_due_days=30))

    instance = await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(template.id))

    assert instance.name == "Employee onboarding"
    assert instance.entity.name == "Nova Newhire"
    assert instance.due_at - instance.started_at == timedelta(days=30)
    assert [s.status for s in instance.steps] == [StepStatus.pending, StepStatus.pending]
    definitions = {s.id for s in template.steps}
    assert {s.template_step_id for s in instance.steps} == definitions
    assert definitions.isdisjoint({s.id for s in instance.steps})
    assert all(s.template_step.step_type == StepType.task for s in instance.steps)


@pytest.mark.asyncio
async def test_instance_overrides(service, db_session):
    template = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload(default_owner_id="person-hr"))
    due_at = datetime.now(timezone.utc) + timedelta(days=5)

    custom = await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(
        template.id, name="Nova's first week", due_at=due_at, owner_id="person-manager",
        metadata={"startDate": "2025-03-03"},
    ))
    default = await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(template.id))

    assert custom.name == "Nova's first week"
    assert custom.due_at == due_at
    assert custom.owner.id == "person-manager"
    assert custom.metadata == {"startDate": "2025-03-03"}
    assert default.owner.id == "person-hr"
    assert default.due_at is None


@pytest.mark.asyncio
async def test_due_date_before_start_is_rejected(service, db_session):
    template = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload())
    with pytest.raises(ValidationError):
        await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(
            template.id, due_at=datetime(2000, 1, 1, tzinfo=timezone.utc),
        ))


@pytest.mark.asyncio
async def test_inactive_template_cannot_start(service, db_session):
    template = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload(is_active=False))
    with pytest.raises(NotFoundError):
        await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(template.id))


@pytest.mark.asyncio
async def test_archived_template_cannot_start(service, db_session):
    template = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload())
    await service.update_template(template.id, ORG_ID, ACTOR_ID, TemplateUpdate(status="archived"))

    with pytest.raises(ValidationError):
        await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(template.id))


@pytest.mark.asyncio
async def test_template_from_other_org_is_not_found(service, db_session):
    template = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload())
    with pytest.raises(NotFoundError):
        await service.create_instance(OTHER_ORG_ID, ACTOR_ID, instance_payload(template.id))


@pytest.mark.asyncio
async def test_failed_materialization_writes_nothing(service, db_session):
    template = await service.create_template(ORG_ID, ACTOR_ID, template_payload(steps=[
        step("fine", due_offset_days=1),
        step("broken", due_offset_days=2, due_offset_from="workflow_due"),
    ]))

    with pytest.raises(ValidationError):
        await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(template.id))

    assert db_session.query(WorkflowInstance).count() == 0
    assert db_session.query(InstanceStep).count() == 0


@pytest.mark.asyncio
async def test_unknown_owner_is_rejected(service, db_session):
    template = await service.create_template(ORG_ID, ACTOR_ID, ab_template_payload())
    with pytest.raises(ValidationError):
        await service.create_instance(ORG_ID, ACTOR_ID, instance_payload(template.id, owner_id="person-outsider"))
