import pytest
from pydantic import ValidationError as PydanticValidationError

from opsflow.db_models import WorkflowInstance, WorkflowTriggerRule
from opsflow.models import TemplateUpdate, WorkflowEvent
from opsflow.tests.factories import ACTOR_ID, ORG_ID, ab_template_payload, step, template_payload


async def _rule(service, db_session, trigger_type="person_onboarding", payload=None):
    template = await service.create_template(
        ORG_ID, ACTOR_ID, payload or ab_template_payload(name="Onboarding", trigger_type=trigger_type)
    )
    db_session.add(WorkflowTriggerRule(org_id=ORG_ID, trigger_type=trigger_type, template_id=template.id))
    db_session.commit()
    return template


def test_person_event_needs_person_id():
    with pytest.raises(PydanticValidationError):
        WorkflowEvent(type="person.created", status="onboarding")
    with pytest.raises(PydanticValidationError):
        WorkflowEvent(type="asset.assigned", person_id="person-hr")


@pytest.mark.asyncio
async def test_new_hire_starts_onboarding(service, db_session):
    template = await _rule(service, db_session)

    result = await service.process_event(ORG_ID, ACTOR_ID, WorkflowEvent(
        type="person.created", person_id="person-new-hire", status="onboarding",
    ))

    assert result.success is True
    assert result.errors == []
    assert len(result.workflows_triggered) == 1
    triggered = result.workflows_triggered[0]
    assert triggered.template_name == "Onboarding"

    instance = await service.get_instance(triggered.instance_id, ORG_ID)
    assert instance.name == "Onboarding - Nova Newhire"
    assert instance.template_id == template.id
    assert instance.entity_type == "person"
    assert instance.entity_id == "person-new-hire"
    assert instance.metadata["personName"] == "Nova Newhire"
    assert instance.metadata["personEmail"] == "nova@example.com"
    assert instance.metadata["triggerType"] == "person_onboarding"
    assert "triggeredAt" in instance.metadata
    assert len(instance.steps) == 2


@pytest.mark.asyncio
async def test_status_change_starts_offboarding(service, db_session):
    await _rule(service, db_session, trigger_type="person_offboarding",
                payload=ab_template_payload(name="Offboarding", trigger_type="person_offboarding"))

    result = await service.process_event(ORG_ID, ACTOR_ID, WorkflowEvent(
        type="person.status_changed", person_id="person-hr",
        previous_status="active", new_status="offboarding",
    ))

    assert len(result.workflows_triggered) == 1
    instance = await service.get_instance(result.workflows_triggered[0].instance_id, ORG_ID)
    assert instance.name == "Offboarding - Harper HR"


@pytest.mark.asyncio
async def test_unchanged_status_starts_nothing(service, db_session):
    await _rule(service, db_session)

    result = await service.process_event(ORG_ID, ACTOR_ID, WorkflowEvent(
        type="person.status_changed", person_id="person-new-hire",
        previous_status="onboarding", new_status="onboarding",
    ))

    assert result.success is True
    assert result.workflows_triggered == []
    assert db_session.query(WorkflowInstance).count() == 0


@pytest.mark.asyncio
async def test_no_rule_means_no_workflow(service, db_session):
    result = await service.process_event(ORG_ID, ACTOR_ID, WorkflowEvent(
        type="person.created", person_id="person-new-hire", status="onboarding",
    ))
    assert result.success is True
    assert result.workflows_triggered == []


@pytest.mark.asyncio
async def test_inactive_rule_template_is_skipped(service, db_session):
    template = await _rule(service, db_session)
    await service.update_template(template.id, ORG_ID, ACTOR_ID, TemplateUpdate(status="draft"))

    result = await service.process_event(ORG_ID, ACTOR_ID, WorkflowEvent(
        type="person.created", person_id="person-new-hire", status="onboarding",
    ))
    assert result.workflows_triggered == []


@pytest.mark.asyncio
async def test_unknown_person_is_skipped(service, db_session):
    await _rule(service, db_session)
    result = await service.process_event(ORG_ID, ACTOR_ID, WorkflowEvent(
        type="person.created", person_id="person-outsider", status="onboarding",
    ))
    assert result.success is True
    assert result.workflows_triggered == []


@pytest.mark.asyncio
async def test_asset_events_are_acknowledged(service, db_session):
    await _rule(service, db_session)
    result = await service.process_event(ORG_ID, ACTOR_ID, WorkflowEvent(
        type="asset.assigned", asset_id="asset-7", asset_name="ThinkPad", person_id="person-new-hire",
    ))
    assert result.success is True
    assert result.workflows_triggered == []
    assert db_session.query(WorkflowInstance).count() == 0


@pytest.mark.asyncio
async def test_trigger_failure_is_reported_not_raised(service, db_session):
    await _rule(service, db_session, payload=template_payload(
        name="Broken onboarding",
        trigger_type="person_onboarding",
        steps=[step("late", due_offset_days=1, due_offset_from="workflow_due")],
    ))

    result = await service.process_event(ORG_ID, ACTOR_ID, WorkflowEvent(
        type="person.created", person_id="person-new-hire", status="onboarding",
    ))

    assert result.success is False
    assert len(result.errors) == 1
    assert result.workflows_triggered == []
    assert db_session.query(WorkflowInstance).count() == 0
