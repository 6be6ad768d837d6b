"""Business events in, workflow instances out.

Other modules report what happened to people and assets; an organization's
trigger rules decide which template, if any, starts in response.
"""
import logging
from typing import Optional

from opsflow.assignees import PERSON_ENTITY
from opsflow.db_models.enums import TemplateStatus
from opsflow.exceptions import WorkflowError
from opsflow.materializer import InstanceMaterializer
from opsflow.models import EventProcessResult, TriggeredWorkflow, WorkflowEvent
from opsflow.repository import DirectoryRepository, WorkflowTemplateRepository
from opsflow.utils import utcnow

logger = logging.getLogger(__name__)

TRIGGER_STATUSES = {
    "onboarding": "person_onboarding",
    "offboarding": "person_offboarding",
}


class TriggerProcessor:
    def __init__(
            self,
            template_repo: WorkflowTemplateRepository,
            directory_repo: DirectoryRepository,
            materializer: InstanceMaterializer,
    ):
        self.template_repo = template_repo
        self.directory_repo = directory_repo
        self.materializer = materializer

    async def process_event(self, event: WorkflowEvent, org_id: str,
                            actor_user_id: Optional[str]) -> EventProcessResult:
        result = EventProcessResult()
        try:
            if event.type == "person.created":
                status = event.status
            elif event.type == "person.status_changed":
                status = event.new_status if event.new_status != event.previous_status else None
            else:
                logger.info("No workflow handler for %s event (%s)", event.type,
                            event.asset_name or event.asset_id or event.person_id)
                return result

            if status in TRIGGER_STATUSES:
                triggered = await self.trigger_person_workflow(
                    org_id, event.person_id, status, actor_user_id, person_name=event.person_name
                )
                if triggered is not None:
                    result.workflows_triggered.append(triggered)
        except WorkflowError as e:
            logger.warning("Workflow trigger for %s event failed: %s", event.type, e.message)
            result.success = False
            result.errors.append(e.message)
        return result

    async def trigger_person_workflow(
            self,
            org_id: str,
            person_id: str,
            status: str,
            actor_user_id: Optional[str],
            person_name: Optional[str] = None,
    ) -> Optional[TriggeredWorkflow]:
        trigger_type = TRIGGER_STATUSES[status]
        template = await self.template_repo.find_trigger_template(org_id, trigger_type)
        if template is None:
            logger.info("No %s workflow configured for org %s", trigger_type, org_id)
            return None
        if template.status != TemplateStatus.active or not template.is_active:
            logger.info("Template %s for %s is not active", template.id, trigger_type)
            return None

        person = await self.directory_repo.get_person(person_id, org_id)
        if person is None:
            logger.info("Person %s not found; %s workflow not started", person_id, trigger_type)
            return None
        name = person.name or person_name or person.id

        instance = await self.materializer.materialize(
            org_id=org_id,
            actor_user_id=actor_user_id,
            template_id=template.id,
            entity_type=PERSON_ENTITY,
            entity_id=person.id,
            name=f"{template.name} - {name}",
            metadata={
                "personName": name,
                "personEmail": person.email,
                "triggerType": trigger_type,
                "triggeredAt": utcnow().isoformat(),
            },
        )
        logger.info("Started %s workflow %s for person %s", status, instance.id, person.id)
        return TriggeredWorkflow(
            instance_id=instance.id,
            template_name=template.name,
            message=f"Started {status} workflow",
        )
