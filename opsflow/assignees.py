import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from opsflow.db_models import Person, TemplateStep
from opsflow.db_models.enums import AssigneeType
from opsflow.repository import DirectoryRepository

logger = logging.getLogger(__name__)

PERSON_ENTITY = "person"


@dataclass(frozen=True)
class AssignmentContext:
    """What a resolver may look at when an instance is materialized."""

    org_id: str
    actor_user_id: Optional[str]
    entity_type: str
    entity_id: str


@dataclass(frozen=True)
class Assignment:
    assignee_id: Optional[str] = None
    assigned_person_id: Optional[str] = None


UNASSIGNED = Assignment()


def _from_person(person: Optional[Person]) -> Assignment:
    if person is None:
        return UNASSIGNED
    return Assignment(assignee_id=person.user_id, assigned_person_id=person.id)


class AssigneeResolver(ABC):
    def __init__(self, directory: DirectoryRepository):
        self.directory = directory

    @abstractmethod
    async def resolve(self, step: TemplateStep, context: AssignmentContext) -> Assignment:
        pass


class SpecificUserResolver(AssigneeResolver):
    async def resolve(self, step: TemplateStep, context: AssignmentContext) -> Assignment:
        config = step.assignee_config or {}
        user_id = config.get("userId")
        if step.default_assignee_id:
            person = await self.directory.get_person(step.default_assignee_id, context.org_id)
            if person is None:
                logger.warning(
                    "Default assignee %s of step %s is gone; leaving step unassigned",
                    step.default_assignee_id, step.id,
                )
                return Assignment(assignee_id=user_id)
            return Assignment(assignee_id=user_id or person.user_id, assigned_person_id=person.id)
        return Assignment(assignee_id=user_id)


class RoleResolver(AssigneeResolver):
    async def resolve(self, step: TemplateStep, context: AssignmentContext) -> Assignment:
        config = step.assignee_config or {}
        members = await self.directory.role_members(
            context.org_id, role_id=config.get("roleId"), role_name=config.get("roleName")
        )
        if not members:
            logger.info("Role assignee for step %s has no members", step.id)
            return UNASSIGNED
        return _from_person(members[0])


class ManagerResolver(AssigneeResolver):
    async def resolve(self, step: TemplateStep, context: AssignmentContext) -> Assignment:
        if context.entity_type != PERSON_ENTITY:
            return UNASSIGNED
        return _from_person(await self.directory.manager_of(context.entity_id, context.org_id))


class CreatorResolver(AssigneeResolver):
    async def resolve(self, step: TemplateStep, context: AssignmentContext) -> Assignment:
        return Assignment(assignee_id=context.actor_user_id)


class UnassignedResolver(AssigneeResolver):
    async def resolve(self, step: TemplateStep, context: AssignmentContext) -> Assignment:
        return UNASSIGNED


RESOLVER_CLASSES = {
    AssigneeType.specific_user: SpecificUserResolver,
    AssigneeType.role: RoleResolver,
    AssigneeType.dynamic_manager: ManagerResolver,
    AssigneeType.dynamic_creator: CreatorResolver,
    AssigneeType.unassigned: UnassignedResolver,
}


class AssigneeRegistry:
    """One resolver per assignee type, sharing a directory."""

    def __init__(self, directory: DirectoryRepository):
        self._resolvers: Dict[AssigneeType, AssigneeResolver] = {
            assignee_type: resolver_cls(directory)
            for assignee_type, resolver_cls in RESOLVER_CLASSES.items()
        }

    def for_type(self, assignee_type) -> AssigneeResolver:
        return self._resolvers[AssigneeType(assignee_type)]

    async def resolve(self, step: TemplateStep, context: AssignmentContext) -> Assignment:
        return await self.for_type(step.assignee_type or AssigneeType.unassigned).resolve(step, context)
