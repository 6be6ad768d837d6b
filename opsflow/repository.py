# repository.py
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from opsflow.db_models import (
    InstanceStep,
    Person,
    RoleMember,
    Role,
    TemplateEdge,
    TemplateStep,
    User,
    WorkflowInstance,
    WorkflowTemplate,
    WorkflowTriggerRule,
)
from opsflow.db_models.enums import StepStatus, TemplateStatus


class SQLRepository:
    """Shared session plumbing; every repository built on the same session
    joins the same transaction."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    @contextmanager
    def transaction(self):
        try:
            yield self.db_session
            self.db_session.commit()
        except Exception:
            self.db_session.rollback()
            raise

    def _flush(self) -> None:
        self.db_session.flush()


class WorkflowTemplateRepository(ABC):
    @abstractmethod
    def transaction(self):
        pass

    @abstractmethod
    async def get_template(self, template_id: str, org_id: str) -> Optional[WorkflowTemplate]:
        pass

    @abstractmethod
    async def list_templates(
            self,
            org_id: str,
            search: Optional[str] = None,
            status: Optional[TemplateStatus] = None,
            module_scope: Optional[str] = None,
            trigger_type: Optional[str] = None,
            active_only: bool = False,
    ) -> List[WorkflowTemplate]:
        pass

    @abstractmethod
    async def get_steps(self, template_id: str) -> List[TemplateStep]:
        pass

    @abstractmethod
    async def get_edges(self, template_id: str) -> List[TemplateEdge]:
        pass

    @abstractmethod
    async def get_steps_by_ids(self, step_ids: Iterable[str]) -> Dict[str, TemplateStep]:
        pass

    @abstractmethod
    async def get_outgoing_edges(self, template_step_id: str) -> List[TemplateEdge]:
        pass

    @abstractmethod
    async def count_steps(self, template_ids: List[str]) -> Dict[str, int]:
        pass

    @abstractmethod
    async def count_instances(self, template_ids: List[str]) -> Dict[str, int]:
        pass

    @abstractmethod
    async def create_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        pass

    @abstractmethod
    async def update_template(self, template: WorkflowTemplate, fields: Dict) -> WorkflowTemplate:
        pass

    @abstractmethod
    async def clear_graph(self, template_id: str) -> None:
        pass

    @abstractmethod
    async def add_steps(self, steps: List[TemplateStep]) -> None:
        pass

    @abstractmethod
    async def add_edges(self, edges: List[TemplateEdge]) -> None:
        pass

    @abstractmethod
    async def delete_template(self, template_id: str) -> None:
        pass

    @abstractmethod
    async def find_trigger_template(self, org_id: str, trigger_type: str) -> Optional[WorkflowTemplate]:
        pass


class PostgreSQLWorkflowTemplateRepository(SQLRepository, WorkflowTemplateRepository):
    async def get_template(self, template_id: str, org_id: str) -> Optional[WorkflowTemplate]:
        return self.db_session.query(WorkflowTemplate).filter(
            WorkflowTemplate.id == template_id,
            WorkflowTemplate.org_id == org_id,
        ).first()

    async def list_templates(
            self,
            org_id: str,
            search: Optional[str] = None,
            status: Optional[TemplateStatus] = None,
            module_scope: Optional[str] = None,
            trigger_type: Optional[str] = None,
            active_only: bool = False,
    ) -> List[WorkflowTemplate]:
        query = self.db_session.query(WorkflowTemplate).filter(WorkflowTemplate.org_id == org_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(WorkflowTemplate.name.ilike(pattern), WorkflowTemplate.description.ilike(pattern))
            )
        if status:
            query = query.filter(WorkflowTemplate.status == status)
        if module_scope:
            query = query.filter(WorkflowTemplate.module_scope == module_scope)
        if trigger_type:
            query = query.filter(WorkflowTemplate.trigger_type == trigger_type)
        if active_only:
            query = query.filter(WorkflowTemplate.is_active.is_(True))
        return query.order_by(WorkflowTemplate.updated_at.desc()).all()

    async def get_steps(self, template_id: str) -> List[TemplateStep]:
        return self.db_session.query(TemplateStep).filter(
            TemplateStep.template_id == template_id
        ).order_by(TemplateStep.order_index, TemplateStep.created_at).all()

    async def get_edges(self, template_id: str) -> List[TemplateEdge]:
        return self.db_session.query(TemplateEdge).filter(
            TemplateEdge.template_id == template_id
        ).order_by(TemplateEdge.created_at).all()

    async def get_steps_by_ids(self, step_ids: Iterable[str]) -> Dict[str, TemplateStep]:
        ids = {step_id for step_id in step_ids if step_id}
        if not ids:
            return {}
        rows = self.db_session.query(TemplateStep).filter(TemplateStep.id.in_(ids)).all()
        return {row.id: row for row in rows}

    async def get_outgoing_edges(self, template_step_id: str) -> List[TemplateEdge]:
        return self.db_session.query(TemplateEdge).filter(
            TemplateEdge.source_step_id == template_step_id
        ).all()

    async def count_steps(self, template_ids: List[str]) -> Dict[str, int]:
        if not template_ids:
            return {}
        rows = self.db_session.query(TemplateStep.template_id, func.count(TemplateStep.id)).filter(
            TemplateStep.template_id.in_(template_ids)
        ).group_by(TemplateStep.template_id).all()
        return {template_id: count for template_id, count in rows}

    async def count_instances(self, template_ids: List[str]) -> Dict[str, int]:
        if not template_ids:
            return {}
        rows = self.db_session.query(WorkflowInstance.template_id, func.count(WorkflowInstance.id)).filter(
            WorkflowInstance.template_id.in_(template_ids)
        ).group_by(WorkflowInstance.template_id).all()
        return {template_id: count for template_id, count in rows}

    async def create_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        self.db_session.add(template)
        self._flush()
        return template

    async def update_template(self, template: WorkflowTemplate, fields: Dict) -> WorkflowTemplate:
        for key, value in fields.items():
            setattr(template, key, value)
        self._flush()
        return template

    async def clear_graph(self, template_id: str) -> None:
        step_ids = select(TemplateStep.id).where(TemplateStep.template_id == template_id)
        # Running instances keep their steps; only the link to the old definition goes away
        self.db_session.query(InstanceStep).filter(
            InstanceStep.template_step_id.in_(step_ids)
        ).update({InstanceStep.template_step_id: None}, synchronize_session=False)
        self.db_session.query(TemplateEdge).filter(
            TemplateEdge.template_id == template_id
        ).delete(synchronize_session=False)
        self.db_session.query(TemplateStep).filter(
            TemplateStep.template_id == template_id
        ).delete(synchronize_session=False)
        self.db_session.expire_all()

    async def add_steps(self, steps: List[TemplateStep]) -> None:
        self.db_session.add_all(steps)
        self._flush()

    async def add_edges(self, edges: List[TemplateEdge]) -> None:
        self.db_session.add_all(edges)
        self._flush()

    async def delete_template(self, template_id: str) -> None:
        self.db_session.query(WorkflowTriggerRule).filter(
            WorkflowTriggerRule.template_id == template_id
        ).delete(synchronize_session=False)
        self.db_session.query(TemplateEdge).filter(
            TemplateEdge.template_id == template_id
        ).delete(synchronize_session=False)
        self.db_session.query(TemplateStep).filter(
            TemplateStep.template_id == template_id
        ).delete(synchronize_session=False)
        self.db_session.query(WorkflowTemplate).filter(
            WorkflowTemplate.id == template_id
        ).delete(synchronize_session=False)
        self.db_session.expire_all()

    async def find_trigger_template(self, org_id: str, trigger_type: str) -> Optional[WorkflowTemplate]:
        return self.db_session.query(WorkflowTemplate).join(
            WorkflowTriggerRule, WorkflowTriggerRule.template_id == WorkflowTemplate.id
        ).filter(
            WorkflowTriggerRule.org_id == org_id,
            WorkflowTriggerRule.trigger_type == trigger_type,
            WorkflowTriggerRule.enabled.is_(True),
            WorkflowTemplate.org_id == org_id,
        ).order_by(WorkflowTriggerRule.created_at).first()


class WorkflowInstanceRepository(ABC):
    @abstractmethod
    def transaction(self):
        pass

    @abstractmethod
    async def get_instance(self, instance_id: str, org_id: str, for_update: bool = False) -> Optional[WorkflowInstance]:
        pass

    @abstractmethod
    async def list_instances(
            self,
            org_id: str,
            search: Optional[str] = None,
            statuses: Optional[List[str]] = None,
            template_id: Optional[str] = None,
            entity_type: Optional[str] = None,
            entity_id: Optional[str] = None,
    ) -> List[WorkflowInstance]:
        pass

    @abstractmethod
    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        pass

    @abstractmethod
    async def add_steps(self, steps: List[InstanceStep]) -> None:
        pass

    @abstractmethod
    async def get_steps(self, instance_id: str, for_update: bool = False) -> List[InstanceStep]:
        pass

    @abstractmethod
    async def get_step(self, step_id: str, org_id: str, for_update: bool = False) -> Optional[InstanceStep]:
        pass

    @abstractmethod
    async def count_completed_steps(self, instance_id: str) -> int:
        pass

    @abstractmethod
    async def save(self) -> None:
        pass


class PostgreSQLWorkflowInstanceRepository(SQLRepository, WorkflowInstanceRepository):
    async def get_instance(self, instance_id: str, org_id: str, for_update: bool = False) -> Optional[WorkflowInstance]:
        query = self.db_session.query(WorkflowInstance).filter(
            WorkflowInstance.id == instance_id,
            WorkflowInstance.org_id == org_id,
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    async def list_instances(
            self,
            org_id: str,
            search: Optional[str] = None,
            statuses: Optional[List[str]] = None,
            template_id: Optional[str] = None,
            entity_type: Optional[str] = None,
            entity_id: Optional[str] = None,
    ) -> List[WorkflowInstance]:
        query = self.db_session.query(WorkflowInstance).filter(WorkflowInstance.org_id == org_id)
        if search:
            query = query.filter(WorkflowInstance.name.ilike(f"%{search}%"))
        if statuses:
            query = query.filter(WorkflowInstance.status.in_(statuses))
        if template_id:
            query = query.filter(WorkflowInstance.template_id == template_id)
        if entity_type:
            query = query.filter(WorkflowInstance.entity_type == entity_type)
        if entity_id:
            query = query.filter(WorkflowInstance.entity_id == entity_id)
        return query.order_by(WorkflowInstance.created_at.desc()).all()

    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        self.db_session.add(instance)
        self._flush()
        return instance

    async def add_steps(self, steps: List[InstanceStep]) -> None:
        self.db_session.add_all(steps)
        self._flush()

    async def get_steps(self, instance_id: str, for_update: bool = False) -> List[InstanceStep]:
        query = self.db_session.query(InstanceStep).filter(InstanceStep.instance_id == instance_id)
        if for_update:
            # Row locks are always taken in id order
            return query.order_by(InstanceStep.id).with_for_update().all()
        return query.order_by(InstanceStep.order_index, InstanceStep.created_at).all()

    async def get_step(self, step_id: str, org_id: str, for_update: bool = False) -> Optional[InstanceStep]:
        # Steps carry no org column; scope them through the owning instance
        query = self.db_session.query(InstanceStep).join(
            WorkflowInstance, WorkflowInstance.id == InstanceStep.instance_id
        ).filter(
            InstanceStep.id == step_id,
            WorkflowInstance.org_id == org_id,
        )
        if for_update:
            query = query.with_for_update(of=InstanceStep).populate_existing()
        return query.first()

    async def count_completed_steps(self, instance_id: str) -> int:
        return self.db_session.query(func.count(InstanceStep.id)).filter(
            InstanceStep.instance_id == instance_id,
            InstanceStep.status == StepStatus.completed,
        ).scalar() or 0

    async def save(self) -> None:
        self._flush()


class DirectoryRepository(ABC):
    """Read-only lookups against the people and identity tables."""

    @abstractmethod
    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, User]:
        pass

    @abstractmethod
    async def get_persons(self, person_ids: Iterable[str], org_id: Optional[str] = None) -> Dict[str, Person]:
        pass

    @abstractmethod
    async def get_person(self, person_id: str, org_id: str) -> Optional[Person]:
        pass

    @abstractmethod
    async def manager_of(self, person_id: str, org_id: str) -> Optional[Person]:
        pass

    @abstractmethod
    async def role_members(self, org_id: str, role_id: Optional[str] = None,
                           role_name: Optional[str] = None) -> List[Person]:
        pass


class PostgreSQLDirectoryRepository(SQLRepository, DirectoryRepository):
    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = {user_id for user_id in user_ids if user_id}
        if not ids:
            return {}
        rows = self.db_session.query(User).filter(User.id.in_(ids)).all()
        return {row.id: row for row in rows}

    async def get_persons(self, person_ids: Iterable[str], org_id: Optional[str] = None) -> Dict[str, Person]:
        ids = {person_id for person_id in person_ids if person_id}
        if not ids:
            return {}
        query = self.db_session.query(Person).filter(Person.id.in_(ids))
        if org_id is not None:
            query = query.filter(Person.org_id == org_id)
        return {row.id: row for row in query.all()}

    async def get_person(self, person_id: str, org_id: str) -> Optional[Person]:
        return self.db_session.query(Person).filter(
            Person.id == person_id,
            Person.org_id == org_id,
        ).first()

    async def manager_of(self, person_id: str, org_id: str) -> Optional[Person]:
        person = await self.get_person(person_id, org_id)
        if not person or not person.manager_id:
            return None
        return await self.get_person(person.manager_id, org_id)

    async def role_members(self, org_id: str, role_id: Optional[str] = None,
                           role_name: Optional[str] = None) -> List[Person]:
        if not role_id and not role_name:
            return []
        query = self.db_session.query(Person).join(
            RoleMember, RoleMember.person_id == Person.id
        ).join(
            Role, Role.id == RoleMember.role_id
        ).filter(Role.org_id == org_id, Person.org_id == org_id)
        if role_id:
            query = query.filter(Role.id == role_id)
        else:
            query = query.filter(Role.name == role_name)
        # Stable order so "first member" is deterministic
        return query.order_by(Person.name, Person.id).all()
