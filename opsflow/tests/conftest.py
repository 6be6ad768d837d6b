import os

# Must be set before opsflow.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from opsflow.db_models import Base, Person, Role, RoleMember, User
from opsflow.repository import (
    PostgreSQLDirectoryRepository,
    PostgreSQLWorkflowInstanceRepository,
    PostgreSQLWorkflowTemplateRepository,
)
from opsflow.services import WorkflowService
from opsflow.tests.factories import ACTOR_ID, ORG_ID, OTHER_ORG_ID

# In-memory SQLite shared by every session in a test
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def directory(db_session):
    """Users, people and roles the workflow engine can resolve against."""
    db_session.add_all([
        User(id=ACTOR_ID, name="Ada Admin", email="ada@example.com"),
        User(id="user-hr", name="Harper HR", email="harper@example.com"),
        User(id="user-manager", name="Morgan Manager", email="morgan@example.com"),
    ])
    db_session.flush()
    db_session.add_all([
        Person(id="person-manager", org_id=ORG_ID, name="Morgan Manager",
               email="morgan@example.com", user_id="user-manager"),
        Person(id="person-hr", org_id=ORG_ID, name="Harper HR",
               email="harper@example.com", user_id="user-hr"),
        Person(id="person-zed", org_id=ORG_ID, name="Zed Backup", email="zed@example.com"),
        Person(id="person-outsider", org_id=OTHER_ORG_ID, name="Olive Outsider", email="olive@example.com"),
    ])
    db_session.flush()
    db_session.add(Person(id="person-new-hire", org_id=ORG_ID, name="Nova Newhire",
                          email="nova@example.com", manager_id="person-manager"))
    db_session.add(Role(id="role-hr", org_id=ORG_ID, name="HR"))
    db_session.flush()
    db_session.add_all([
        RoleMember(role_id="role-hr", person_id="person-zed"),
        RoleMember(role_id="role-hr", person_id="person-hr"),
    ])
    db_session.commit()
    return db_session


@pytest.fixture
def repositories(db_session):
    return (
        PostgreSQLWorkflowTemplateRepository(db_session),
        PostgreSQLWorkflowInstanceRepository(db_session),
        PostgreSQLDirectoryRepository(db_session),
    )


@pytest.fixture
def service(repositories, directory):
    template_repo, instance_repo, directory_repo = repositories
    return WorkflowService(template_repo, instance_repo, directory_repo)
