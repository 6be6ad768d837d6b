"""Directory tables owned by the people/identity modules.

The workflow engine only reads these: display names for projections,
managers for dynamic assignment and role membership.
"""
from sqlalchemy import Column, ForeignKey, String

from opsflow.db_models.base import Base
from opsflow.utils import new_id


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True, default=new_id)
    name = Column(String, nullable=True)
    email = Column(String, nullable=False)


class Person(Base):
    __tablename__ = "persons"

    id = Column(String, primary_key=True, index=True, default=new_id)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    manager_id = Column(String, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class Role(Base):
    __tablename__ = "roles"

    id = Column(String, primary_key=True, index=True, default=new_id)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)


class RoleMember(Base):
    __tablename__ = "role_members"

    role_id = Column(String, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    person_id = Column(String, ForeignKey("persons.id", ondelete="CASCADE"), primary_key=True)
