"""create_workflow_engine_tables

Revision ID: 3b7d2a9c41e0
Revises:
Create Date: 2026-10-18 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b7d2a9c41e0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

template_status = sa.Enum('draft', 'active', 'archived', name='templatestatus')
step_type = sa.Enum('task', 'notification', 'gateway', 'group', name='steptype')
assignee_type = sa.Enum('specific_user', 'role', 'dynamic_manager', 'dynamic_creator', 'unassigned',
                        name='assigneetype')
edge_condition = sa.Enum('always', 'if_approved', 'if_rejected', 'conditional', name='edgecondition')
instance_status = sa.Enum('pending', 'in_progress', 'completed', 'cancelled', 'on_hold', name='instancestatus')
step_status = sa.Enum('pending', 'in_progress', 'completed', 'cancelled', name='stepstatus')


def upgrade() -> None:
    # Directory tables; other modules own the data, the engine reads it
    op.create_table('users',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=True),
    sa.Column('email', sa.String(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)

    op.create_table('persons',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('org_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=True),
    sa.Column('email', sa.String(), nullable=True),
    sa.Column('manager_id', sa.String(), nullable=True),
    sa.Column('user_id', sa.String(), nullable=True),
    sa.ForeignKeyConstraint(['manager_id'], ['persons.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_persons_id'), 'persons', ['id'], unique=False)
    op.create_index(op.f('ix_persons_org_id'), 'persons', ['org_id'], unique=False)

    op.create_table('roles',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('org_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_roles_id'), 'roles', ['id'], unique=False)
    op.create_index(op.f('ix_roles_org_id'), 'roles', ['org_id'], unique=False)

    op.create_table('role_members',
    sa.Column('role_id', sa.String(), nullable=False),
    sa.Column('person_id', sa.String(), nullable=False),
    sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['person_id'], ['persons.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('role_id', 'person_id')
    )

    op.create_table('workflow_templates',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('org_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('module_scope', sa.String(), nullable=True),
    sa.Column('trigger_type', sa.String(), nullable=True),
    sa.Column('status', template_status, nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('default_owner_id', sa.String(), nullable=True),
    sa.Column('default_due_days', sa.Integer(), nullable=True),
    sa.Column('settings', sa.JSON(), nullable=True),
    sa.Column('created_by_id', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['default_owner_id'], ['persons.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_templates_id'), 'workflow_templates', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_templates_org_id'), 'workflow_templates', ['org_id'], unique=False)
    op.create_index(op.f('ix_workflow_templates_module_scope'), 'workflow_templates', ['module_scope'], unique=False)
    op.create_index(op.f('ix_workflow_templates_trigger_type'), 'workflow_templates', ['trigger_type'], unique=False)

    op.create_table('workflow_template_steps',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('template_id', sa.String(), nullable=False),
    sa.Column('parent_step_id', sa.String(), nullable=True),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('step_type', step_type, nullable=False),
    sa.Column('order_index', sa.Integer(), nullable=False),
    sa.Column('position_x', sa.Float(), nullable=False),
    sa.Column('position_y', sa.Float(), nullable=False),
    sa.Column('assignee_type', assignee_type, nullable=False),
    sa.Column('assignee_config', sa.JSON(), nullable=True),
    sa.Column('default_assignee_id', sa.String(), nullable=True),
    sa.Column('due_offset_days', sa.Integer(), nullable=True),
    sa.Column('due_offset_from', sa.String(), nullable=True),
    sa.Column('is_required', sa.Boolean(), nullable=False),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['parent_step_id'], ['workflow_template_steps.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['default_assignee_id'], ['persons.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_template_steps_id'), 'workflow_template_steps', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_template_steps_template_id'), 'workflow_template_steps', ['template_id'], unique=False)
    op.create_index(op.f('ix_workflow_template_steps_parent_step_id'), 'workflow_template_steps', ['parent_step_id'], unique=False)
    op.create_index('ix_workflow_template_steps_order', 'workflow_template_steps', ['template_id', 'order_index'], unique=False)

    op.create_table('workflow_template_edges',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('template_id', sa.String(), nullable=False),
    sa.Column('source_step_id', sa.String(), nullable=False),
    sa.Column('target_step_id', sa.String(), nullable=False),
    sa.Column('condition_type', edge_condition, nullable=False),
    sa.Column('condition_config', sa.JSON(), nullable=True),
    sa.Column('label', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['source_step_id'], ['workflow_template_steps.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['target_step_id'], ['workflow_template_steps.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_template_edges_id'), 'workflow_template_edges', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_template_edges_template_id'), 'workflow_template_edges', ['template_id'], unique=False)
    op.create_index(op.f('ix_workflow_template_edges_source_step_id'), 'workflow_template_edges', ['source_step_id'], unique=False)
    op.create_index(op.f('ix_workflow_template_edges_target_step_id'), 'workflow_template_edges', ['target_step_id'], unique=False)

    op.create_table('workflow_instances',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('template_id', sa.String(), nullable=False),
    sa.Column('org_id', sa.String(), nullable=False),
    sa.Column('entity_type', sa.String(), nullable=False),
    sa.Column('entity_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('status', instance_status, nullable=False),
    sa.Column('owner_id', sa.String(), nullable=True),
    sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('total_steps', sa.Integer(), nullable=False),
    sa.Column('completed_steps', sa.Integer(), nullable=False),
    sa.Column('started_by_id', sa.String(), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ondelete='RESTRICT'),
    sa.ForeignKeyConstraint(['owner_id'], ['persons.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['started_by_id'], ['users.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_instances_id'), 'workflow_instances', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_instances_template_id'), 'workflow_instances', ['template_id'], unique=False)
    op.create_index(op.f('ix_workflow_instances_org_id'), 'workflow_instances', ['org_id'], unique=False)
    op.create_index(op.f('ix_workflow_instances_status'), 'workflow_instances', ['status'], unique=False)
    op.create_index(op.f('ix_workflow_instances_owner_id'), 'workflow_instances', ['owner_id'], unique=False)
    op.create_index(op.f('ix_workflow_instances_due_at'), 'workflow_instances', ['due_at'], unique=False)
    op.create_index('ix_workflow_instances_entity', 'workflow_instances', ['entity_type', 'entity_id'], unique=False)

    op.create_table('workflow_instance_steps',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('instance_id', sa.String(), nullable=False),
    sa.Column('template_step_id', sa.String(), nullable=True),
    sa.Column('parent_step_id', sa.String(), nullable=True),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('order_index', sa.Integer(), nullable=False),
    sa.Column('status', step_status, nullable=False),
    sa.Column('assignee_id', sa.String(), nullable=True),
    sa.Column('assigned_person_id', sa.String(), nullable=True),
    sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('completed_by_id', sa.String(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['instance_id'], ['workflow_instances.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['template_step_id'], ['workflow_template_steps.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['parent_step_id'], ['workflow_instance_steps.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['assignee_id'], ['users.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['assigned_person_id'], ['persons.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['completed_by_id'], ['users.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_instance_steps_id'), 'workflow_instance_steps', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_instance_steps_instance_id'), 'workflow_instance_steps', ['instance_id'], unique=False)
    op.create_index(op.f('ix_workflow_instance_steps_template_step_id'), 'workflow_instance_steps', ['template_step_id'], unique=False)
    op.create_index(op.f('ix_workflow_instance_steps_parent_step_id'), 'workflow_instance_steps', ['parent_step_id'], unique=False)
    op.create_index(op.f('ix_workflow_instance_steps_status'), 'workflow_instance_steps', ['status'], unique=False)
    op.create_index(op.f('ix_workflow_instance_steps_assignee_id'), 'workflow_instance_steps', ['assignee_id'], unique=False)
    op.create_index(op.f('ix_workflow_instance_steps_assigned_person_id'), 'workflow_instance_steps', ['assigned_person_id'], unique=False)
    op.create_index(op.f('ix_workflow_instance_steps_due_at'), 'workflow_instance_steps', ['due_at'], unique=False)

    op.create_table('workflow_trigger_rules',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('org_id', sa.String(), nullable=False),
    sa.Column('trigger_type', sa.String(), nullable=False),
    sa.Column('template_id', sa.String(), nullable=False),
    sa.Column('enabled', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_trigger_rules_id'), 'workflow_trigger_rules', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_trigger_rules_org_id'), 'workflow_trigger_rules', ['org_id'], unique=False)
    op.create_index(op.f('ix_workflow_trigger_rules_template_id'), 'workflow_trigger_rules', ['template_id'], unique=False)


def downgrade() -> None:
    op.drop_table('workflow_trigger_rules')
    op.drop_table('workflow_instance_steps')
    op.drop_table('workflow_instances')
    op.drop_table('workflow_template_edges')
    op.drop_table('workflow_template_steps')
    op.drop_table('workflow_templates')
    op.drop_table('role_members')
    op.drop_table('roles')
    op.drop_table('persons')
    op.drop_table('users')
    for enum_type in (step_status, instance_status, edge_condition, assignee_type, step_type, template_status):
        enum_type.drop(op.get_bind(), checkfirst=True)
