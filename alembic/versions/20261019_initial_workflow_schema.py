"""Initial schema for workflows, cases and their audit tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tables matching the declarative models."""
    op.create_table(
        'workflows',
        sa.Column('id', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('record_type', sa.String(length=20), nullable=False),
        sa.Column('states', sa.JSON(), nullable=False),
        sa.Column('transitions', sa.JSON(), nullable=False),
        sa.Column('classification_ids', sa.JSON(), nullable=False),
        sa.Column('location_ids', sa.JSON(), nullable=False),
        sa.Column('sources', sa.JSON(), nullable=False),
        sa.Column('priority_min', sa.Integer(), nullable=True),
        sa.Column('priority_max', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflows_id'), 'workflows', ['id'], unique=False)
    op.create_index(op.f('ix_workflows_code'), 'workflows', ['code'], unique=False)
    op.create_index(op.f('ix_workflows_record_type'), 'workflows', ['record_type'], unique=False)

    op.create_table(
        'cases',
        sa.Column('id', sa.String(length=50), nullable=False),
        sa.Column('record_type', sa.String(length=20), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('workflow_id', sa.String(length=50), nullable=False),
        sa.Column('current_state_id', sa.String(length=50), nullable=False),
        sa.Column('classification_id', sa.String(length=100), nullable=True),
        sa.Column('location_id', sa.String(length=100), nullable=True),
        sa.Column('department_id', sa.String(length=100), nullable=True),
        sa.Column('assignee_id', sa.String(length=100), nullable=True),
        sa.Column('reporter_id', sa.String(length=100), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('source', sa.String(length=50), nullable=True),
        sa.Column('sla_breached', sa.Boolean(), nullable=False),
        sa.Column('sla_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('master_incident_id', sa.String(length=50), nullable=True),
        sa.Column('source_incident_id', sa.String(length=50), nullable=True),
        sa.Column('attachment_ids', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_cases_id'), 'cases', ['id'], unique=False)
    op.create_index(op.f('ix_cases_record_type'), 'cases', ['record_type'], unique=False)
    op.create_index(op.f('ix_cases_workflow_id'), 'cases', ['workflow_id'], unique=False)
    op.create_index(op.f('ix_cases_current_state_id'), 'cases', ['current_state_id'], unique=False)
    op.create_index(op.f('ix_cases_assignee_id'), 'cases', ['assignee_id'], unique=False)
    op.create_index(op.f('ix_cases_master_incident_id'), 'cases', ['master_incident_id'], unique=False)
    op.create_index(op.f('ix_cases_source_incident_id'), 'cases', ['source_incident_id'], unique=False)
    op.create_index(op.f('ix_cases_created_at'), 'cases', ['created_at'], unique=False)

    op.create_table(
        'transition_history',
        sa.Column('id', sa.String(length=50), nullable=False),
        sa.Column('case_id', sa.String(length=50), nullable=False),
        sa.Column('transition_id', sa.String(length=50), nullable=False),
        sa.Column('from_state_id', sa.String(length=50), nullable=False),
        sa.Column('to_state_id', sa.String(length=50), nullable=False),
        sa.Column('executed_by', sa.String(length=100), nullable=False),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('attachment_ids', sa.JSON(), nullable=False),
        sa.Column('feedback', sa.JSON(), nullable=True),
        sa.Column('action_results', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_transition_history_case_id'), 'transition_history', ['case_id'], unique=False)

    op.create_table(
        'case_revisions',
        sa.Column('id', sa.String(length=50), nullable=False),
        sa.Column('case_id', sa.String(length=50), nullable=False),
        sa.Column('revision_number', sa.Integer(), nullable=False),
        sa.Column('action_type', sa.String(length=30), nullable=False),
        sa.Column('action_description', sa.Text(), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=False),
        sa.Column('performed_by', sa.String(length=100), nullable=False),
        sa.Column('performed_by_roles', sa.JSON(), nullable=False),
        sa.Column('comment_id', sa.String(length=50), nullable=True),
        sa.Column('attachment_id', sa.String(length=100), nullable=True),
        sa.Column('transition_history_id', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('case_id', 'revision_number', name='uq_case_revision_number')
    )
    op.create_index(op.f('ix_case_revisions_case_id'), 'case_revisions', ['case_id'], unique=False)
    op.create_index(op.f('ix_case_revisions_action_type'), 'case_revisions', ['action_type'], unique=False)
    op.create_index(op.f('ix_case_revisions_performed_by'), 'case_revisions', ['performed_by'], unique=False)
    op.create_index(op.f('ix_case_revisions_created_at'), 'case_revisions', ['created_at'], unique=False)

    op.create_table(
        'case_comments',
        sa.Column('id', sa.String(length=50), nullable=False),
        sa.Column('case_id', sa.String(length=50), nullable=False),
        sa.Column('author_id', sa.String(length=100), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_case_comments_case_id'), 'case_comments', ['case_id'], unique=False)


def downgrade() -> None:
    """Drop all tables, children first."""
    op.drop_index(op.f('ix_case_comments_case_id'), table_name='case_comments')
    op.drop_table('case_comments')

    op.drop_index(op.f('ix_case_revisions_created_at'), table_name='case_revisions')
    op.drop_index(op.f('ix_case_revisions_performed_by'), table_name='case_revisions')
    op.drop_index(op.f('ix_case_revisions_action_type'), table_name='case_revisions')
    op.drop_index(op.f('ix_case_revisions_case_id'), table_name='case_revisions')
    op.drop_table('case_revisions')

    op.drop_index(op.f('ix_transition_history_case_id'), table_name='transition_history')
    op.drop_table('transition_history')

    for column in ('created_at', 'source_incident_id', 'master_incident_id', 'assignee_id',
                   'current_state_id', 'workflow_id', 'record_type', 'id'):
        op.drop_index(op.f(f'ix_cases_{column}'), table_name='cases')
    op.drop_table('cases')

    op.drop_index(op.f('ix_workflows_record_type'), table_name='workflows')
    op.drop_index(op.f('ix_workflows_code'), table_name='workflows')
    op.drop_index(op.f('ix_workflows_id'), table_name='workflows')
    op.drop_table('workflows')
