"""Create data quality audit tables

Revision ID: c3d4e5f6a7b8
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'c3d4e5f6a7b8'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ACTIVE_QUEUE = "status IN ('pending', 'in_progress')"


def upgrade() -> None:
    """Business records plus audit run, issue, attempt and queue tables."""
    op.create_table(
        'company',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('industry', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('headquarters', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('website', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('parent_company_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['parent_company_id'], ['company.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'candidate',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('last_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('email', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('phone_number', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('linkedin_url', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('current_company', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('current_company_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['current_company_id'], ['company.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'audit_run',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='global'),
        sa.Column('trigger', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='manual'),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='running'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('total_issues', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('warnings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('info', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('auto_fixed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('flagged_for_review', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('manual_queue', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('data_quality_score', sa.Float(), nullable=True),
        sa.Column('improvement_from_last', sa.Float(), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('detector_errors', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'audit_issue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('audit_run_id', sa.Integer(), nullable=False),
        sa.Column('rule_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('issue_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='other'),
        sa.Column('severity', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('priority', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('entity_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('entity_description', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('description', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('suggested_fix', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('issue_metadata', sa.JSON(), nullable=True),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='detected'),
        sa.Column('flagged_for_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('detected_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_by', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolution_notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.ForeignKeyConstraint(['audit_run_id'], ['audit_run.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_audit_issue_audit_run_id'), 'audit_issue', ['audit_run_id'], unique=False)

    op.create_table(
        'remediation_attempt',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('issue_id', sa.Integer(), nullable=False),
        sa.Column('ai_model', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('reasoning', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('confidence_score', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('data_sources', sa.JSON(), nullable=True),
        sa.Column('proposed_fix', sa.JSON(), nullable=True),
        sa.Column('fixes_applied', sa.JSON(), nullable=True),
        sa.Column('outcome', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('escalation_reason', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('error_message', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=False),
        sa.Column('execution_time_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('human_feedback', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('feedback_notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('learned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['issue_id'], ['audit_issue.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_remediation_attempt_issue_id'), 'remediation_attempt', ['issue_id'], unique=False)

    op.create_table(
        'manual_queue_item',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('issue_id', sa.Integer(), nullable=False),
        sa.Column('priority', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='pending'),
        sa.Column('assigned_to', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('queued_at', sa.DateTime(), nullable=False),
        sa.Column('sla_deadline', sa.DateTime(), nullable=False),
        sa.Column('ai_suggestions', sa.JSON(), nullable=True),
        sa.Column('ai_reasoning', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('time_to_resolve_minutes', sa.Integer(), nullable=True),
        sa.Column('sla_missed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('resolution_action', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['issue_id'], ['audit_issue.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_manual_queue_item_issue_id'), 'manual_queue_item', ['issue_id'], unique=False)
    op.create_index(
        'uq_manual_queue_active_issue',
        'manual_queue_item',
        ['issue_id'],
        unique=True,
        sqlite_where=sa.text(_ACTIVE_QUEUE),
        postgresql_where=sa.text(_ACTIVE_QUEUE),
    )


def downgrade() -> None:
    """Drop all data quality tables."""
    op.drop_index('uq_manual_queue_active_issue', table_name='manual_queue_item')
    op.drop_index(op.f('ix_manual_queue_item_issue_id'), table_name='manual_queue_item')
    op.drop_table('manual_queue_item')
    op.drop_index(op.f('ix_remediation_attempt_issue_id'), table_name='remediation_attempt')
    op.drop_table('remediation_attempt')
    op.drop_index(op.f('ix_audit_issue_audit_run_id'), table_name='audit_issue')
    op.drop_table('audit_issue')
    op.drop_table('audit_run')
    op.drop_table('candidate')
    op.drop_table('company')
