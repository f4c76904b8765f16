"""issue engine tables

Revision ID: 0001_issue_engine
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_issue_engine'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True, **kw):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kw)


def upgrade():
    op.create_table('company_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128)),
        sa.Column('phone', sa.String(length=32)),
        sa.Column('facility_ids', sa.JSON(), nullable=True),
        _ts('updated_at', server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('company_id', 'user_id', name='uq_company_member'),
    )
    op.create_index('ix_company_members_company_id', 'company_members', ['company_id'])
    op.create_index('ix_company_members_user_id', 'company_members', ['user_id'])

    op.create_table('issues',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('facility_id', sa.Integer(), nullable=False),
        sa.Column('equipment_id', sa.Integer(), nullable=True),
        sa.Column('task_type', sa.String(length=16), nullable=False, server_default='equipment'),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='medium'),
        sa.Column('suggested_priority', sa.String(length=16)),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='created'),
        sa.Column('reported_by', sa.JSON(), nullable=False),
        sa.Column('assigned_to', sa.Integer(), nullable=True),
        _ts('created_at', nullable=False),
        _ts('assigned_at'),
        _ts('responded_at'),
        _ts('accepted_at'),
        _ts('completed_at'),
        _ts('approved_at'),
        _ts('closed_at'),
        _ts('rejected_at'),
        _ts('escalated_at'),
        _ts('sla_deadline'),
        sa.Column('contractor_response', sa.JSON(), nullable=True),
        sa.Column('completion', sa.JSON(), nullable=True),
        sa.Column('execution_metrics', sa.JSON(), nullable=True),
        sa.Column('rating', sa.Integer(), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        _ts('updated_at', server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    for col in ('company_id', 'facility_id', 'equipment_id', 'priority', 'status', 'assigned_to', 'sla_deadline'):
        op.create_index(f'ix_issues_{col}', 'issues', [col])

    op.create_table('vendor_metrics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('contractor_id', sa.Integer(), nullable=False),
        sa.Column('avg_response_minutes', sa.Integer(), nullable=True),
        sa.Column('avg_completion_minutes', sa.Integer(), nullable=True),
        sa.Column('response_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completion_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delayed_jobs_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_jobs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        _ts('updated_at', server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('company_id', 'contractor_id', name='uq_vendor_metrics_pair'),
    )
    op.create_index('ix_vendor_metrics_company_id', 'vendor_metrics', ['company_id'])
    op.create_index('ix_vendor_metrics_contractor_id', 'vendor_metrics', ['contractor_id'])

    op.create_table('vendor_metric_folds',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('issue_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('contractor_id', sa.Integer(), nullable=False),
        sa.Column('dimension', sa.String(length=16), nullable=False),
        sa.Column('sample', sa.Integer(), nullable=True),
        _ts('created_at', server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('issue_id', 'dimension', name='uq_fold_issue_dimension'),
    )
    op.create_index('ix_vendor_metric_folds_issue_id', 'vendor_metric_folds', ['issue_id'])

    op.create_table('notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('issue_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('message', sa.String(length=255), nullable=False),
        sa.Column('priority', sa.String(length=16), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        _ts('created_at', server_default=sa.text('CURRENT_TIMESTAMP')),
        _ts('updated_at', server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    for col in ('user_id', 'company_id', 'issue_id'):
        op.create_index(f'ix_notifications_{col}', 'notifications', [col])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('perms_snapshot', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        _ts('created_at', server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    for col in ('actor_user_id', 'action', 'entity_id'):
        op.create_index(f'ix_audit_logs_{col}', 'audit_logs', [col])


def downgrade():
    for table in ('audit_logs', 'notifications', 'vendor_metric_folds', 'vendor_metrics', 'issues', 'company_members'):
        op.drop_table(table)
