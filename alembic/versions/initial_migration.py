"""Create maintenance management tables

Revision ID: initial_migration
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'initial_migration'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users and permissions
    op.create_table('users',
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=150), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=50), nullable=True),
        sa.Column('last_name', sa.String(length=50), nullable=True),
        sa.Column('activated', sa.Boolean(), nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('email')
    )

    op.create_table('roles',
        sa.Column('role_id', sa.BigInteger(), nullable=False),
        sa.Column('role_name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('role_id'),
        sa.UniqueConstraint('role_name')
    )

    op.create_table('user_roles',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('role_id', sa.BigInteger(), nullable=True),
        sa.Column('user_id', sa.BigInteger(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['role_id'], ['roles.role_id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('permissions',
        sa.Column('permission_id', sa.BigInteger(), nullable=False),
        sa.Column('feature', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('permission_id'),
        sa.UniqueConstraint('feature')
    )

    op.create_table('role_permissions',
        sa.Column('role_id', sa.BigInteger(), nullable=False),
        sa.Column('permission_id', sa.BigInteger(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['role_id'], ['roles.role_id'], ),
        sa.ForeignKeyConstraint(['permission_id'], ['permissions.permission_id'], ),
        sa.PrimaryKeyConstraint('role_id', 'permission_id')
    )

    op.create_table('auth_tokens',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('revoked', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('access_token')
    )
    op.create_index(op.f('ix_auth_tokens_id'), 'auth_tokens', ['id'], unique=False)

    # Asset hierarchy
    op.create_table('plants',
        sa.Column('plant_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('plant_id'),
        sa.UniqueConstraint('name')
    )

    op.create_table('areas',
        sa.Column('area_id', sa.BigInteger(), nullable=False),
        sa.Column('plant_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['plant_id'], ['plants.plant_id'], ),
        sa.PrimaryKeyConstraint('area_id')
    )

    op.create_table('sectors',
        sa.Column('sector_id', sa.BigInteger(), nullable=False),
        sa.Column('area_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['area_id'], ['areas.area_id'], ),
        sa.PrimaryKeyConstraint('sector_id')
    )

    op.create_table('assets',
        sa.Column('asset_id', sa.BigInteger(), nullable=False),
        sa.Column('tag', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('plant_id', sa.BigInteger(), nullable=True),
        sa.Column('area_id', sa.BigInteger(), nullable=True),
        sa.Column('sector_id', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(['plant_id'], ['plants.plant_id'], ),
        sa.ForeignKeyConstraint(['area_id'], ['areas.area_id'], ),
        sa.ForeignKeyConstraint(['sector_id'], ['sectors.sector_id'], ),
        sa.PrimaryKeyConstraint('asset_id'),
        sa.UniqueConstraint('tag')
    )

    op.create_table('asset_runtime_measurements',
        sa.Column('measurement_id', sa.BigInteger(), nullable=False),
        sa.Column('asset_id', sa.BigInteger(), nullable=False),
        sa.Column('reported_hours', sa.Float(), nullable=False),
        sa.Column('measurement_datetime', sa.DateTime(), nullable=False),
        sa.Column('source', sa.String(length=50), nullable=True),
        sa.Column('user_id', sa.BigInteger(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['asset_id'], ['assets.asset_id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('measurement_id')
    )
    op.create_index(
        op.f('ix_asset_runtime_measurements_asset_id'), 'asset_runtime_measurements', ['asset_id'], unique=False
    )
    op.create_index(
        op.f('ix_asset_runtime_measurements_measurement_datetime'),
        'asset_runtime_measurements', ['measurement_datetime'], unique=False
    )

    # Forms; forms.current_version_id is added once form_versions exists
    op.create_table('forms',
        sa.Column('form_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('current_version_id', sa.BigInteger(), nullable=True),
        sa.Column('created_by', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['created_by'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('form_id')
    )

    op.create_table('form_versions',
        sa.Column('form_version_id', sa.BigInteger(), nullable=False),
        sa.Column('form_id', sa.BigInteger(), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('published_by', sa.BigInteger(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(['form_id'], ['forms.form_id'], ),
        sa.ForeignKeyConstraint(['published_by'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('form_version_id'),
        sa.UniqueConstraint('form_id', 'version_number', name='uq_form_version_number')
    )
    op.create_foreign_key(
        'fk_forms_current_version_id', 'forms', 'form_versions',
        ['current_version_id'], ['form_version_id']
    )

    op.create_table('form_tasks',
        sa.Column('task_id', sa.BigInteger(), nullable=False),
        sa.Column('form_id', sa.BigInteger(), nullable=True),
        sa.Column('form_version_id', sa.BigInteger(), nullable=True),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('is_required', sa.Boolean(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('configuration', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['form_id'], ['forms.form_id'], ),
        sa.ForeignKeyConstraint(['form_version_id'], ['form_versions.form_version_id'], ),
        sa.PrimaryKeyConstraint('task_id')
    )

    op.create_table('task_instructions',
        sa.Column('instruction_id', sa.BigInteger(), nullable=False),
        sa.Column('task_id', sa.BigInteger(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('media_path', sa.Text(), nullable=True),
        sa.Column('caption', sa.String(length=255), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['task_id'], ['form_tasks.task_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('instruction_id')
    )

    # Routines
    op.create_table('routines',
        sa.Column('routine_id', sa.BigInteger(), nullable=False),
        sa.Column('asset_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('trigger_type', sa.String(length=20), nullable=False),
        sa.Column('trigger_runtime_hours', sa.Float(), nullable=True),
        sa.Column('trigger_calendar_days', sa.Integer(), nullable=True),
        sa.Column('execution_mode', sa.String(length=20), nullable=False),
        sa.Column('advance_generation_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('auto_approve_work_orders', sa.Boolean(), nullable=True),
        sa.Column('priority_score', sa.Integer(), nullable=True),
        sa.Column('last_execution_runtime_hours', sa.Float(), nullable=True),
        sa.Column('last_execution_completed_at', sa.DateTime(), nullable=True),
        sa.Column('last_execution_form_version_id', sa.BigInteger(), nullable=True),
        sa.Column('form_id', sa.BigInteger(), nullable=True),
        sa.Column('active_form_version_id', sa.BigInteger(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_by', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['asset_id'], ['assets.asset_id'], ),
        sa.ForeignKeyConstraint(['last_execution_form_version_id'], ['form_versions.form_version_id'], ),
        sa.ForeignKeyConstraint(['form_id'], ['forms.form_id'], ),
        sa.ForeignKeyConstraint(['active_form_version_id'], ['form_versions.form_version_id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('routine_id')
    )

    # Work orders
    op.create_table('work_order_categories',
        sa.Column('category_id', sa.BigInteger(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('discipline', sa.String(length=20), nullable=False),
        sa.Column('allowed_sources', sa.JSON(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint('category_id'),
        sa.UniqueConstraint('code')
    )

    op.create_table('work_order_types',
        sa.Column('work_order_type_id', sa.BigInteger(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('category_id', sa.BigInteger(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(['category_id'], ['work_order_categories.category_id'], ),
        sa.PrimaryKeyConstraint('work_order_type_id'),
        sa.UniqueConstraint('code')
    )

    op.create_table('work_orders',
        sa.Column('work_order_id', sa.BigInteger(), nullable=False),
        sa.Column('wo_number', sa.String(length=100), nullable=False),
        sa.Column('discipline', sa.String(length=20), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('work_order_type_id', sa.BigInteger(), nullable=True),
        sa.Column('work_order_category_id', sa.BigInteger(), nullable=True),
        sa.Column('priority', sa.String(length=20), nullable=True),
        sa.Column('priority_score', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('asset_id', sa.BigInteger(), nullable=True),
        sa.Column('source_type', sa.String(length=20), nullable=False),
        sa.Column('source_id', sa.BigInteger(), nullable=True),
        sa.Column('form_id', sa.BigInteger(), nullable=True),
        sa.Column('form_version_id', sa.BigInteger(), nullable=True),
        sa.Column('form_snapshot', sa.JSON(), nullable=True),
        sa.Column('requested_by', sa.BigInteger(), nullable=True),
        sa.Column('requested_at', sa.DateTime(), nullable=True),
        sa.Column('requested_due_date', sa.DateTime(), nullable=True),
        sa.Column('approved_by', sa.BigInteger(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('planned_by', sa.BigInteger(), nullable=True),
        sa.Column('planned_at', sa.DateTime(), nullable=True),
        sa.Column('scheduled_start_date', sa.DateTime(), nullable=True),
        sa.Column('actual_start_date', sa.DateTime(), nullable=True),
        sa.Column('actual_end_date', sa.DateTime(), nullable=True),
        sa.Column('completed_by', sa.BigInteger(), nullable=True),
        sa.Column('verified_by', sa.BigInteger(), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('closed_by', sa.BigInteger(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(['work_order_type_id'], ['work_order_types.work_order_type_id'], ),
        sa.ForeignKeyConstraint(['work_order_category_id'], ['work_order_categories.category_id'], ),
        sa.ForeignKeyConstraint(['asset_id'], ['assets.asset_id'], ),
        sa.ForeignKeyConstraint(['form_id'], ['forms.form_id'], ),
        sa.ForeignKeyConstraint(['form_version_id'], ['form_versions.form_version_id'], ),
        sa.ForeignKeyConstraint(['requested_by'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['approved_by'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['planned_by'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['completed_by'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['verified_by'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['closed_by'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('work_order_id'),
        sa.UniqueConstraint('wo_number')
    )
    op.create_index(op.f('ix_work_orders_status'), 'work_orders', ['status'], unique=False)
    op.create_index('ix_work_orders_source', 'work_orders', ['source_type', 'source_id'], unique=False)

    op.create_table('work_order_status_logs',
        sa.Column('status_log_id', sa.BigInteger(), nullable=False),
        sa.Column('work_order_id', sa.BigInteger(), nullable=False),
        sa.Column('previous_status', sa.String(length=50), nullable=True),
        sa.Column('new_status', sa.String(length=50), nullable=True),
        sa.Column('changed_by', sa.BigInteger(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['work_order_id'], ['work_orders.work_order_id'], ),
        sa.ForeignKeyConstraint(['changed_by'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('status_log_id')
    )

    # Form execution
    op.create_table('form_executions',
        sa.Column('execution_id', sa.BigInteger(), nullable=False),
        sa.Column('form_version_id', sa.BigInteger(), nullable=False),
        sa.Column('work_order_id', sa.BigInteger(), nullable=True),
        sa.Column('user_id', sa.BigInteger(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('form_snapshot', sa.JSON(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['form_version_id'], ['form_versions.form_version_id'], ),
        sa.ForeignKeyConstraint(['work_order_id'], ['work_orders.work_order_id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('execution_id')
    )

    op.create_table('task_responses',
        sa.Column('response_id', sa.BigInteger(), nullable=False),
        sa.Column('execution_id', sa.BigInteger(), nullable=False),
        sa.Column('task_id', sa.BigInteger(), nullable=False),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=True),
        sa.Column('is_out_of_range', sa.Boolean(), nullable=True),
        sa.Column('user_id', sa.BigInteger(), nullable=True),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['execution_id'], ['form_executions.execution_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('response_id'),
        sa.UniqueConstraint('execution_id', 'task_id', name='uq_task_response_per_execution')
    )

    op.create_table('response_attachments',
        sa.Column('attachment_id', sa.BigInteger(), nullable=False),
        sa.Column('response_id', sa.BigInteger(), nullable=False),
        sa.Column('file_path', sa.Text(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('mime_type', sa.String(length=100), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['response_id'], ['task_responses.response_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('attachment_id')
    )

    # Audit
    op.create_table('audit_logs',
        sa.Column('audit_id', sa.BigInteger(), nullable=False),
        sa.Column('event_name', sa.String(length=100), nullable=False),
        sa.Column('subject_type', sa.String(length=50), nullable=False),
        sa.Column('subject_id', sa.BigInteger(), nullable=True),
        sa.Column('before_state', sa.String(length=50), nullable=True),
        sa.Column('after_state', sa.String(length=50), nullable=True),
        sa.Column('actor_id', sa.BigInteger(), nullable=True),
        sa.Column('event_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['actor_id'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('audit_id')
    )
    op.create_index(op.f('ix_audit_logs_event_name'), 'audit_logs', ['event_name'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_audit_logs_event_name'), table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_table('response_attachments')
    op.drop_table('task_responses')
    op.drop_table('form_executions')
    op.drop_table('work_order_status_logs')
    op.drop_index('ix_work_orders_source', table_name='work_orders')
    op.drop_index(op.f('ix_work_orders_status'), table_name='work_orders')
    op.drop_table('work_orders')
    op.drop_table('work_order_types')
    op.drop_table('work_order_categories')
    op.drop_table('routines')
    op.drop_table('task_instructions')
    op.drop_table('form_tasks')
    op.drop_constraint('fk_forms_current_version_id', 'forms', type_='foreignkey')
    op.drop_table('form_versions')
    op.drop_table('forms')
    op.drop_index(op.f('ix_asset_runtime_measurements_measurement_datetime'), table_name='asset_runtime_measurements')
    op.drop_index(op.f('ix_asset_runtime_measurements_asset_id'), table_name='asset_runtime_measurements')
    op.drop_table('asset_runtime_measurements')
    op.drop_table('assets')
    op.drop_table('sectors')
    op.drop_table('areas')
    op.drop_table('plants')
    op.drop_index(op.f('ix_auth_tokens_id'), table_name='auth_tokens')
    op.drop_table('auth_tokens')
    op.drop_table('role_permissions')
    op.drop_table('permissions')
    op.drop_table('user_roles')
    op.drop_table('roles')
    op.drop_table('users')
