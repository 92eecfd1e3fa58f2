"""create plc inventory and import tables

Revision ID: 3f1b7c2a9d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

Hierarchy (sites → cells → equipment → plcs, tags), import bookkeeping
(import_history, background_jobs) and the append-only audit_logs table.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1b7c2a9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def _authors():
    return [
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('updated_by', postgresql.UUID(as_uuid=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'sites',
        _id(),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('location', sa.String(length=255), server_default='', nullable=False),
        *_timestamps(),
        *_authors(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sites_name', 'sites', ['name'], unique=True)

    op.create_table(
        'cells',
        _id(),
        sa.Column('site_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('cell_type', sa.String(length=50), server_default='production', nullable=False),
        *_timestamps(),
        *_authors(),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'name', name='uq_cells_site_name'),
    )
    op.create_index('ix_cells_site_id', 'cells', ['site_id'])

    op.create_table(
        'equipment',
        _id(),
        sa.Column('cell_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('equipment_type', sa.String(length=50), server_default='plc', nullable=False),
        *_timestamps(),
        *_authors(),
        sa.ForeignKeyConstraint(['cell_id'], ['cells.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cell_id', 'name', name='uq_equipment_cell_name'),
    )
    op.create_index('ix_equipment_cell_id', 'equipment', ['cell_id'])

    op.create_table(
        'plcs',
        _id(),
        sa.Column('equipment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tag_id', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('make', sa.String(length=100), nullable=False),
        sa.Column('model', sa.String(length=100), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('firmware_version', sa.String(length=50), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        *_authors(),
        sa.ForeignKeyConstraint(['equipment_id'], ['equipment.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_plcs_equipment_id', 'plcs', ['equipment_id'])
    op.create_index('ix_plcs_make_model', 'plcs', ['make', 'model'])
    op.create_index(
        'uq_plcs_tag_id_live', 'plcs', ['tag_id'], unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )
    op.create_index(
        'uq_plcs_ip_address_live', 'plcs', ['ip_address'], unique=True,
        postgresql_where=sa.text('ip_address IS NOT NULL AND deleted_at IS NULL'),
    )

    op.create_table(
        'tags',
        _id(),
        sa.Column('plc_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['plc_id'], ['plcs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plc_id', 'name', name='uq_tags_plc_name'),
    )
    op.create_index('ix_tags_plc_id', 'tags', ['plc_id'])
    op.create_index('ix_tags_name', 'tags', ['name'])

    op.create_table(
        'import_history',
        _id(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=50), server_default='pending', nullable=False),
        sa.Column('total_rows', sa.Integer(), server_default='0', nullable=False),
        sa.Column('successful_rows', sa.Integer(), server_default='0', nullable=False),
        sa.Column('failed_rows', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_background', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('options', sa.JSON(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('warnings', sa.JSON(), nullable=True),
        sa.Column('created_entities', sa.JSON(), nullable=True),
        sa.Column('created_entity_ids', sa.JSON(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_import_history_user_id', 'import_history', ['user_id'])
    op.create_index('ix_import_history_status', 'import_history', ['status'])

    op.create_table(
        'background_jobs',
        _id(),
        sa.Column('import_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='queued', nullable=False),
        sa.Column('progress', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_rows', sa.Integer(), server_default='0', nullable=False),
        sa.Column('processed_rows', sa.Integer(), server_default='0', nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('options', sa.JSON(), nullable=False),
        sa.Column('celery_task_id', sa.String(length=255), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['import_id'], ['import_history.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('import_id'),
    )
    op.create_index('ix_background_jobs_status', 'background_jobs', ['status'])

    op.create_table(
        'audit_logs',
        _id(),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_email', sa.String(length=255), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=100), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])

    # Audit entries are append-only for the application role.
    op.execute("REVOKE UPDATE, DELETE ON audit_logs FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON audit_logs TO PUBLIC;")


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('background_jobs')
    op.drop_table('import_history')
    op.drop_table('tags')
    op.drop_table('plcs')
    op.drop_table('equipment')
    op.drop_table('cells')
    op.drop_table('sites')
