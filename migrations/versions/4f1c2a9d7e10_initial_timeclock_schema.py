"""initial timeclock schema

Revision ID: 4f1c2a9d7e10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False, unique=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('latitude', sa.Numeric(9, 6), nullable=True),
        sa.Column('longitude', sa.Numeric(9, 6), nullable=True),
        sa.Column('geofence_radius_meters', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'terminals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_terminals_location_id', 'terminals', ['location_id'])

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('employee_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('first_name', sa.String(length=80), nullable=False),
        sa.Column('last_name', sa.String(length=80), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('barcode', sa.String(length=128), nullable=True, unique=True),
        sa.Column('default_break_minutes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_employees_location_id', 'employees', ['location_id'])

    op.create_table(
        'face_profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('embedding', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('embedding_version', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'time_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('check_in', sa.DateTime(), nullable=False),
        sa.Column('check_out', sa.DateTime(), nullable=True),
        sa.Column('break_duration_minutes', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_time_entries_employee_id', 'time_entries', ['employee_id'])
    op.create_index('ix_time_entries_check_in', 'time_entries', ['check_in'])
    op.create_index('ix_time_entries_employee_open', 'time_entries', ['employee_id', 'check_out'])

    op.create_table(
        'checkin_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('terminal_id', sa.Integer(), sa.ForeignKey('terminals.id', ondelete='SET NULL'), nullable=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=True),
        sa.Column('time_entry_id', sa.Integer(), sa.ForeignKey('time_entries.id', ondelete='SET NULL'), nullable=True),
        sa.Column('method', sa.String(length=10), nullable=False),
        sa.Column('action', sa.String(length=10), nullable=True),
        sa.Column('req_lat', sa.Numeric(9, 6), nullable=True),
        sa.Column('req_lng', sa.Numeric(9, 6), nullable=True),
        sa.Column('distance_m', sa.Float(), nullable=True),
        sa.Column('face_similarity', sa.Float(), nullable=True),
        sa.Column('result', sa.String(length=20), nullable=False),
        sa.Column('reason_code', sa.String(length=50), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('anomaly', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_checkin_logs_terminal_id', 'checkin_logs', ['terminal_id'])
    op.create_index('ix_checkin_logs_employee_id', 'checkin_logs', ['employee_id'])


def downgrade() -> None:
    op.drop_table('checkin_logs')
    op.drop_table('time_entries')
    op.drop_table('face_profiles')
    op.drop_table('employees')
    op.drop_table('terminals')
    op.drop_table('locations')
