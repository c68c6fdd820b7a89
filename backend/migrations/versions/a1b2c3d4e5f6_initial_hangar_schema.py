"""initial hangar schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-03-02 00:00:00.000000

This migration creates the complete schema from scratch:
- users / transactions: pilot accounts and their signed charge ledger
- aircraft / components: fleet with cached counters and component wear
- flight_submissions / image_logs: meter-photo submissions and OCR readings
- flights: committed, billable flights with component-hours snapshots
- component_recalc_jobs: progress rows for the overhaul snapshot backfill
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """
    Create all tables from scratch.

    WHY: Hours and money are NUMERIC so the application only ever handles
    exact decimals; aircraft.version_id backs optimistic locking of ledger
    commits.
    """

    # ============================================================================
    # users: pilots and administrators
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='PILOT'),
        sa.Column('hourly_rate', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('balance', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role', 'users', ['role'])

    # ============================================================================
    # aircraft: fleet with cached counters (display only)
    # ============================================================================
    op.create_table(
        'aircraft',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tail_number', sa.String(length=16), nullable=False),
        sa.Column('model', sa.String(length=64), nullable=True),
        sa.Column('current_hobbs', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('current_tach', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tail_number'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # components: one per type per aircraft, with optional overhaul anchor
    # ============================================================================
    op.create_table(
        'components',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('aircraft_id', sa.Integer(), nullable=False),
        sa.Column('component_type', sa.String(length=16), nullable=False),
        sa.Column('accumulated_hours', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tbo_limit', sa.Numeric(10, 2), nullable=True),
        sa.Column('last_overhaul_airframe', sa.Numeric(10, 2), nullable=True),
        sa.Column('last_overhaul_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('overhaul_notes', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['aircraft_id'], ['aircraft.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('aircraft_id', 'component_type', name='uq_components_aircraft_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_components_aircraft_id', 'components', ['aircraft_id'])

    # ============================================================================
    # flight_submissions / image_logs: OCR intake
    # ============================================================================
    op.create_table(
        'flight_submissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pilot_id', sa.Integer(), nullable=False),
        sa.Column('aircraft_id', sa.Integer(), nullable=False),
        sa.Column('estado', sa.String(length=16), nullable=False, server_default='PENDIENTE'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('flight_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rate', sa.Numeric(12, 2), nullable=True),
        sa.Column('instructor_rate', sa.Numeric(12, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['pilot_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['aircraft_id'], ['aircraft.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_flight_submissions_pilot_id', 'flight_submissions', ['pilot_id'])
    op.create_index('ix_flight_submissions_aircraft_id', 'flight_submissions', ['aircraft_id'])
    op.create_index('ix_flight_submissions_estado_created', 'flight_submissions', ['estado', 'created_at'])

    op.create_table(
        'image_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('submission_id', sa.Integer(), nullable=False),
        sa.Column('tipo', sa.String(length=16), nullable=False),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('valor_extraido', sa.Numeric(10, 2), nullable=True),
        sa.Column('confianza', sa.Numeric(5, 2), nullable=True),
        sa.Column('validado_manual', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['submission_id'], ['flight_submissions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_image_logs_submission_id', 'image_logs', ['submission_id'])

    # ============================================================================
    # flights: committed ledger rows
    # ============================================================================
    op.create_table(
        'flights',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('fecha', sa.DateTime(timezone=True), nullable=False),
        sa.Column('hobbs_inicio', sa.Numeric(10, 2), nullable=False),
        sa.Column('hobbs_fin', sa.Numeric(10, 2), nullable=False),
        sa.Column('tach_inicio', sa.Numeric(10, 2), nullable=False),
        sa.Column('tach_fin', sa.Numeric(10, 2), nullable=False),
        sa.Column('diff_hobbs', sa.Numeric(10, 2), nullable=False),
        sa.Column('diff_tach', sa.Numeric(10, 2), nullable=False),
        sa.Column('costo', sa.Numeric(14, 2), nullable=False),
        sa.Column('tarifa', sa.Numeric(12, 2), nullable=False),
        sa.Column('instructor_rate', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('airframe_hours', sa.Numeric(10, 2), nullable=True),
        sa.Column('engine_hours', sa.Numeric(10, 2), nullable=True),
        sa.Column('propeller_hours', sa.Numeric(10, 2), nullable=True),
        sa.Column('aprobado', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('pilot_id', sa.Integer(), nullable=False),
        sa.Column('aircraft_id', sa.Integer(), nullable=False),
        sa.Column('submission_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['pilot_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['aircraft_id'], ['aircraft.id'], ),
        sa.ForeignKeyConstraint(['submission_id'], ['flight_submissions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('submission_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_flights_fecha', 'flights', ['fecha'])
    op.create_index('ix_flights_pilot_id', 'flights', ['pilot_id'])
    op.create_index('ix_flights_aircraft_id', 'flights', ['aircraft_id'])
    op.create_index('ix_flights_aircraft_fecha', 'flights', ['aircraft_id', 'fecha'])
    op.create_index('ix_flights_aircraft_airframe', 'flights', ['aircraft_id', 'airframe_hours'])

    # ============================================================================
    # transactions: signed pilot charges, one per flight
    # ============================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('flight_id', sa.Integer(), nullable=True),
        sa.Column('monto', sa.Numeric(14, 2), nullable=False),
        sa.Column('tipo', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['flight_id'], ['flights.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('flight_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_user_created', 'transactions', ['user_id', 'created_at'])

    # ============================================================================
    # component_recalc_jobs: resumable overhaul backfill progress
    # ============================================================================
    op.create_table(
        'component_recalc_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('component_id', sa.Integer(), nullable=False),
        sa.Column('aircraft_id', sa.Integer(), nullable=False),
        sa.Column('field_name', sa.String(length=32), nullable=False),
        sa.Column('anchor', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='RUNNING'),
        sa.Column('last_flight_id', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['component_id'], ['components.id'], ),
        sa.ForeignKeyConstraint(['aircraft_id'], ['aircraft.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_component_recalc_jobs_component_id', 'component_recalc_jobs', ['component_id'])
    op.create_index('ix_component_recalc_jobs_component_status', 'component_recalc_jobs', ['component_id', 'status'])


def downgrade():
    op.drop_table('component_recalc_jobs')
    op.drop_table('transactions')
    op.drop_table('flights')
    op.drop_table('image_logs')
    op.drop_table('flight_submissions')
    op.drop_table('components')
    op.drop_table('aircraft')
    op.drop_table('users')
