"""Pilot-entered counters on flight submissions

Revision ID: b7c8d9e0f1a2
Revises: a1b2c3d4e5f6
Create Date: 2026-04-14
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "b7c8d9e0f1a2"
down_revision = "a1b2c3d4e5f6"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("flight_submissions", schema=None) as batch_op:
        batch_op.add_column(sa.Column("hobbs_final", sa.Numeric(10, 2), nullable=True))
        batch_op.add_column(sa.Column("tach_final", sa.Numeric(10, 2), nullable=True))
        # ESPERANDO_APROBACION does not fit in 16 characters
        batch_op.alter_column(
            "estado",
            existing_type=sa.String(length=16),
            type_=sa.String(length=24),
            existing_nullable=False,
            existing_server_default="PENDIENTE",
        )


def downgrade():
    op.execute(
        "UPDATE flight_submissions SET estado = 'CANCELADO' WHERE estado = 'ESPERANDO_APROBACION'"
    )
    with op.batch_alter_table("flight_submissions", schema=None) as batch_op:
        batch_op.alter_column(
            "estado",
            existing_type=sa.String(length=24),
            type_=sa.String(length=16),
            existing_nullable=False,
            existing_server_default="PENDIENTE",
        )
        batch_op.drop_column("tach_final")
        batch_op.drop_column("hobbs_final")
