"""create saved_snapshot table

Revision ID: 5b7c9d2e1f30
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5b7c9d2e1f30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    # create_app() may already have created the table with db.create_all()
    if 'saved_snapshot' in set(insp.get_table_names()):
        return

    op.create_table(
        'saved_snapshot',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('session_code', sa.String(length=6), nullable=False),
        sa.Column('file_name', sa.String(length=128), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('file_name'),
    )
    with op.batch_alter_table('saved_snapshot') as batch_op:
        batch_op.create_index('ix_saved_snapshot_kind', ['kind'])
        batch_op.create_index('ix_saved_snapshot_session_code', ['session_code'])
        batch_op.create_index('ix_saved_snapshot_created_at', ['created_at'])


def downgrade():
    op.drop_table('saved_snapshot')
