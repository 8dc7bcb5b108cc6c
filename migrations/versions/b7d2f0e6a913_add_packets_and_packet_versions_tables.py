"""add packets and packet_versions tables

Revision ID: b7d2f0e6a913
Revises: 4e1a7c9b2d30
Create Date: 2026-09-09 16:41:07.552810

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7d2f0e6a913'
down_revision: Union[str, Sequence[str], None] = '4e1a7c9b2d30'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # packets table
    op.create_table(
        'packets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('packet_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('content', sa.JSON(), nullable=False),
        sa.Column('coach_notes', sa.Text(), nullable=True),
        sa.Column('rendered_artifact_ref', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('published_by_user_id', sa.Integer(), nullable=True),
        sa.Column('last_modified_by_user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['published_by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['last_modified_by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_packets_user_status', 'packets', ['user_id', 'status'], unique=False)
    op.create_index('idx_packets_status_updated', 'packets', ['status', 'updated_at'], unique=False)

    # packet_versions table (append-only)
    op.create_table(
        'packet_versions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('packet_id', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('content', sa.JSON(), nullable=False),
        sa.Column('author_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('restore_of', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['packet_id'], ['packets.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['author_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('packet_id', 'version', name='uq_packet_version')
    )


def downgrade() -> None:
    op.drop_table('packet_versions')
    op.drop_index('idx_packets_status_updated', table_name='packets')
    op.drop_index('idx_packets_user_status', table_name='packets')
    op.drop_table('packets')
