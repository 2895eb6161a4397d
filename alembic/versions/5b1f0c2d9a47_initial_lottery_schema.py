"""initial_lottery_schema

Revision ID: 5b1f0c2d9a47
Revises:
Create Date: 2026-10-19 09:12:44.310522

Creates the bidding lottery tables:
- classes, students (single-use bid token), opportunities
- bids (one per student and opportunity), selections
- token_history and audit_log
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1f0c2d9a47'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create lottery schema."""
    op.create_table(
        'classes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('reward_title', sa.String(200), nullable=False),
        sa.Column('reward_description', sa.Text, nullable=True),
        sa.Column('capacity', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('name', name='uq_classes_name'),
    )

    op.create_table(
        'students',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('class_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('student_number', sa.String(50), nullable=True),
        sa.Column('tokens_remaining', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ['class_id'], ['classes.id'],
            name='fk_students_class_id_classes', ondelete='CASCADE'
        ),
        sa.UniqueConstraint(
            'class_id', 'email', 'student_number', name='uq_student_class_email_number'
        ),
    )
    op.create_index('ix_students_class_id', 'students', ['class_id'])

    op.create_table(
        'opportunities',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('class_id', sa.String(36), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('event_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('bid_open_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('capacity', sa.Integer, nullable=True),
        sa.Column('draw_seed', sa.String(64), nullable=True),
        sa.Column('drawn_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ['class_id'], ['classes.id'],
            name='fk_opportunities_class_id_classes', ondelete='CASCADE'
        ),
    )
    op.create_index('ix_opportunities_class_id', 'opportunities', ['class_id'])

    op.create_table(
        'bids',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('opportunity_id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ['student_id'], ['students.id'],
            name='fk_bids_student_id_students', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['opportunity_id'], ['opportunities.id'],
            name='fk_bids_opportunity_id_opportunities', ondelete='CASCADE'
        ),
        sa.UniqueConstraint('student_id', 'opportunity_id', name='uq_bid_student_opportunity'),
    )
    op.create_index('ix_bids_student_id', 'bids', ['student_id'])
    op.create_index('ix_bids_opportunity_id', 'bids', ['opportunity_id'])
    op.create_index('ix_bids_created_at', 'bids', ['created_at'])

    op.create_table(
        'selections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('opportunity_id', sa.String(36), nullable=False),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('selected_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['opportunity_id'], ['opportunities.id'],
            name='fk_selections_opportunity_id_opportunities', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['student_id'], ['students.id'],
            name='fk_selections_student_id_students', ondelete='CASCADE'
        ),
        sa.UniqueConstraint(
            'opportunity_id', 'student_id', name='uq_selection_opportunity_student'
        ),
    )
    op.create_index('ix_selections_opportunity_id', 'selections', ['opportunity_id'])
    op.create_index('ix_selections_student_id', 'selections', ['student_id'])

    op.create_table(
        'token_history',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('class_id', sa.String(36), nullable=False),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('opportunity_id', sa.String(36), nullable=True),
        sa.Column('delta', sa.Integer, nullable=False),
        sa.Column(
            'reason',
            sa.Enum(
                'BID', 'SELECTION_RESET', 'ADMIN_RESTORE',
                name='tokenreason', native_enum=False
            ),
            nullable=False
        ),
        sa.Column('note', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ['class_id'], ['classes.id'],
            name='fk_token_history_class_id_classes', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['student_id'], ['students.id'],
            name='fk_token_history_student_id_students', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['opportunity_id'], ['opportunities.id'],
            name='fk_token_history_opportunity_id_opportunities', ondelete='SET NULL'
        ),
    )
    op.create_index('ix_token_history_class_id', 'token_history', ['class_id'])
    op.create_index('ix_token_history_student_id', 'token_history', ['student_id'])
    op.create_index('ix_token_history_created_at', 'token_history', ['created_at'])

    # class_id is not a foreign key: the row must outlive the class it describes
    op.create_table(
        'audit_log',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('class_id', sa.String(36), nullable=True),
        sa.Column('table_name', sa.String(100), nullable=False),
        sa.Column(
            'action',
            sa.Enum('CREATE', 'DELETE', 'DRAW', 'RESET', name='auditaction', native_enum=False),
            nullable=False
        ),
        sa.Column(
            'status',
            sa.Enum('SUCCESS', 'FAILED', name='auditstatus', native_enum=False),
            nullable=False
        ),
        sa.Column('details', sa.JSON, nullable=True),
        sa.Column('performed_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_log_class_id', 'audit_log', ['class_id'])
    op.create_index('ix_audit_log_performed_at', 'audit_log', ['performed_at'])


def downgrade() -> None:
    """Drop lottery schema."""
    op.drop_index('ix_audit_log_performed_at', table_name='audit_log')
    op.drop_index('ix_audit_log_class_id', table_name='audit_log')
    op.drop_table('audit_log')

    op.drop_index('ix_token_history_created_at', table_name='token_history')
    op.drop_index('ix_token_history_student_id', table_name='token_history')
    op.drop_index('ix_token_history_class_id', table_name='token_history')
    op.drop_table('token_history')

    op.drop_index('ix_selections_student_id', table_name='selections')
    op.drop_index('ix_selections_opportunity_id', table_name='selections')
    op.drop_table('selections')

    op.drop_index('ix_bids_created_at', table_name='bids')
    op.drop_index('ix_bids_opportunity_id', table_name='bids')
    op.drop_index('ix_bids_student_id', table_name='bids')
    op.drop_table('bids')

    op.drop_index('ix_opportunities_class_id', table_name='opportunities')
    op.drop_table('opportunities')

    op.drop_index('ix_students_class_id', table_name='students')
    op.drop_table('students')

    op.drop_table('classes')
