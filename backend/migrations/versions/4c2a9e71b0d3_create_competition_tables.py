"""create competition, question, contestant, answer, quote, setting and session tables

Revision ID: 4c2a9e71b0d3
Revises:
Create Date: 2026-10-19 10:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e71b0d3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'competition' not in existing_tables:
        op.create_table(
            'competition',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=128), nullable=False),
            sa.Column('status', sa.String(length=32), nullable=False, server_default='ACTIVE'),
            sa.Column('contestant_count', sa.Integer(), nullable=True),
            sa.Column('jury_count', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )

    if 'question' not in existing_tables:
        op.create_table(
            'question',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('competition_id', sa.Integer(), sa.ForeignKey('competition.id'), nullable=True),
            sa.Column('content', sa.Text(), nullable=False),
            sa.Column('type', sa.String(length=32), nullable=False, server_default='CLOSED_FORM'),
            sa.Column('options', sa.Text(), nullable=True),
            sa.Column('correct_keys', sa.Text(), nullable=True),
            sa.Column('points', sa.Integer(), nullable=False, server_default='10'),
            sa.Column('duration', sa.Integer(), nullable=False, server_default='30'),
            sa.Column('category', sa.String(length=128), nullable=True),
            sa.Column('media_url', sa.String(length=512), nullable=True),
            sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index('ix_question_competition_id', 'question', ['competition_id'])

    if 'contestant' not in existing_tables:
        op.create_table(
            'contestant',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('competition_id', sa.Integer(), sa.ForeignKey('competition.id'), nullable=False),
            sa.Column('name', sa.String(length=64), nullable=False),
            sa.Column('table_no', sa.Integer(), nullable=True),
            sa.Column('total_score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=32), nullable=False, server_default='ONLINE'),
            sa.Column('socket_id', sa.String(length=128), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_contestant_competition_id', 'contestant', ['competition_id'])
        op.create_index('ix_contestant_socket_id', 'contestant', ['socket_id'])

    if 'answer' not in existing_tables:
        op.create_table(
            'answer',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('question_id', sa.Integer(), sa.ForeignKey('question.id'), nullable=False),
            sa.Column('contestant_id', sa.Integer(), sa.ForeignKey('contestant.id'), nullable=False),
            sa.Column('answer_text', sa.Text(), nullable=False, server_default=''),
            sa.Column('time_remaining', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('is_correct', sa.Boolean(), nullable=True),
            sa.Column('points_awarded', sa.Integer(), nullable=True),
            sa.Column('submit_time', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('question_id', 'contestant_id', name='uq_answer_question_contestant'),
        )
        op.create_index('ix_answer_question_id', 'answer', ['question_id'])
        op.create_index('ix_answer_contestant_id', 'answer', ['contestant_id'])

    if 'quote' not in existing_tables:
        op.create_table(
            'quote',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('text', sa.Text(), nullable=False),
            sa.Column('author', sa.String(length=128), nullable=True),
        )

    if 'setting' not in existing_tables:
        op.create_table(
            'setting',
            sa.Column('key', sa.String(length=64), primary_key=True),
            sa.Column('value', sa.String(length=256), nullable=False),
            sa.Column('description', sa.String(length=256), nullable=True),
        )

    if 'competition_session' not in existing_tables:
        op.create_table(
            'competition_session',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('competition_id', sa.Integer(), sa.ForeignKey('competition.id'), nullable=False, unique=True),
            sa.Column('state', sa.String(length=32), nullable=False, server_default='IDLE'),
            sa.Column('current_question_id', sa.Integer(), sa.ForeignKey('question.id'), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
        )


def downgrade():
    existing_tables = set(sa.inspect(op.get_bind()).get_table_names())
    for table in ('competition_session', 'setting', 'quote', 'answer', 'contestant', 'question', 'competition'):
        if table in existing_tables:
            op.drop_table(table)
