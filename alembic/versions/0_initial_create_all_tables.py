"""Initial migration - users, exams, questions, exam attempts

Revision ID: 0_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy Enum columns persist member names
role_enum = sa.Enum('TEACHER', 'STUDENT', name='role_enum')
question_type_enum = sa.Enum(
    'MULTIPLE_CHOICE', 'SHORT_ANSWER', 'LONG_ANSWER', 'TRUE_FALSE', 'FILL_IN_BLANK',
    name='question_type_enum',
)


def upgrade() -> None:
    # ── users table ───────────────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('role', role_enum, nullable=False, server_default='STUDENT'),
        sa.Column('program', sa.String(255), nullable=True),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_user_email'),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    # ── exams table ───────────────────────────────────────────────────
    op.create_table(
        'exams',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('course_code', sa.String(50), nullable=False),
        sa.Column('time_limit', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.UUID(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_exams_course_code', 'exams', ['course_code'])

    # ── questions table ───────────────────────────────────────────────
    op.create_table(
        'questions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('exam_id', sa.UUID(), sa.ForeignKey('exams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('question_type', question_type_enum, nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('correct_answer', sa.JSON(), nullable=True),
        sa.Column('points', sa.Float(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
    )

    # ── exam_attempts table ───────────────────────────────────────────
    op.create_table(
        'exam_attempts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('exam_id', sa.UUID(), sa.ForeignKey('exams.id'), nullable=False),
        sa.Column('student_id', sa.UUID(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('answers', sa.JSON(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('exam_id', 'student_id', name='uq_attempt_exam_student'),
    )
    op.create_index('ix_exam_attempts_exam_id', 'exam_attempts', ['exam_id'])
    op.create_index('ix_exam_attempts_student_id', 'exam_attempts', ['student_id'])
    op.create_index('ix_exam_attempts_completed', 'exam_attempts', ['completed'])


def downgrade() -> None:
    # Drop all tables in reverse order
    op.drop_table('exam_attempts')
    op.drop_table('questions')
    op.drop_table('exams')
    op.drop_table('users')

    # Drop enums
    question_type_enum.drop(op.get_bind(), checkfirst=True)
    role_enum.drop(op.get_bind(), checkfirst=True)
