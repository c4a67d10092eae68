"""internship_core_initial_schema

Revision ID: internship_core_v1
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'internship_core_v1'
down_revision = None
branch_labels = None
depends_on = None

JSONB = postgresql.JSONB(astext_type=sa.Text())


def base_columns():
    """Columns every table shares (id, created_at, updated_at)."""
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    ]


def index_id(table: str) -> None:
    op.create_index(op.f(f'ix_{table}_id'), table, ['id'], unique=False)


def upgrade() -> None:
    # People
    op.create_table(
        'mentors',
        *base_columns(),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('department', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('notification_preferences', JSONB, nullable=True),
    )
    index_id('mentors')
    op.create_index(op.f('ix_mentors_email'), 'mentors', ['email'], unique=True)
    op.create_index(op.f('ix_mentors_department'), 'mentors', ['department'], unique=False)

    op.create_table(
        'admins',
        *base_columns(),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
    )
    index_id('admins')
    op.create_index(op.f('ix_admins_email'), 'admins', ['email'], unique=True)

    op.create_table(
        'companies',
        *base_columns(),
        sa.Column('company_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('website', sa.String(length=500), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('point_of_contact', JSONB, nullable=True),
        sa.Column('admin_review', JSONB, nullable=True),
        sa.Column('restrictions', JSONB, nullable=True),
    )
    index_id('companies')
    op.create_index(op.f('ix_companies_company_name'), 'companies', ['company_name'], unique=False)
    op.create_index(op.f('ix_companies_email'), 'companies', ['email'], unique=True)
    op.create_index(op.f('ix_companies_status'), 'companies', ['status'], unique=False)

    op.create_table(
        'students',
        *base_columns(),
        sa.Column('student_code', sa.String(length=20), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('department', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('mentor_id', sa.Uuid(), nullable=True),
        sa.Column('notification_channels', JSONB, nullable=True),
        sa.Column('credits_earned', sa.Integer(), nullable=False),
        sa.Column('credits_approved', sa.Integer(), nullable=False),
        sa.Column('credits_pending', sa.Integer(), nullable=False),
        sa.Column('completed_internships', sa.Integer(), nullable=False),
        sa.Column('readiness_score', sa.Float(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.CheckConstraint('credits_pending >= 0', name='ck_students_credits_pending_non_negative'),
        sa.ForeignKeyConstraint(['mentor_id'], ['mentors.id']),
    )
    index_id('students')
    op.create_index(op.f('ix_students_student_code'), 'students', ['student_code'], unique=True)
    op.create_index(op.f('ix_students_email'), 'students', ['email'], unique=True)
    op.create_index(op.f('ix_students_department'), 'students', ['department'], unique=False)
    op.create_index(op.f('ix_students_mentor_id'), 'students', ['mentor_id'], unique=False)

    # Internships and applications
    op.create_table(
        'internships',
        *base_columns(),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('department', sa.String(length=100), nullable=True),
        sa.Column('slots', sa.Integer(), nullable=True),
        sa.Column('applied_count', sa.Integer(), nullable=False),
        sa.Column('application_deadline', sa.DateTime(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('approval', JSONB, nullable=True),
        sa.Column('posted_by', sa.String(length=100), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
    )
    index_id('internships')
    op.create_index(op.f('ix_internships_company_id'), 'internships', ['company_id'], unique=False)
    op.create_index(op.f('ix_internships_department'), 'internships', ['department'], unique=False)
    op.create_index(op.f('ix_internships_status'), 'internships', ['status'], unique=False)

    op.create_table(
        'applications',
        *base_columns(),
        sa.Column('application_code', sa.String(length=20), nullable=True),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('internship_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('department', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('cover_letter', sa.Text(), nullable=True),
        sa.Column('mentor_approval', JSONB, nullable=True),
        sa.Column('company_feedback', JSONB, nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('timeline', JSONB, nullable=True),
        sa.Column('applied_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.ForeignKeyConstraint(['internship_id'], ['internships.id']),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.UniqueConstraint('student_id', 'internship_id', name='unique_student_internship_application'),
    )
    index_id('applications')
    op.create_index(op.f('ix_applications_application_code'), 'applications', ['application_code'], unique=True)
    op.create_index(op.f('ix_applications_student_id'), 'applications', ['student_id'], unique=False)
    op.create_index(op.f('ix_applications_internship_id'), 'applications', ['internship_id'], unique=False)
    op.create_index(op.f('ix_applications_company_id'), 'applications', ['company_id'], unique=False)
    op.create_index(op.f('ix_applications_status'), 'applications', ['status'], unique=False)

    # Logbooks and completions
    op.create_table(
        'logbooks',
        *base_columns(),
        sa.Column('logbook_code', sa.String(length=20), nullable=True),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('internship_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=True),
        sa.Column('week_number', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('hours_worked', sa.Float(), nullable=False),
        sa.Column('activities', sa.Text(), nullable=False),
        sa.Column('tasks_completed', JSONB, nullable=True),
        sa.Column('skills_used', JSONB, nullable=True),
        sa.Column('challenges', sa.Text(), nullable=True),
        sa.Column('learnings', sa.Text(), nullable=True),
        sa.Column('ai_summary', JSONB, nullable=True),
        sa.Column('ai_processed_at', sa.DateTime(), nullable=True),
        sa.Column('mentor_review', JSONB, nullable=True),
        sa.Column('company_feedback', JSONB, nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('hours_worked >= 0 AND hours_worked <= 60', name='ck_logbooks_hours_range'),
        sa.CheckConstraint('week_number >= 1', name='ck_logbooks_week_number'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.ForeignKeyConstraint(['internship_id'], ['internships.id']),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.UniqueConstraint('student_id', 'internship_id', 'week_number', name='unique_logbook_week'),
    )
    index_id('logbooks')
    op.create_index(op.f('ix_logbooks_logbook_code'), 'logbooks', ['logbook_code'], unique=True)
    op.create_index(op.f('ix_logbooks_student_id'), 'logbooks', ['student_id'], unique=False)
    op.create_index(op.f('ix_logbooks_internship_id'), 'logbooks', ['internship_id'], unique=False)
    op.create_index(op.f('ix_logbooks_status'), 'logbooks', ['status'], unique=False)

    op.create_table(
        'internship_completions',
        *base_columns(),
        sa.Column('completion_code', sa.String(length=20), nullable=True),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('internship_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=True),
        sa.Column('total_hours', sa.Float(), nullable=False),
        sa.Column('credits_earned', sa.Integer(), nullable=False),
        sa.Column('credits_settled', sa.Integer(), nullable=False),
        sa.Column('settled_at', sa.DateTime(), nullable=True),
        sa.Column('completion_date', sa.DateTime(), nullable=True),
        sa.Column('certificate_url', sa.String(length=1000), nullable=True),
        sa.Column('recommendation_letter_url', sa.String(length=1000), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.ForeignKeyConstraint(['internship_id'], ['internships.id']),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.UniqueConstraint('student_id', 'internship_id', name='unique_student_internship_completion'),
    )
    index_id('internship_completions')
    op.create_index(
        op.f('ix_internship_completions_completion_code'),
        'internship_completions', ['completion_code'], unique=True,
    )
    op.create_index(
        op.f('ix_internship_completions_student_id'),
        'internship_completions', ['student_id'], unique=False,
    )
    op.create_index(
        op.f('ix_internship_completions_internship_id'),
        'internship_completions', ['internship_id'], unique=False,
    )

    # Notifications, reports, AI accounting
    op.create_table(
        'notifications',
        *base_columns(),
        sa.Column('notification_code', sa.String(length=20), nullable=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=True),
        sa.Column('action_url', sa.String(length=1000), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False),
        sa.Column('deliveries', JSONB, nullable=True),
        sa.Column('extra_data', JSONB, nullable=True),
    )
    index_id('notifications')
    op.create_index(op.f('ix_notifications_notification_code'), 'notifications', ['notification_code'], unique=True)
    op.create_index(op.f('ix_notifications_user_id'), 'notifications', ['user_id'], unique=False)

    op.create_table(
        'reports',
        *base_columns(),
        sa.Column('report_code', sa.String(length=30), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('student_id', sa.String(length=64), nullable=True),
        sa.Column('internship_id', sa.String(length=64), nullable=True),
        sa.Column('requested_by', sa.String(length=64), nullable=True),
        sa.Column('sections', JSONB, nullable=True),
        sa.Column('file_url', sa.String(length=1000), nullable=True),
        sa.Column('extra_data', JSONB, nullable=True),
        sa.Column('generated_at', sa.DateTime(), nullable=True),
        sa.Column('failed_reason', sa.Text(), nullable=True),
    )
    index_id('reports')
    op.create_index(op.f('ix_reports_report_code'), 'reports', ['report_code'], unique=True)
    op.create_index(op.f('ix_reports_status'), 'reports', ['status'], unique=False)
    op.create_index(op.f('ix_reports_student_id'), 'reports', ['student_id'], unique=False)
    op.create_index(op.f('ix_reports_internship_id'), 'reports', ['internship_id'], unique=False)

    op.create_table(
        'ai_usage_logs',
        *base_columns(),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=True),
        sa.Column('feature', sa.String(length=100), nullable=True),
        sa.Column('model', sa.String(length=100), nullable=True),
        sa.Column('input_tokens', sa.Integer(), nullable=True),
        sa.Column('output_tokens', sa.Integer(), nullable=True),
        sa.Column('cost_usd', sa.Float(), nullable=True),
    )
    index_id('ai_usage_logs')
    op.create_index(op.f('ix_ai_usage_logs_user_id'), 'ai_usage_logs', ['user_id'], unique=False)
    op.create_index(op.f('ix_ai_usage_logs_feature'), 'ai_usage_logs', ['feature'], unique=False)


def downgrade() -> None:
    # Reverse dependency order
    for table in (
        'ai_usage_logs',
        'reports',
        'notifications',
        'internship_completions',
        'logbooks',
        'applications',
        'internships',
        'students',
        'companies',
        'admins',
        'mentors',
    ):
        op.drop_table(table)
