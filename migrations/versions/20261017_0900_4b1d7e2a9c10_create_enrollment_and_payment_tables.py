"""create enrollment and payment tables

Revision ID: 4b1d7e2a9c10
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4b1d7e2a9c10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        'courses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'students',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('full_name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_students_email', 'students', ['email'])

    op.create_table(
        'course_pricing',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('course_id', sa.Uuid(), sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('individual', sa.Numeric(12, 2), nullable=False),
        sa.Column('batch', sa.Numeric(12, 2), nullable=False),
        sa.Column('min_batch_size', sa.Integer(), nullable=False),
        sa.Column('max_batch_size', sa.Integer(), nullable=False),
        sa.Column('early_bird_discount_pct', sa.Numeric(5, 2), nullable=False),
        sa.Column('group_discount_pct', sa.Numeric(5, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.UniqueConstraint('course_id', 'currency', name='uq_course_pricing_currency'),
        sa.CheckConstraint('individual >= 0 AND batch >= 0', name='ck_course_pricing_non_negative'),
        sa.CheckConstraint('max_batch_size >= min_batch_size', name='ck_course_pricing_batch_sizes'),
        sa.CheckConstraint(
            'early_bird_discount_pct BETWEEN 0 AND 100 AND group_discount_pct BETWEEN 0 AND 100',
            name='ck_course_pricing_discount_pct',
        ),
    )
    op.create_index('ix_course_pricing_course_id', 'course_pricing', ['course_id'])

    op.create_table(
        'batches',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('course_id', sa.Uuid(), sa.ForeignKey('courses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('batch_name', sa.String(128), nullable=False),
        sa.Column('batch_code', sa.String(64), nullable=False, unique=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('enrolled_students', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint("status IN ('Upcoming','Active','Closed')", name='ck_batch_status'),
        sa.CheckConstraint('capacity >= 1', name='ck_batch_capacity_positive'),
        sa.CheckConstraint(
            'enrolled_students >= 0 AND enrolled_students <= capacity',
            name='ck_batch_within_capacity',
        ),
        sa.CheckConstraint('end_date > start_date', name='ck_batch_dates'),
    )
    op.create_index('ix_batches_course_id', 'batches', ['course_id'])
    op.create_index('ix_batches_course_status', 'batches', ['course_id', 'status'])

    op.create_table(
        'enrollments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('student_id', sa.Uuid(), sa.ForeignKey('students.id', ondelete='CASCADE'), nullable=False),
        sa.Column('course_id', sa.Uuid(), sa.ForeignKey('courses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('batch_id', sa.Uuid(), sa.ForeignKey('batches.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('enrollment_type', sa.String(16), nullable=False),
        sa.Column('enrollment_source', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('payment_plan', sa.String(16), nullable=False),
        sa.Column('installments_count', sa.Integer(), nullable=False),
        sa.Column('original_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('final_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('discount_applied', sa.Numeric(12, 2), nullable=False),
        sa.Column('pricing_type', sa.String(16), nullable=False),
        sa.Column('discount_code', sa.String(64), nullable=True),
        sa.Column('enrollment_date', sa.DateTime(), nullable=False),
        sa.Column('access_expiry_date', sa.DateTime(), nullable=False),
        sa.Column('total_amount_paid', sa.Numeric(12, 2), nullable=False),
        sa.Column('next_payment_date', sa.DateTime(), nullable=True),
        sa.Column('batch_size', sa.Integer(), nullable=False),
        sa.Column('is_batch_leader', sa.Boolean(), nullable=False),
        sa.Column('progress_percentage', sa.Integer(), nullable=False),
        sa.Column('lessons_completed', sa.Integer(), nullable=False),
        sa.Column('last_activity_date', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('transferred_to_enrollment_id', sa.Uuid(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending','active','on_hold','completed','cancelled','expired')",
            name='ck_enrollment_status',
        ),
        sa.CheckConstraint("enrollment_type IN ('individual','batch')", name='ck_enrollment_type'),
        sa.CheckConstraint("payment_plan IN ('full','installment')", name='ck_enrollment_payment_plan'),
        sa.CheckConstraint('final_price >= 0 AND total_amount_paid >= 0', name='ck_enrollment_amounts'),
        sa.CheckConstraint(
            "(enrollment_type = 'batch' AND batch_id IS NOT NULL) "
            "OR (enrollment_type = 'individual' AND batch_id IS NULL)",
            name='ck_enrollment_batch_reference',
        ),
    )
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'])
    op.create_index('ix_enrollments_course_id', 'enrollments', ['course_id'])
    op.create_index('ix_enrollments_batch_id', 'enrollments', ['batch_id'])
    op.create_index('ix_enrollments_student_course', 'enrollments', ['student_id', 'course_id'])
    op.create_index('ix_enrollments_status_expiry', 'enrollments', ['status', 'access_expiry_date'])

    op.create_table(
        'installments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('enrollment_id', sa.Uuid(), sa.ForeignKey('enrollments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('paid_date', sa.DateTime(), nullable=True),
        sa.Column('transaction_id', sa.String(128), nullable=True),
        sa.Column('late_fee', sa.Numeric(12, 2), nullable=True),
        sa.Column('skip_reason', sa.String(255), nullable=True),
        sa.UniqueConstraint('enrollment_id', 'number', name='uq_installment_number'),
        sa.CheckConstraint("status IN ('pending','paid','skipped')", name='ck_installment_status'),
        sa.CheckConstraint('amount >= 0', name='ck_installment_amount_non_negative'),
        sa.CheckConstraint('number >= 1', name='ck_installment_number_positive'),
    )
    op.create_index('ix_installments_enrollment_id', 'installments', ['enrollment_id'])

    op.create_table(
        'batch_members',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('enrollment_id', sa.Uuid(), sa.ForeignKey('enrollments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', sa.Uuid(), sa.ForeignKey('students.id', ondelete='CASCADE'), nullable=False),
        sa.Column('joined_date', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('enrollment_id', 'student_id', name='uq_batch_member'),
    )
    op.create_index('ix_batch_members_enrollment_id', 'batch_members', ['enrollment_id'])

    op.create_table(
        'payment_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('enrollment_id', sa.Uuid(), sa.ForeignKey('enrollments.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('method', sa.String(32), nullable=False),
        sa.Column('transaction_id', sa.String(128), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=True),
        sa.Column('gateway_order_id', sa.String(128), nullable=True),
        sa.Column('copied_from_enrollment_id', sa.Uuid(), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('enrollment_id', 'transaction_id', name='uq_payment_enrollment_transaction'),
        sa.CheckConstraint("status IN ('completed','failed','pending')", name='ck_payment_record_status'),
        sa.CheckConstraint('amount >= 0', name='ck_payment_record_amount_non_negative'),
    )
    op.create_index('ix_payment_records_enrollment_id', 'payment_records', ['enrollment_id'])
    op.create_index('ix_payment_records_enrollment_status', 'payment_records', ['enrollment_id', 'status'])
    op.create_index(
        'uq_payment_transaction_original',
        'payment_records',
        ['transaction_id'],
        unique=True,
        sqlite_where=sa.text('copied_from_enrollment_id IS NULL'),
        postgresql_where=sa.text('copied_from_enrollment_id IS NULL'),
    )


def downgrade():
    op.drop_table('payment_records')
    op.drop_table('batch_members')
    op.drop_table('installments')
    op.drop_table('enrollments')
    op.drop_table('batches')
    op.drop_table('course_pricing')
    op.drop_table('students')
    op.drop_table('courses')
