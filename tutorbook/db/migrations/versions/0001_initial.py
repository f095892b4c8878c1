from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    user_role = postgresql.ENUM("student", "tutor", "admin", name="userrole")
    user_role.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255)),
        sa.Column("role", user_role, server_default="student"),
        sa.Column("penalty_until", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    approval_status = postgresql.ENUM("pending", "approved", "rejected", name="approvalstatus")
    approval_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "tutor_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            unique=True,
        ),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("approval_status", approval_status, server_default="pending"),
        sa.CheckConstraint("hourly_rate > 0", name="ck_tutor_profile_rate_positive"),
    )

    op.create_table(
        "availability_slots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tutor_id",
            sa.Integer(),
            sa.ForeignKey("tutor_profiles.id", ondelete="CASCADE"),
        ),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("timezone", sa.String(length=64), server_default="UTC"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.CheckConstraint(
            "day_of_week >= 0 AND day_of_week <= 6",
            name="ck_availability_slot_day_of_week",
        ),
        sa.CheckConstraint("start_time < end_time", name="ck_availability_slot_order"),
    )
    op.create_index("ix_availability_slots_tutor_id", "availability_slots", ["tutor_id"])

    booking_status = postgresql.ENUM(
        "pending",
        "confirmed",
        "completed",
        "cancelled",
        "refunded",
        name="bookingstatus",
    )
    booking_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column(
            "tutor_id",
            sa.Integer(),
            sa.ForeignKey("tutor_profiles.id", ondelete="CASCADE"),
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("status", booking_status, server_default="pending"),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("checkout_session_id", sa.String(length=255)),
        sa.Column("payment_id", sa.String(length=255)),
        sa.Column("refund_id", sa.String(length=255)),
        sa.Column("call_ended_at", sa.DateTime(timezone=True)),
        sa.Column("is_late_cancellation", sa.Boolean()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_by", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("duration IN (30, 60, 90)", name="ck_booking_duration"),
    )
    op.create_index("ix_bookings_student_id", "bookings", ["student_id"])
    op.create_index("ix_bookings_payment_id", "bookings", ["payment_id"])
    op.create_index("ix_booking_tutor_scheduled", "bookings", ["tutor_id", "scheduled_at"])
    op.create_index("ix_booking_status_scheduled", "bookings", ["status", "scheduled_at"])


def downgrade() -> None:
    op.drop_index("ix_booking_status_scheduled", table_name="bookings")
    op.drop_index("ix_booking_tutor_scheduled", table_name="bookings")
    op.drop_index("ix_bookings_payment_id", table_name="bookings")
    op.drop_index("ix_bookings_student_id", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_availability_slots_tutor_id", table_name="availability_slots")
    op.drop_table("availability_slots")
    op.drop_table("tutor_profiles")
    op.drop_table("users")
    postgresql.ENUM(name="bookingstatus").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="approvalstatus").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="userrole").drop(op.get_bind(), checkfirst=True)
