from decimal import Decimal
from enum import Enum as PyEnum
from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class ApprovalStatus(str, PyEnum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class TutorProfile(Base):
    __tablename__ = "tutor_profiles"
    __table_args__ = (
        CheckConstraint("hourly_rate > 0", name="ck_tutor_profile_rate_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True
    )
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus), default=ApprovalStatus.pending
    )

    user = relationship("User")
    availability = relationship(
        "AvailabilitySlot",
        back_populates="tutor",
        order_by="AvailabilitySlot.start_time",
    )
    bookings = relationship("Booking", back_populates="tutor")

    @property
    def is_bookable(self) -> bool:
        return bool(self.is_active) and self.approval_status == ApprovalStatus.approved
