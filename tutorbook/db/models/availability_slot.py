from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class AvailabilitySlot(Base):
    """Weekly-recurring open interval of a tutor.

    ``day_of_week`` counts from Sunday (0) to Saturday (6). ``start_time`` and
    ``end_time`` are ``HH:MM`` wall-clock strings read as UTC; ``timezone`` is
    the label the tutor entered them in.
    """

    __tablename__ = "availability_slots"
    __table_args__ = (
        CheckConstraint(
            "day_of_week >= 0 AND day_of_week <= 6",
            name="ck_availability_slot_day_of_week",
        ),
        CheckConstraint("start_time < end_time", name="ck_availability_slot_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tutor_id: Mapped[int] = mapped_column(
        ForeignKey("tutor_profiles.id", ondelete="CASCADE"), index=True
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    tutor = relationship("TutorProfile", back_populates="availability")
