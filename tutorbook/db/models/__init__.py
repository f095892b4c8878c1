from .user import User, UserRole
from .tutor_profile import TutorProfile, ApprovalStatus
from .availability_slot import AvailabilitySlot
from .booking import Booking, BookingStatus, INACTIVE_STATUSES, TERMINAL_STATUSES
