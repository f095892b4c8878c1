import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import get_settings
from ..db.session import SessionLocal
from ..services.notification_service import NotificationService
from ..services.payments import get_gateway
from ..services.reconciliation_service import refund_expired_bookings, send_session_reminders

logger = logging.getLogger(__name__)


def refund_expired() -> None:
    settings = get_settings()
    gateway = get_gateway(settings)
    notifier = NotificationService(settings)
    with SessionLocal() as db:
        report = refund_expired_bookings(db, gateway, notifier)
    if report.failed:
        logger.warning("Expired refund sweep had failures", extra={"failed": report.failed})


def send_reminders() -> None:
    notifier = NotificationService(get_settings())
    with SessionLocal() as db:
        send_session_reminders(db, notifier)


def get_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(refund_expired, "interval", hours=1, id="refund_expired", max_instances=1)
    scheduler.add_job(send_reminders, "interval", hours=1, id="send_reminders", max_instances=1)
    return scheduler
