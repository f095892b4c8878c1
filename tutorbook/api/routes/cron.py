from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ...api import deps
from ...db.session import get_db
from ...db import schemas
from ...services import reconciliation_service
from ...services.notification_service import NotificationService
from ...services.payments import BasePaymentGateway

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(deps.require_cron_secret)])


@router.post("/refund-expired-bookings", response_model=schemas.SweepReport)
def refund_expired(
    db: Session = Depends(get_db),
    gateway: BasePaymentGateway = Depends(deps.get_payment_gateway),
    notifier: NotificationService = Depends(deps.get_notifier),
):
    report = reconciliation_service.refund_expired_bookings(db, gateway, notifier)
    return report.as_dict()


@router.post("/session-reminders")
def session_reminders(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(deps.get_notifier),
):
    sent = reconciliation_service.send_session_reminders(db, notifier)
    return {"sent": sent}
