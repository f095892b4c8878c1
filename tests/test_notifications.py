from datetime import datetime, timezone

import httpx
from tutorbook.config import Settings
from tutorbook.services import notification_service
from tutorbook.services.notification_service import NotificationService


def make_service(handler, **overrides):
    settings = Settings(EMAIL_API_KEY="re_test", **overrides)
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return NotificationService(settings, client=client)


def test_render_fills_template():
    subject, body = notification_service.render(
        "booking_confirmed",
        {
            "name": "Sam",
            "counterpart": "Ada",
            "duration": 60,
            "price": "30.00",
            "when": notification_service.format_when(datetime(2030, 1, 14, 10, 0, tzinfo=timezone.utc)),
        },
    )
    assert subject == "Your session on 14.01.2030 10:00 UTC is confirmed"
    assert "60-minute session with Ada" in body
    assert "$30.00" in body


def test_send_posts_email():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "email_1"})

    service = make_service(handler)
    assert service.send("payment_receipt", "sam@example.com", {"name": "Sam", "price": "30.00"})

    request = requests[0]
    assert request.headers["Authorization"] == "Bearer re_test"
    assert request.url == "https://api.resend.com/emails"
    assert b"sam@example.com" in request.content


def test_delivery_failure_is_swallowed(caplog):
    service = make_service(lambda request: httpx.Response(500))
    assert service.send("payment_receipt", "sam@example.com", {}) is False
    assert "Failed to send notification" in caplog.text


def test_missing_key_or_recipient_skips_sending():
    def handler(request):
        raise AssertionError("no request expected")

    client = httpx.Client(transport=httpx.MockTransport(handler))
    assert NotificationService(Settings(), client=client).send("payment_receipt", "a@b.c", {}) is False
    assert make_service(handler).send("payment_receipt", None, {}) is False


def test_raising_sink_never_breaks_the_caller(db_session, student, tutor, make_booking):
    class BrokenSink:
        def send(self, *args):
            raise RuntimeError("smtp down")

    booking = make_booking(student, tutor)
    notification_service.notify_booking(BrokenSink(), "booking_cancelled", booking)
