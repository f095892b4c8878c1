from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import stripe

from ...config import Settings
from .gateway import (
    BasePaymentGateway,
    CheckoutSession,
    GatewayError,
    PaymentIntentInfo,
    SessionInfo,
)

logger = logging.getLogger(__name__)

STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}
TRANSIENT_ERRORS = (
    stripe.RateLimitError,
    stripe.APIConnectionError,
    stripe.APIError,
)


def _as_gateway_error(exc: stripe.StripeError) -> GatewayError:
    message = getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__
    return GatewayError(
        message,
        transient=isinstance(exc, TRANSIENT_ERRORS),
        code=getattr(exc, "code", None),
    )


def _field(obj: Any, name: str, default: Any = None) -> Any:
    return getattr(obj, name, default)


def _metadata(value: Any) -> dict[str, Any]:
    if not value:
        return {}
    if isinstance(value, dict):
        return dict(value)
    return value.to_dict()


def _object_id(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


class StripeGateway(BasePaymentGateway):
    """Stripe Checkout and Refunds."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        if not settings.stripe_secret_key:
            raise ValueError("Stripe secret key missing (STRIPE_SECRET_KEY)")
        stripe.api_key = settings.stripe_secret_key

    def create_checkout_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        description: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        expires_at: datetime,
        idempotency_key: str,
    ) -> CheckoutSession:
        logger.info(
            "Creating Stripe checkout session",
            extra={"booking_id": metadata.get("booking_id"), "amount_cents": amount_cents},
        )
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "product_data": {"name": description},
                            "unit_amount": amount_cents,
                        },
                        "quantity": 1,
                    }
                ],
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                success_url=success_url,
                cancel_url=cancel_url,
                expires_at=int(expires_at.timestamp()),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise _as_gateway_error(exc) from exc
        return CheckoutSession(id=session["id"], url=_field(session, "url"))

    def retrieve_session(self, session_id: str) -> SessionInfo:
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as exc:
            raise _as_gateway_error(exc) from exc
        return SessionInfo(
            id=session["id"],
            payment_status=_field(session, "payment_status") or "unpaid",
            payment_intent_id=_object_id(_field(session, "payment_intent")),
            metadata=_metadata(_field(session, "metadata")),
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, expand=["latest_charge"])
        except stripe.StripeError as exc:
            raise _as_gateway_error(exc) from exc
        # Refunded amounts live on the charge, which is only an id unless expanded
        latest_charge = _field(intent, "latest_charge")
        amount_refunded = 0
        if latest_charge is not None and not isinstance(latest_charge, str):
            amount_refunded = _field(latest_charge, "amount_refunded", 0) or 0
        return PaymentIntentInfo(
            id=intent["id"],
            status=_field(intent, "status") or "",
            amount_cents=_field(intent, "amount"),
            amount_refunded_cents=int(amount_refunded),
        )

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: str,
        reason: str,
        metadata: dict[str, str],
    ) -> str:
        stripe_reason = reason if reason in STRIPE_REFUND_REASONS else "requested_by_customer"
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=amount_cents,
                reason=stripe_reason,
                metadata={**metadata, "reason": reason},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise _as_gateway_error(exc) from exc
        return refund["id"]

    def parse_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        secret = self.settings.stripe_webhook_secret.strip()
        if not secret:
            raise GatewayError("Webhook secret not configured")
        if not signature:
            raise GatewayError("Missing signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise GatewayError(f"Webhook signature verification failed: {exc}") from exc
        session = event["data"]["object"]
        return {
            "id": event["id"],
            "type": event["type"],
            "session": {
                "id": _field(session, "id"),
                "payment_status": _field(session, "payment_status"),
                "metadata": _metadata(_field(session, "metadata")),
                "amount_total": _field(session, "amount_total"),
                "currency": _field(session, "currency"),
            },
        }
