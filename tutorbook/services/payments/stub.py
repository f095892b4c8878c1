from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

from .gateway import (
    BasePaymentGateway,
    CheckoutSession,
    GatewayError,
    PaymentIntentInfo,
    SessionInfo,
)


class StubGateway(BasePaymentGateway):
    """In-process gateway that pretends every checkout gets paid.

    State lives on the instance; sessions it has never seen are reported as
    paid with an unknown amount so a fresh instance can still refund them.
    """

    def __init__(self, settings) -> None:
        super().__init__(settings)
        self.sessions: dict[str, dict[str, Any]] = {}
        self.refunds: dict[str, dict[str, Any]] = {}
        self._refunds_by_key: dict[str, str] = {}

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
        session_id = f"cs_stub_{uuid.uuid5(uuid.NAMESPACE_OID, idempotency_key).hex}"
        self.sessions.setdefault(
            session_id,
            {
                "amount_cents": amount_cents,
                "currency": currency,
                "metadata": dict(metadata),
                "payment_intent_id": f"pi_stub_{session_id[len('cs_stub_'):]}",
            },
        )
        return CheckoutSession(id=session_id, url=success_url)

    def retrieve_session(self, session_id: str) -> SessionInfo:
        session = self.sessions.get(session_id, {})
        return SessionInfo(
            id=session_id,
            payment_status="paid",
            payment_intent_id=session.get("payment_intent_id", f"pi_stub_{session_id}"),
            metadata=session.get("metadata", {}),
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        amount = None
        for session in self.sessions.values():
            if session["payment_intent_id"] == payment_intent_id:
                amount = session["amount_cents"]
        refunded = sum(
            refund["amount_cents"]
            for refund in self.refunds.values()
            if refund["payment_intent_id"] == payment_intent_id
        )
        return PaymentIntentInfo(
            id=payment_intent_id,
            status="succeeded",
            amount_cents=amount,
            amount_refunded_cents=refunded,
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
        if idempotency_key in self._refunds_by_key:
            return self._refunds_by_key[idempotency_key]
        refund_id = f"re_stub_{uuid.uuid4().hex}"
        self.refunds[refund_id] = {
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "reason": reason,
            "metadata": dict(metadata),
        }
        self._refunds_by_key[idempotency_key] = refund_id
        return refund_id

    def parse_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        # Webhooks are not signed for the stub provider
        try:
            data = json.loads(payload or b"{}")
        except ValueError as exc:
            raise GatewayError("Invalid webhook payload") from exc
        session = data.get("data", {}).get("object", {})
        return {
            "id": data.get("id"),
            "type": data.get("type"),
            "session": {
                "id": session.get("id"),
                "payment_status": session.get("payment_status", "paid"),
                "metadata": session.get("metadata") or {},
                "amount_total": session.get("amount_total"),
                "currency": session.get("currency"),
            },
        }
