from .gateway import (
    BasePaymentGateway,
    CheckoutSession,
    GatewayError,
    PaymentIntentInfo,
    SessionInfo,
    get_gateway,
)
from .stub import StubGateway

__all__ = [
    "BasePaymentGateway",
    "CheckoutSession",
    "GatewayError",
    "PaymentIntentInfo",
    "SessionInfo",
    "get_gateway",
    "StubGateway",
]
