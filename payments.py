"""
Payment processor gateway (Stripe).

Only the two payment-intent calls the booking flow needs are exposed. SDK
failures surface as UpstreamFailure; an unknown intent id is reported as None.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import stripe

from errors import UpstreamFailure
from schemas import PaymentIntentStatus
from settings import settings

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntent:
    id: str
    amount: int
    status: str
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def state(self) -> PaymentIntentStatus:
        return PaymentIntentStatus.parse(self.status)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class PaymentGateway:
    def __init__(self, api_key: str, currency: str = "gbp", timeout: float = 30.0, max_network_retries: int = 2):
        self.currency = currency
        self.client = stripe.StripeClient(
            api_key,
            max_network_retries=max_network_retries,
            http_client=stripe.RequestsClient(timeout=timeout),
        )

    @staticmethod
    def _to_intent(obj) -> PaymentIntent:
        metadata = obj.metadata.to_dict() if obj.metadata is not None else {}
        return PaymentIntent(
            id=obj.id,
            amount=obj.amount,
            status=obj.status,
            client_secret=obj.client_secret,
            metadata={k: str(v) for k, v in metadata.items()},
        )

    def create_intent(self, amount: float, metadata: Dict[str, str]) -> PaymentIntent:
        try:
            obj = self.client.payment_intents.create(
                params={
                    "amount": to_minor_units(amount),
                    "currency": self.currency,
                    "metadata": metadata,
                }
            )
        except stripe.StripeError as exc:
            logger.warning("Payment intent creation failed: %s", exc)
            raise UpstreamFailure("Error creating payment intent")
        return self._to_intent(obj)

    def retrieve_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        try:
            obj = self.client.payment_intents.retrieve(intent_id)
        except stripe.InvalidRequestError as exc:
            if exc.code == "resource_missing":
                return None
            logger.warning("Payment intent lookup rejected: %s", exc)
            raise UpstreamFailure("Error retrieving payment intent")
        except stripe.StripeError as exc:
            logger.warning("Payment intent lookup failed: %s", exc)
            raise UpstreamFailure("Error retrieving payment intent")
        return self._to_intent(obj)


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway(
            settings.stripe_api_key,
            currency=settings.payment_currency,
            timeout=settings.outbound_timeout_seconds,
        )
    return _gateway
