"""Dodo Payments service - Hosted checkout sessions for appointments"""

import logging
from typing import Optional

from dodopayments import AsyncDodoPayments  # type: ignore

from ...config import (
    DODO_ADHOC_PRODUCT_ID,
    DODO_PAYMENTS_API_KEY,
    DODO_PAYMENTS_ENVIRONMENT,
    PAYMENT_CURRENCY,
)
from .charges import GatewayCharge, as_dict, charge_from_payload

logger = logging.getLogger(__name__)


class CheckoutGatewayError(Exception):
    """The payment gateway is unavailable or rejected the request"""

    pass


def normalize_dodo_environment(env: Optional[str]) -> str:
    """Normalize Dodo environment value to expected format"""
    value = (env or "test_mode").strip().lower()
    if value in {"live", "production", "prod"}:
        return "live_mode"
    if value in {"test", "sandbox", "staging", "dev", "development"}:
        return "test_mode"
    if value in {"test_mode", "live_mode"}:
        return value
    logger.warning(f"Unknown DODO environment '{env}', defaulting to test_mode")
    return "test_mode"


class CheckoutGateway:
    """Hosted checkout over Dodo Payments, using the pay-what-you-want adhoc product"""

    def __init__(self, client=None, product_id: Optional[str] = None, currency: str = PAYMENT_CURRENCY):
        self.api_key = DODO_PAYMENTS_API_KEY
        self.environment = normalize_dodo_environment(DODO_PAYMENTS_ENVIRONMENT)
        self.product_id = product_id or DODO_ADHOC_PRODUCT_ID
        self.currency = currency
        self.client = client

        if self.client is not None:
            return
        if not self.api_key:
            logger.warning("DODO_PAYMENTS_API_KEY not set; checkout endpoints will fail until configured")
            return
        try:
            self.client = AsyncDodoPayments(
                bearer_token=self.api_key,
                environment=self.environment,
            )
            logger.info(f"Dodo Payments client initialized (env={self.environment})")
        except Exception as e:
            # Do NOT crash the whole API if billing is misconfigured
            logger.error(f"Failed to initialize Dodo client (env={self.environment}): {e}")
            self.client = None

    def is_available(self) -> bool:
        """Check if Dodo Payments client is available"""
        return self.client is not None and bool(self.product_id)

    async def create_session(
        self,
        amount: float,
        return_url: str,
        metadata: dict,
        customer: Optional[dict] = None,
    ) -> dict:
        """
        Create a checkout session for a dynamic amount.

        Args:
            amount: Amount in major currency units
            return_url: Where the gateway redirects after payment
            metadata: String values only; carries ``orderDetails``
            customer: Optional ``{"email", "name"}``

        Returns:
            ``{"checkout_url": ..., "session_id": ...}``
        """
        if not self.is_available():
            raise CheckoutGatewayError("Payment system not configured")

        session_data = {
            "product_cart": [
                {
                    "product_id": self.product_id,
                    "quantity": 1,
                    # Dynamic amount in lowest currency unit (e.g., paise)
                    "amount": int(round(amount * 100)),
                }
            ],
            "return_url": return_url,
            "metadata": metadata,
        }
        if customer:
            session_data["customer"] = customer

        try:
            session = as_dict(await self.client.checkout_sessions.create(**session_data))
        except Exception as e:
            logger.error(f"❌ Failed to create checkout session: {e}")
            raise CheckoutGatewayError(f"Failed to create checkout session: {e}") from e

        checkout_url = session.get("checkout_url")
        if not checkout_url:
            raise CheckoutGatewayError("Gateway returned no checkout URL")
        return {"checkout_url": checkout_url, "session_id": session.get("session_id")}

    async def retrieve_session(self, session_id: str) -> GatewayCharge:
        """
        Look up a checkout session and the payment it produced.

        The session reports which payment settled it; the payment carries the
        authoritative status and amount.
        """
        if not self.client:
            raise CheckoutGatewayError("Payment system not configured")

        try:
            session = as_dict(await self.client.checkout_sessions.retrieve(session_id))
            payment = {}
            if session.get("payment_id"):
                payment = as_dict(await self.client.payments.retrieve(session["payment_id"]))
        except Exception as e:
            logger.error(f"❌ Failed to retrieve checkout session {session_id}: {e}")
            raise CheckoutGatewayError(f"Failed to retrieve checkout session: {e}") from e

        payload = {**session, **payment}
        payload["checkout_session_id"] = session_id
        payload["metadata"] = session.get("metadata") or payment.get("metadata") or {}
        return charge_from_payload(payload)


# Singleton instance
checkout_gateway = CheckoutGateway()


def get_checkout_gateway() -> CheckoutGateway:
    """Dependency injection for the checkout gateway"""
    return checkout_gateway
