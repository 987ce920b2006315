"""
Gateway payload helpers shared by the webhook and the client-confirm path.

Both triggers must derive the same transaction id and amount from the same
charge, otherwise idempotency on ``payments.transaction_id`` breaks down.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

PAID_STATUSES = {"succeeded", "paid", "completed", "complete"}

_AMOUNT_KEYS = ("total_amount", "amount", "amount_total")


def as_dict(obj: Any) -> dict:
    """SDK response models and plain dicts alike, as a dict"""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Cannot read gateway object of type {type(obj).__name__}")


def _nested_id(value: Any, *keys: str) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        for key in keys:
            if value.get(key):
                return str(value[key])
    return None


def extract_session_id(payload: dict) -> Optional[str]:
    return _nested_id(payload, "checkout_session_id", "session_id")


def extract_payment_id(payload: dict) -> Optional[str]:
    """Payment id, else payment intent id"""
    return (
        _nested_id(payload, "payment_id")
        or _nested_id(payload.get("payment"), "payment_id", "id")
        or _nested_id(payload.get("payment_intent"), "id")
    )


def extract_transaction_id(payload: dict) -> Optional[str]:
    """Payment id, else the checkout session id"""
    return extract_payment_id(payload) or extract_session_id(payload)


def extract_amount(payload: dict) -> Optional[float]:
    """Charged amount in major units (gateway reports the lowest currency unit)"""
    for key in _AMOUNT_KEYS:
        value = payload.get(key)
        if value is not None:
            try:
                return int(value) / 100
            except (TypeError, ValueError):
                return None
    return None


@dataclass
class GatewayCharge:
    """A captured charge as seen by either trigger"""

    transaction_id: Optional[str]
    session_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    method: str = "card"
    metadata: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return (self.status or "").lower() in PAID_STATUSES

    @property
    def needs_session_lookup(self) -> bool:
        """Only the session is known; the gateway has to say which payment settled it"""
        return self.payment_id is None and self.session_id is not None

    @property
    def order_details_raw(self) -> Any:
        return self.metadata.get("orderDetails")


def charge_from_payload(payload: dict, default_status: Optional[str] = None) -> GatewayCharge:
    """Normalize a webhook ``data`` object or a retrieved session/payment"""
    method = payload.get("payment_method") or payload.get("payment_method_type") or "card"
    return GatewayCharge(
        transaction_id=extract_transaction_id(payload),
        session_id=extract_session_id(payload),
        payment_id=extract_payment_id(payload),
        amount=extract_amount(payload),
        currency=payload.get("currency"),
        status=payload.get("status") or payload.get("payment_status") or default_status,
        method=str(method).lower(),
        metadata=payload.get("metadata") or {},
    )
