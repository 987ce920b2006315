"""Billing domain schemas - Pydantic models for validation"""

import json
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

# ============================================================================
# ORDER DETAILS (checkout metadata, tagged by "type")
# ============================================================================


class AppointmentOrderDetails(BaseModel):
    """What was bought when the checkout is for a physiotherapy appointment"""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["appointment"] = "appointment"
    appointmentId: Optional[str] = None
    slotId: int
    patientId: int
    appointmentDate: str
    startTime: Optional[str] = Field(default=None, validation_alias=AliasChoices("startTime", "appointmentTime"))
    duration: Optional[int] = None
    reason: Optional[str] = None
    fee: Optional[float] = Field(default=None, validation_alias=AliasChoices("fee", "totalFee"))


class ProductOrderDetails(BaseModel):
    """What was bought when the checkout is for a catalog product"""

    type: Literal["product"] = "product"
    productId: int
    quantity: int = 1
    userId: Optional[int] = None
    patientId: Optional[int] = None
    customizations: Optional[dict] = None

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("quantity must be at least 1")
        return v


OrderDetails = Annotated[
    Union[AppointmentOrderDetails, ProductOrderDetails],
    Field(discriminator="type"),
]

_order_details_adapter = TypeAdapter(OrderDetails)


class OrderDetailsError(ValueError):
    """Checkout metadata is missing or does not describe a known order"""

    pass


def parse_order_details(raw: Union[str, dict, None]) -> Union[AppointmentOrderDetails, ProductOrderDetails]:
    """Validate ``metadata.orderDetails`` (a JSON string, or an already decoded dict)"""
    if raw is None or raw == "":
        raise OrderDetailsError("orderDetails missing from payment metadata")
    try:
        if isinstance(raw, (str, bytes)):
            return _order_details_adapter.validate_json(raw)
        return _order_details_adapter.validate_python(raw)
    except ValidationError as e:
        raise OrderDetailsError(f"Invalid orderDetails: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e


def dump_order_details(order: Union[AppointmentOrderDetails, ProductOrderDetails]) -> str:
    """Serialize order details for checkout metadata (string values only)"""
    return json.dumps(order.model_dump(mode="json", exclude_none=True))


# ============================================================================
# CHECKOUT
# ============================================================================


class CheckoutAppointmentRequest(BaseModel):
    """Schema for starting checkout of a reserved appointment"""

    appointmentId: str

    @field_validator("appointmentId")
    @classmethod
    def validate_appointment_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("appointmentId is required")
        return v.strip()


class CheckoutSessionResponse(BaseModel):
    checkoutUrl: str
    sessionId: Optional[str] = None
    amount: float
    currency: str


class ConfirmCheckoutRequest(BaseModel):
    """Schema for the client confirming a checkout after redirect"""

    sessionId: str

    @field_validator("sessionId")
    @classmethod
    def validate_session_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("sessionId is required")
        return v.strip()


class ReconcileResponse(BaseModel):
    """Terminal state of a reconciliation attempt"""

    outcome: str
    transactionId: str
    appointmentId: Optional[str] = None
    productOrderId: Optional[int] = None
    paymentId: Optional[int] = None
    requiresManualFollowUp: bool = False
    reason: Optional[str] = None


# ============================================================================
# PAYMENTS & RECONCILIATION ISSUES
# ============================================================================


class PaymentResponse(BaseModel):
    """Schema for a recorded payment"""

    id: int
    transactionId: str
    amount: float
    method: str
    status: str
    paymentType: str
    appointmentId: Optional[str] = None
    productOrderId: Optional[int] = None
    patientId: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_payment(cls, payment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            transactionId=payment.transaction_id,
            amount=payment.amount,
            method=payment.method,
            status=payment.status,
            paymentType=payment.payment_type,
            appointmentId=payment.appointment_id,
            productOrderId=payment.product_order_id,
            patientId=payment.patient_id,
            created_at=payment.created_at,
        )


class PaymentCheckResponse(BaseModel):
    transactionId: str
    processed: bool
    payment: Optional[PaymentResponse] = None


class ReconciliationIssueResponse(BaseModel):
    """Captured charge waiting for a refund or manual booking"""

    id: int
    transactionId: str
    sessionId: Optional[str] = None
    amount: Optional[float] = None
    reason: str
    orderDetails: Optional[dict] = None
    source: str
    resolved: bool
    resolutionNote: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_issue(cls, issue) -> "ReconciliationIssueResponse":
        return cls(
            id=issue.id,
            transactionId=issue.transaction_id,
            sessionId=issue.session_id,
            amount=issue.amount,
            reason=issue.reason,
            orderDetails=issue.order_details,
            source=issue.source,
            resolved=issue.resolved,
            resolutionNote=issue.resolution_note,
            created_at=issue.created_at,
            resolved_at=issue.resolved_at,
        )


class ResolveIssueRequest(BaseModel):
    note: str

    @field_validator("note")
    @classmethod
    def validate_note(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("A resolution note is required")
        return v.strip()
