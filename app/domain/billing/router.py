"""Billing router - FastAPI endpoints for checkout, payment webhooks and reconciliation"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ...auth import CurrentUser, get_current_user, require_admin
from ...config import DODO_PAYMENTS_WEBHOOK_SECRET
from ...database import get_db
from ...rate_limiter import rate_limit_checkout, rate_limit_payment_webhook
from ...webhook_security import verify_payment_webhook
from .charges import charge_from_payload
from .checkout_service import CheckoutService
from .dodo_service import CheckoutGateway, CheckoutGatewayError, get_checkout_gateway
from .reconciliation_service import (
    SOURCE_WEBHOOK,
    ReconcileOutcome,
    ReconcileResult,
    ReconciliationService,
)
from .repository import ReconciliationIssueRepository
from .schemas import (
    CheckoutAppointmentRequest,
    CheckoutSessionResponse,
    ConfirmCheckoutRequest,
    PaymentCheckResponse,
    PaymentResponse,
    ReconcileResponse,
    ReconciliationIssueResponse,
    ResolveIssueRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])
admin_router = APIRouter(prefix="/admin/reconciliation-issues", tags=["Admin Billing"])
webhooks_router = APIRouter(tags=["Webhooks"])

# Gateway events that mean money was captured
HANDLED_EVENTS = {"checkout.session.completed", "payment.succeeded"}


def get_checkout_service(
    db: Session = Depends(get_db),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
) -> CheckoutService:
    """Dependency injection for CheckoutService"""
    return CheckoutService(db, gateway)


def get_reconciliation_service(db: Session = Depends(get_db)) -> ReconciliationService:
    """Dependency injection for ReconciliationService"""
    return ReconciliationService(db)


def to_response(result: ReconcileResult) -> ReconcileResponse:
    return ReconcileResponse(
        outcome=result.outcome.value,
        transactionId=result.transaction_id,
        appointmentId=result.appointment_id,
        productOrderId=result.product_order_id,
        paymentId=result.payment_id,
        requiresManualFollowUp=result.requires_manual_follow_up,
        reason=result.reason,
    )


# ============================================================================
# CHECKOUT
# ============================================================================


@router.post("/checkout/appointment", response_model=CheckoutSessionResponse)
async def create_appointment_checkout(
    data: CheckoutAppointmentRequest,
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
    _: None = Depends(rate_limit_checkout),
):
    """Hosted checkout link for a reserved appointment"""
    return await service.create_appointment_checkout(data.appointmentId, user)


@router.post("/checkout/confirm", response_model=ReconcileResponse)
async def confirm_checkout(
    data: ConfirmCheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
    _: None = Depends(rate_limit_checkout),
):
    """Client-side confirmation after the gateway redirect; safe to repeat"""
    logger.info(f"🔍 Checkout confirmation for session {data.sessionId} by {user.user_id}")
    result = await service.confirm_checkout(data.sessionId)
    response = to_response(result)

    if result.outcome == ReconcileOutcome.RECONCILIATION_FAILED:
        raise HTTPException(status_code=409, detail=response.model_dump())
    return response


@router.get("/payments/check", response_model=PaymentCheckResponse)
def check_payment(
    transactionId: str = Query(..., min_length=1),
    user: CurrentUser = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Whether a gateway transaction has already been recorded"""
    payment = service.check_payment(transactionId)
    if payment is not None and not user.is_admin and payment.patient_id != user.patient_id:
        payment = None
    return PaymentCheckResponse(
        transactionId=transactionId,
        processed=payment is not None,
        payment=PaymentResponse.from_payment(payment) if payment else None,
    )


# ============================================================================
# PAYMENT WEBHOOK
# ============================================================================


@webhooks_router.post("/webhooks/payments")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
    _: None = Depends(rate_limit_payment_webhook),
):
    """
    Payment gateway webhook (at-least-once delivery).

    Reconciliation failures still answer 200: the charge is kept as a
    reconciliation issue and a redelivery would not change the result.
    """
    raw_body = await verify_payment_webhook(request, DODO_PAYMENTS_WEBHOOK_SECRET)
    webhook_id = request.headers.get("webhook-id", "unknown")

    try:
        event = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        logger.error(f"Failed to parse webhook JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event_type = event.get("type")
    data = event.get("data")
    logger.info(f"🔔 Webhook received id={webhook_id} type={event_type}")

    if event_type not in HANDLED_EVENTS:
        return {"status": "ignored", "event_type": event_type}
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Invalid event data")

    charge = charge_from_payload(data, default_status="succeeded")
    if charge.needs_session_lookup:
        # Key on the payment id the gateway reports, as the client-confirm path does
        try:
            charge = await gateway.retrieve_session(charge.session_id)
        except CheckoutGatewayError as e:
            logger.error(f"❌ Webhook {webhook_id}: cannot resolve session {charge.session_id}: {e}")
            raise HTTPException(status_code=503, detail="Payment gateway unavailable, retry later") from e
    if not charge.is_paid:
        logger.info(f"⏳ Ignoring {event_type} with payment status {charge.status}")
        return {"status": "ignored", "event_type": event_type, "paymentStatus": charge.status}
    if not charge.transaction_id:
        logger.error(f"❌ Webhook {webhook_id} ({event_type}) carries no transaction id")
        raise HTTPException(status_code=400, detail="Missing transaction id")

    service = ReconciliationService(db)
    result = await run_in_threadpool(service.reconcile_charge, charge, SOURCE_WEBHOOK)
    return {
        "status": result.outcome.value,
        "event_type": event_type,
        "transactionId": result.transaction_id,
        "requiresManualFollowUp": result.requires_manual_follow_up,
    }


# ============================================================================
# ADMIN: RECONCILIATION ISSUES
# ============================================================================


@admin_router.get("", response_model=list[ReconciliationIssueResponse])
def list_reconciliation_issues(
    resolved: Optional[bool] = Query(False, description="false lists open issues, true lists resolved ones"),
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Captured charges that need a refund or a manual booking"""
    return [
        ReconciliationIssueResponse.from_issue(issue)
        for issue in ReconciliationIssueRepository.list_issues(db, resolved)
    ]


@admin_router.post("/{issue_id}/resolve", response_model=ReconciliationIssueResponse)
def resolve_reconciliation_issue(
    issue_id: int,
    data: ResolveIssueRequest,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    issue = ReconciliationIssueRepository.get_issue(db, issue_id)
    if not issue:
        raise HTTPException(status_code=404, detail="Reconciliation issue not found")
    if issue.resolved:
        raise HTTPException(status_code=409, detail="Reconciliation issue already resolved")

    issue = ReconciliationIssueRepository.resolve_issue(db, issue, data.note)
    logger.info(f"🧾 Reconciliation issue {issue.id} ({issue.transaction_id}) resolved by {admin.user_id}")
    return ReconciliationIssueResponse.from_issue(issue)
