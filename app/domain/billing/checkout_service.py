"""Checkout service - Hosted checkout for reserved appointments and client confirmation"""

import logging

from fastapi import HTTPException
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ...auth import CurrentUser
from ...config import FRONTEND_URL
from ...models import PAYMENT_PAID, STATUS_PENDING
from ..appointments.repository import AppointmentRepository
from .dodo_service import CheckoutGateway, CheckoutGatewayError
from .reconciliation_service import SOURCE_CLIENT_CONFIRM, ReconciliationService, ReconcileResult
from .schemas import AppointmentOrderDetails, CheckoutSessionResponse, dump_order_details

logger = logging.getLogger(__name__)


class CheckoutService:
    """Service layer for starting and confirming checkouts"""

    def __init__(self, db: Session, gateway: CheckoutGateway):
        self.db = db
        self.gateway = gateway
        self.appointments = AppointmentRepository()
        self.reconciliation = ReconciliationService(db)

    async def create_appointment_checkout(self, appointment_id: str, user: CurrentUser) -> CheckoutSessionResponse:
        """Open a checkout session for the fee of a pending, unpaid appointment"""
        appointment = self.appointments.get_appointment(self.db, appointment_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")
        if not user.can_act_for_patient(appointment.patient_id):
            raise HTTPException(status_code=403, detail="Not allowed to pay for this appointment")
        if appointment.status != STATUS_PENDING or appointment.payment_status == PAYMENT_PAID:
            raise HTTPException(status_code=409, detail="Appointment is not awaiting payment")
        if not appointment.fee or appointment.fee <= 0:
            raise HTTPException(status_code=400, detail="Appointment fee must be greater than 0")

        if not self.gateway.is_available():
            raise HTTPException(status_code=503, detail="Payment system not configured")

        order = AppointmentOrderDetails(
            appointmentId=appointment.id,
            slotId=appointment.slot_id,
            patientId=appointment.patient_id,
            appointmentDate=appointment.appointment_date.isoformat(),
            startTime=appointment.start_time,
            duration=appointment.duration,
            reason=appointment.reason,
            fee=appointment.fee,
        )
        metadata = {
            "orderDetails": dump_order_details(order),
            "appointmentId": appointment.id,
        }

        logger.info(f"💳 Creating checkout for appointment {appointment.id} ({appointment.fee} {self.gateway.currency})")
        try:
            session = await self.gateway.create_session(
                amount=appointment.fee,
                return_url=f"{FRONTEND_URL}/appointments/{appointment.id}/payment-complete",
                metadata=metadata,
                customer={"email": user.email} if user.email else None,
            )
        except CheckoutGatewayError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

        return CheckoutSessionResponse(
            checkoutUrl=session["checkout_url"],
            sessionId=session["session_id"],
            amount=appointment.fee,
            currency=self.gateway.currency,
        )

    async def confirm_checkout(self, session_id: str) -> ReconcileResult:
        """
        Client returned from the hosted checkout.

        Amount, status and order come from the gateway, never from the client.
        """
        try:
            charge = await self.gateway.retrieve_session(session_id)
        except CheckoutGatewayError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

        if not charge.is_paid:
            logger.info(f"⏳ Checkout session {session_id} not paid yet (status={charge.status})")
            raise HTTPException(
                status_code=409,
                detail={"reason": "Payment not completed", "paymentStatus": charge.status},
            )
        if not charge.transaction_id:
            logger.error(f"❌ Paid checkout session {session_id} has no transaction id")
            raise HTTPException(status_code=502, detail="Gateway returned no transaction id")

        return await run_in_threadpool(self.reconciliation.reconcile_charge, charge, SOURCE_CLIENT_CONFIRM)
