"""
Reconciliation service - turns a captured gateway charge into exactly one
recorded payment and one scheduled appointment (or paid product order).

Both the payment webhook and the client-confirm call land here. They may race
and the webhook may be redelivered; the unique ``payments.transaction_id``
makes every interleaving converge on a single Payment row.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import (
    PAYMENT_PAID,
    STATUS_CANCELLED,
    STATUS_PENDING,
    STATUS_SCHEDULED,
    UNSETTLED_PAYMENT_STATUSES,
    Payment,
)
from ..appointments.repository import AppointmentRepository
from ..appointments.reservation_service import ReservationDetails, ReservationService
from .charges import GatewayCharge
from .repository import PaymentRepository, ReconciliationIssueRepository
from .schemas import (
    AppointmentOrderDetails,
    OrderDetailsError,
    ProductOrderDetails,
    parse_order_details,
)

logger = logging.getLogger(__name__)

SOURCE_WEBHOOK = "webhook"
SOURCE_CLIENT_CONFIRM = "client_confirm"

PAYMENT_COMPLETED = "completed"


class ReconcileOutcome(str, Enum):
    ALREADY_PROCESSED = "already_processed"
    SCHEDULED = "scheduled"
    PAID = "paid"
    RECONCILIATION_FAILED = "reconciliation_failed"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    transaction_id: str
    appointment_id: Optional[str] = None
    product_order_id: Optional[int] = None
    payment_id: Optional[int] = None
    reason: Optional[str] = None
    issue_id: Optional[int] = None

    @property
    def requires_manual_follow_up(self) -> bool:
        return self.outcome == ReconcileOutcome.RECONCILIATION_FAILED


class ReconciliationService:
    """Single idempotent convergence point for payment confirmation"""

    def __init__(self, db: Session):
        self.db = db
        self.payments = PaymentRepository()
        self.issues = ReconciliationIssueRepository()
        self.appointments = AppointmentRepository()
        self.reservations = ReservationService(db)

    def check_payment(self, transaction_id: str) -> Optional[Payment]:
        """Has this charge already been recorded?"""
        return self.payments.get_by_transaction_id(self.db, transaction_id)

    def reconcile_charge(self, charge: GatewayCharge, source: str) -> ReconcileResult:
        """Entry point for both triggers: read the order from the charge metadata and reconcile"""
        try:
            order = parse_order_details(charge.order_details_raw)
        except OrderDetailsError as e:
            raw = charge.order_details_raw
            return self.flag_charge(
                charge.transaction_id,
                "invalid_order_details",
                order_details={"raw": raw if isinstance(raw, (str, dict)) else None, "error": str(e)},
                amount=charge.amount,
                session_id=charge.session_id,
                source=source,
            )

        return self.reconcile(
            charge.transaction_id,
            order,
            charge.amount,
            method=charge.method,
            session_id=charge.session_id,
            source=source,
        )

    def reconcile(
        self,
        transaction_id: str,
        order: Union[AppointmentOrderDetails, ProductOrderDetails],
        amount: Optional[float] = None,
        *,
        method: str = "card",
        session_id: Optional[str] = None,
        source: str = SOURCE_WEBHOOK,
        today: Optional[date] = None,
    ) -> ReconcileResult:
        """
        Record a captured charge exactly once.

        Materializing the order, the status change and the payment insert
        commit together. A failure to materialize is rolled back and kept as a
        ReconciliationIssue; the charge is never silently dropped.
        """
        if not transaction_id:
            raise ValueError("transaction_id is required")

        existing = self.payments.get_by_transaction_id(self.db, transaction_id)
        if existing is not None:
            logger.info(f"🔄 Transaction {transaction_id} already recorded as payment {existing.id} ({source})")
            return self._already_processed(existing)

        issue = self.issues.get_by_transaction_id(self.db, transaction_id)
        if issue is not None:
            logger.info(f"🔄 Transaction {transaction_id} already flagged for follow-up (issue {issue.id})")
            return ReconcileResult(
                ReconcileOutcome.RECONCILIATION_FAILED, transaction_id, reason=issue.reason, issue_id=issue.id
            )

        try:
            if isinstance(order, ProductOrderDetails):
                result = self._record_product_order(transaction_id, order, amount, method)
            else:
                result = self._schedule_appointment(transaction_id, order, amount, method, today)

            if result.outcome == ReconcileOutcome.RECONCILIATION_FAILED:
                self.db.rollback()
            else:
                self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.payments.get_by_transaction_id(self.db, transaction_id)
            if existing is not None:
                logger.info(f"🔄 Transaction {transaction_id} recorded concurrently as payment {existing.id}")
                return self._already_processed(existing)
            raise
        except Exception:
            self.db.rollback()
            raise

        if result.outcome == ReconcileOutcome.RECONCILIATION_FAILED:
            return self.flag_charge(
                transaction_id,
                result.reason,
                order_details=order.model_dump(mode="json"),
                amount=amount,
                session_id=session_id,
                source=source,
            )

        logger.info(
            f"✅ Reconciled transaction {transaction_id} via {source}: {result.outcome.value} "
            f"(appointment={result.appointment_id}, product_order={result.product_order_id})"
        )
        return result

    def flag_charge(
        self,
        transaction_id: str,
        reason: str,
        order_details: Optional[dict] = None,
        amount: Optional[float] = None,
        session_id: Optional[str] = None,
        source: str = SOURCE_WEBHOOK,
    ) -> ReconcileResult:
        """Keep a captured charge that could not be materialized for manual handling"""
        # A concurrent reconcile of the same charge may have just won the seat
        existing = self.payments.get_by_transaction_id(self.db, transaction_id)
        if existing is not None:
            logger.info(f"🔄 Transaction {transaction_id} was recorded by a concurrent request")
            return self._already_processed(existing)

        logger.error(
            f"❌ Reconciliation failed for transaction {transaction_id}: {reason}. "
            f"Charge captured, manual follow-up required (source={source}, session={session_id}, "
            f"amount={amount}, order={order_details})"
        )

        try:
            issue = self.issues.create_issue(
                self.db,
                transaction_id=transaction_id,
                session_id=session_id,
                amount=amount,
                reason=reason,
                order_details=order_details,
                source=source,
            )
        except IntegrityError:
            self.db.rollback()
            issue = self.issues.get_by_transaction_id(self.db, transaction_id)

        return ReconcileResult(
            ReconcileOutcome.RECONCILIATION_FAILED,
            transaction_id,
            reason=reason,
            issue_id=issue.id if issue else None,
        )

    def _schedule_appointment(
        self,
        transaction_id: str,
        order: AppointmentOrderDetails,
        amount: Optional[float],
        method: str,
        today: Optional[date],
    ) -> ReconcileResult:
        appointment = None
        if order.appointmentId:
            appointment = self.appointments.get_appointment_for_update(self.db, order.appointmentId)
            if appointment is None:
                logger.warning(
                    f"⚠️ Appointment {order.appointmentId} for transaction {transaction_id} not found, "
                    "reserving a new seat"
                )

        if appointment is not None:
            failure = self._paid_transition_blocker(appointment, order)
            if failure:
                return self._failed(transaction_id, failure, appointment.id)
            moved = self.appointments.transition(
                self.db,
                appointment.id,
                (STATUS_PENDING,),
                UNSETTLED_PAYMENT_STATUSES,
                status=STATUS_SCHEDULED,
                payment_status=PAYMENT_PAID,
            )
            if not moved:
                return self._failed(transaction_id, "appointment_state_changed", appointment.id)
        else:
            reservation = self.reservations.reserve_in_transaction(
                order.slotId,
                order.patientId,
                ReservationDetails(
                    appointment_date=order.appointmentDate,
                    start_time=order.startTime,
                    duration=order.duration,
                    reason=order.reason,
                    fee=order.fee if order.fee is not None else amount,
                ),
                today=today,
            )
            if not reservation.ok:
                return self._failed(transaction_id, reservation.outcome.value)
            appointment = reservation.appointment
            appointment.status = STATUS_SCHEDULED
            appointment.payment_status = PAYMENT_PAID

        payment = self.payments.add_payment(
            self.db,
            amount=amount if amount is not None else appointment.fee,
            method=method,
            status=PAYMENT_COMPLETED,
            transaction_id=transaction_id,
            payment_type="appointment",
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
        )
        return ReconcileResult(
            ReconcileOutcome.SCHEDULED,
            transaction_id,
            appointment_id=appointment.id,
            payment_id=payment.id,
        )

    @staticmethod
    def _paid_transition_blocker(appointment, order: AppointmentOrderDetails) -> Optional[str]:
        """Reason an existing appointment cannot take this payment, if any"""
        if appointment.patient_id != order.patientId:
            return "order_does_not_match_appointment"
        if appointment.status == STATUS_CANCELLED:
            return "appointment_cancelled"
        if appointment.payment_status == PAYMENT_PAID:
            return "appointment_already_paid"
        if appointment.status != STATUS_PENDING:
            return f"appointment_{appointment.status}"
        return None

    def _record_product_order(
        self,
        transaction_id: str,
        order: ProductOrderDetails,
        amount: Optional[float],
        method: str,
    ) -> ReconcileResult:
        if amount is None:
            return self._failed(transaction_id, "amount_unknown")

        product_order = self.payments.add_product_order(
            self.db,
            product_id=order.productId,
            user_id=order.userId,
            patient_id=order.patientId,
            quantity=order.quantity,
            total_price=amount,
            customizations=order.customizations or {},
            status="paid",
        )
        payment = self.payments.add_payment(
            self.db,
            amount=amount,
            method=method,
            status=PAYMENT_COMPLETED,
            transaction_id=transaction_id,
            payment_type="product",
            product_order_id=product_order.id,
            patient_id=order.patientId,
        )
        return ReconcileResult(
            ReconcileOutcome.PAID,
            transaction_id,
            product_order_id=product_order.id,
            payment_id=payment.id,
        )

    @staticmethod
    def _failed(transaction_id: str, reason: str, appointment_id: Optional[str] = None) -> ReconcileResult:
        return ReconcileResult(
            ReconcileOutcome.RECONCILIATION_FAILED,
            transaction_id,
            appointment_id=appointment_id,
            reason=reason,
        )

    @staticmethod
    def _already_processed(payment: Payment) -> ReconcileResult:
        return ReconcileResult(
            ReconcileOutcome.ALREADY_PROCESSED,
            payment.transaction_id,
            appointment_id=payment.appointment_id,
            product_order_id=payment.product_order_id,
            payment_id=payment.id,
        )
