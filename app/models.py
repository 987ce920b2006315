import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Appointment.status values
STATUS_PENDING = "pending"
STATUS_SCHEDULED = "scheduled"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_NO_SHOW = "no-show"
APPOINTMENT_STATUSES = (
    STATUS_PENDING,
    STATUS_SCHEDULED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_NO_SHOW,
)

# Appointment.payment_status values
PAYMENT_UNPAID = "unpaid"
PAYMENT_PARTIALLY_PAID = "partially_paid"
PAYMENT_PAID = "paid"
PAYMENT_STATUSES = (PAYMENT_UNPAID, PAYMENT_PARTIALLY_PAID, PAYMENT_PAID)
# Payment states an appointment can still be charged (or marked a no-show) in
UNSETTLED_PAYMENT_STATUSES = (PAYMENT_UNPAID, PAYMENT_PARTIALLY_PAID)


def generate_appointment_id():
    """Generate an opaque appointment token"""
    return str(uuid.uuid4())


class AppointmentSlot(Base):
    __tablename__ = "appointment_slots"
    __table_args__ = (
        UniqueConstraint("date", "start_time", name="uq_appointment_slots_date_start_time"),
        CheckConstraint("capacity >= 1", name="ck_appointment_slots_capacity_positive"),
        CheckConstraint("booked_count >= 0", name="ck_appointment_slots_booked_non_negative"),
        CheckConstraint("booked_count <= capacity", name="ck_appointment_slots_not_overbooked"),
    )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)  # HH:MM
    capacity = Column(Integer, nullable=False, default=1)
    booked_count = Column(Integer, nullable=False, default=0)
    # Maintained as booked_count < capacity (and not disabled) by every counter update
    is_available = Column(Boolean, nullable=False, default=True)
    # Admin switched the slot off; releasing a seat must not re-open it
    disabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    appointments = relationship("Appointment", back_populates="slot")

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.capacity - self.booked_count)

    @property
    def is_full(self) -> bool:
        return self.booked_count >= self.capacity


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_appointment_id)
    slot_id = Column(Integer, ForeignKey("appointment_slots.id"), nullable=False, index=True)
    patient_id = Column(Integer, nullable=False, index=True)  # Patient records live outside this service
    appointment_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    duration = Column(Integer, nullable=False, default=60)  # minutes
    fee = Column(Float, nullable=False, default=2500)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    payment_status = Column(String(20), nullable=False, default=PAYMENT_UNPAID)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    slot = relationship("AppointmentSlot", back_populates="appointments")
    payments = relationship("Payment", back_populates="appointment")


class ProductOrder(Base):
    """Order for a catalog product, created when its checkout is reconciled"""

    __tablename__ = "product_orders"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, nullable=False)  # Catalog is managed elsewhere
    user_id = Column(Integer, nullable=True)
    patient_id = Column(Integer, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    total_price = Column(Float, nullable=False)
    customizations = Column(JSON, default=dict, nullable=True)
    status = Column(String(20), nullable=False, default="paid")
    created_at = Column(DateTime, server_default=func.now())

    payments = relationship("Payment", back_populates="product_order")


class Payment(Base):
    """One row per recorded gateway charge; never updated after insert"""

    __tablename__ = "payments"
    __table_args__ = (
        # The unique index is the idempotency guarantee, not the lookup before insert
        UniqueConstraint("transaction_id", name="uq_payments_transaction_id"),
        CheckConstraint(
            "(appointment_id IS NOT NULL AND product_order_id IS NULL)"
            " OR (appointment_id IS NULL AND product_order_id IS NOT NULL)",
            name="ck_payments_single_target",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    amount = Column(Float, nullable=False)
    method = Column(String(50), nullable=False, default="card")
    status = Column(String(20), nullable=False, default="completed")  # completed, pending, failed
    transaction_id = Column(String(255), nullable=False)
    payment_type = Column(String(20), nullable=False)  # appointment, product
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True, index=True)
    product_order_id = Column(Integer, ForeignKey("product_orders.id"), nullable=True, index=True)
    patient_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    appointment = relationship("Appointment", back_populates="payments")
    product_order = relationship("ProductOrder", back_populates="payments")


class ReconciliationIssue(Base):
    """A captured charge that could not be turned into a booking (refund or reassign by hand)"""

    __tablename__ = "reconciliation_issues"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(255), unique=True, nullable=False, index=True)
    session_id = Column(String(255), nullable=True)
    amount = Column(Float, nullable=True)
    reason = Column(String(100), nullable=False)
    order_details = Column(JSON, nullable=True)
    source = Column(String(20), nullable=False)  # webhook, client_confirm
    resolved = Column(Boolean, nullable=False, default=False)
    resolution_note = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    resolved_at = Column(DateTime, nullable=True)
