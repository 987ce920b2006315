"""
Tests for checkout creation and client-side confirmation.
"""

import json

from conftest import PATIENT_ID, TOMORROW

from app.domain.appointments.reservation_service import ReservationDetails, ReservationService
from app.domain.billing.schemas import AppointmentOrderDetails, dump_order_details
from app.models import STATUS_SCHEDULED, Payment, ReconciliationIssue


def reserve(db, make_slot, capacity=1, patient_id=PATIENT_ID):
    slot = make_slot(capacity=capacity)
    appointment = ReservationService(db).reserve(
        slot.id, patient_id, ReservationDetails(TOMORROW.isoformat())
    ).appointment
    return slot, appointment


def paid_session(order: AppointmentOrderDetails, payment_id="pay_cf_1", status="succeeded"):
    session = {
        "id": "cs_cf_1",
        "payment_id": payment_id,
        "payment_status": status,
        "metadata": {"orderDetails": dump_order_details(order)},
    }
    payment = {
        "payment_id": payment_id,
        "status": status,
        "total_amount": 250000,
        "currency": "INR",
        "payment_method": "card",
        "metadata": {},
    }
    return session, payment


class TestCreateCheckout:
    def test_returns_checkout_link_for_pending_appointment(
        self, client, db, make_slot, gateway_client, patient_headers
    ):
        _, appointment = reserve(db, make_slot)

        response = client.post(
            "/checkout/appointment", json={"appointmentId": appointment.id}, headers=patient_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["checkoutUrl"] == "https://checkout.test/session/cs_123"
        assert body["sessionId"] == "cs_123"
        assert body["amount"] == appointment.fee

        kwargs = gateway_client.checkout_sessions.create.call_args.kwargs
        assert kwargs["product_cart"] == [{"product_id": "pdt_adhoc_test", "quantity": 1, "amount": 250000}]
        order = json.loads(kwargs["metadata"]["orderDetails"])
        assert order["type"] == "appointment"
        assert order["appointmentId"] == appointment.id
        assert order["patientId"] == PATIENT_ID

    def test_other_patients_appointment_is_forbidden(self, client, db, make_slot, other_patient_headers):
        _, appointment = reserve(db, make_slot)

        response = client.post(
            "/checkout/appointment", json={"appointmentId": appointment.id}, headers=other_patient_headers
        )

        assert response.status_code == 403

    def test_unknown_appointment(self, client, patient_headers):
        response = client.post("/checkout/appointment", json={"appointmentId": "nope"}, headers=patient_headers)

        assert response.status_code == 404

    def test_paid_appointment_cannot_be_checked_out_again(self, client, db, make_slot, patient_headers):
        _, appointment = reserve(db, make_slot)
        appointment.status = STATUS_SCHEDULED
        appointment.payment_status = "paid"
        db.commit()

        response = client.post(
            "/checkout/appointment", json={"appointmentId": appointment.id}, headers=patient_headers
        )

        assert response.status_code == 409

    def test_gateway_failure_is_bad_gateway(self, client, db, make_slot, gateway_client, patient_headers):
        _, appointment = reserve(db, make_slot)
        gateway_client.checkout_sessions.create.side_effect = RuntimeError("gateway down")

        response = client.post(
            "/checkout/appointment", json={"appointmentId": appointment.id}, headers=patient_headers
        )

        assert response.status_code == 502


class TestConfirmCheckout:
    def test_paid_session_schedules_appointment(self, client, db, make_slot, gateway_client, patient_headers):
        slot, appointment = reserve(db, make_slot)
        order = AppointmentOrderDetails(
            appointmentId=appointment.id, slotId=slot.id, patientId=PATIENT_ID, appointmentDate=TOMORROW.isoformat()
        )
        session, payment = paid_session(order)
        gateway_client.checkout_sessions.retrieve.return_value = session
        gateway_client.payments.retrieve.return_value = payment

        response = client.post("/checkout/confirm", json={"sessionId": "cs_cf_1"}, headers=patient_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "scheduled"
        assert body["transactionId"] == "pay_cf_1"
        assert body["appointmentId"] == appointment.id
        recorded = db.query(Payment).one()
        assert recorded.amount == 2500.0
        assert recorded.transaction_id == "pay_cf_1"

    def test_repeat_confirm_is_already_processed(self, client, db, make_slot, gateway_client, patient_headers):
        slot, appointment = reserve(db, make_slot)
        order = AppointmentOrderDetails(
            appointmentId=appointment.id, slotId=slot.id, patientId=PATIENT_ID, appointmentDate=TOMORROW.isoformat()
        )
        session, payment = paid_session(order)
        gateway_client.checkout_sessions.retrieve.return_value = session
        gateway_client.payments.retrieve.return_value = payment

        client.post("/checkout/confirm", json={"sessionId": "cs_cf_1"}, headers=patient_headers)
        response = client.post("/checkout/confirm", json={"sessionId": "cs_cf_1"}, headers=patient_headers)

        assert response.status_code == 200
        assert response.json()["outcome"] == "already_processed"
        assert db.query(Payment).count() == 1

    def test_unpaid_session_is_conflict(self, client, db, make_slot, gateway_client, patient_headers):
        slot, appointment = reserve(db, make_slot)
        order = AppointmentOrderDetails(
            appointmentId=appointment.id, slotId=slot.id, patientId=PATIENT_ID, appointmentDate=TOMORROW.isoformat()
        )
        session, _ = paid_session(order, status="requires_payment_method")
        session["payment_id"] = None
        gateway_client.checkout_sessions.retrieve.return_value = session

        response = client.post("/checkout/confirm", json={"sessionId": "cs_cf_1"}, headers=patient_headers)

        assert response.status_code == 409
        gateway_client.payments.retrieve.assert_not_called()
        assert db.query(Payment).count() == 0

    def test_reconciliation_failure_requires_follow_up(
        self, client, db, make_slot, gateway_client, patient_headers
    ):
        slot, appointment = reserve(db, make_slot)
        appointment.status = "cancelled"
        db.commit()
        order = AppointmentOrderDetails(
            appointmentId=appointment.id, slotId=slot.id, patientId=PATIENT_ID, appointmentDate=TOMORROW.isoformat()
        )
        session, payment = paid_session(order, payment_id="pay_cf_cancelled")
        gateway_client.checkout_sessions.retrieve.return_value = session
        gateway_client.payments.retrieve.return_value = payment

        response = client.post("/checkout/confirm", json={"sessionId": "cs_cf_1"}, headers=patient_headers)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["requiresManualFollowUp"] is True
        assert detail["outcome"] == "reconciliation_failed"
        issue = db.query(ReconciliationIssue).one()
        assert issue.source == "client_confirm"

    def test_confirm_requires_authentication(self, client):
        response = client.post("/checkout/confirm", json={"sessionId": "cs_cf_1"})

        assert response.status_code in (401, 403)


class TestPaymentCheck:
    def test_reports_processed_transactions(self, client, db, make_slot, gateway_client, patient_headers):
        slot, appointment = reserve(db, make_slot)
        order = AppointmentOrderDetails(
            appointmentId=appointment.id, slotId=slot.id, patientId=PATIENT_ID, appointmentDate=TOMORROW.isoformat()
        )
        session, payment = paid_session(order)
        gateway_client.checkout_sessions.retrieve.return_value = session
        gateway_client.payments.retrieve.return_value = payment
        client.post("/checkout/confirm", json={"sessionId": "cs_cf_1"}, headers=patient_headers)

        processed = client.get("/payments/check", params={"transactionId": "pay_cf_1"}, headers=patient_headers)
        unknown = client.get("/payments/check", params={"transactionId": "pay_other"}, headers=patient_headers)

        assert processed.json()["processed"] is True
        assert processed.json()["payment"]["appointmentId"] == appointment.id
        assert unknown.json() == {"transactionId": "pay_other", "processed": False, "payment": None}
