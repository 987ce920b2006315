"""Billing repository - Database operations for payments and reconciliation issues"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Payment, ProductOrder, ReconciliationIssue


class PaymentRepository:
    """Repository for payment ledger operations.

    ``payments.transaction_id`` is unique; a duplicate insert fails at flush
    or commit with IntegrityError and the caller treats it as already processed.
    """

    @staticmethod
    def get_by_transaction_id(db: Session, transaction_id: str) -> Optional[Payment]:
        """Get payment by gateway transaction ID"""
        return db.query(Payment).filter(Payment.transaction_id == transaction_id).first()

    @staticmethod
    def add_payment(db: Session, **payment_data) -> Payment:
        """Stage a payment row in the current transaction (no commit)"""
        if payment_data.get("status"):
            payment_data["status"] = payment_data["status"].lower()
        payment = Payment(**payment_data)
        db.add(payment)
        db.flush()
        return payment

    @staticmethod
    def add_product_order(db: Session, **order_data) -> ProductOrder:
        """Stage a product order in the current transaction (no commit)"""
        order = ProductOrder(**order_data)
        db.add(order)
        db.flush()
        return order


class ReconciliationIssueRepository:
    """Repository for charges that need manual follow-up"""

    @staticmethod
    def get_issue(db: Session, issue_id: int) -> Optional[ReconciliationIssue]:
        return db.query(ReconciliationIssue).filter(ReconciliationIssue.id == issue_id).first()

    @staticmethod
    def get_by_transaction_id(db: Session, transaction_id: str) -> Optional[ReconciliationIssue]:
        return (
            db.query(ReconciliationIssue)
            .filter(ReconciliationIssue.transaction_id == transaction_id)
            .first()
        )

    @staticmethod
    def list_issues(db: Session, resolved: Optional[bool] = False) -> list[ReconciliationIssue]:
        query = db.query(ReconciliationIssue)
        if resolved is not None:
            query = query.filter(ReconciliationIssue.resolved.is_(resolved))
        return query.order_by(ReconciliationIssue.created_at.desc(), ReconciliationIssue.id.desc()).all()

    @staticmethod
    def create_issue(db: Session, **issue_data) -> ReconciliationIssue:
        """Persist an issue in its own transaction"""
        issue = ReconciliationIssue(**issue_data)
        db.add(issue)
        db.commit()
        db.refresh(issue)
        return issue

    @staticmethod
    def resolve_issue(db: Session, issue: ReconciliationIssue, note: str) -> ReconciliationIssue:
        issue.resolved = True
        issue.resolution_note = note
        issue.resolved_at = datetime.utcnow()
        db.commit()
        db.refresh(issue)
        return issue
