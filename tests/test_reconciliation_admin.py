"""
Tests for the admin reconciliation issue queue.
"""

import pytest

from app.domain.billing.repository import ReconciliationIssueRepository

BASE_URL = "/admin/reconciliation-issues"


@pytest.fixture
def issue(db):
    return ReconciliationIssueRepository.create_issue(
        db,
        transaction_id="pay_stuck_1",
        session_id="cs_stuck_1",
        amount=2500.0,
        reason="slot_unavailable",
        order_details={"type": "appointment", "slotId": 1, "patientId": 7},
        source="webhook",
    )


class TestReconciliationQueue:
    def test_lists_open_issues(self, client, issue, admin_headers):
        response = client.get(BASE_URL, headers=admin_headers)

        assert response.status_code == 200
        [listed] = response.json()
        assert listed["transactionId"] == "pay_stuck_1"
        assert listed["reason"] == "slot_unavailable"
        assert listed["orderDetails"]["slotId"] == 1
        assert listed["resolved"] is False

    def test_admin_only(self, client, issue, patient_headers):
        assert client.get(BASE_URL, headers=patient_headers).status_code == 403

    def test_resolve_moves_issue_out_of_queue(self, client, issue, admin_headers):
        response = client.post(f"{BASE_URL}/{issue.id}/resolve", json={"note": "Refunded"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["resolved"] is True
        assert response.json()["resolutionNote"] == "Refunded"
        assert response.json()["resolved_at"] is not None
        assert client.get(BASE_URL, headers=admin_headers).json() == []
        resolved = client.get(BASE_URL, params={"resolved": "true"}, headers=admin_headers).json()
        assert [i["id"] for i in resolved] == [issue.id]

    def test_resolving_twice_is_conflict(self, client, issue, admin_headers):
        client.post(f"{BASE_URL}/{issue.id}/resolve", json={"note": "Refunded"}, headers=admin_headers)

        response = client.post(f"{BASE_URL}/{issue.id}/resolve", json={"note": "Again"}, headers=admin_headers)

        assert response.status_code == 409

    def test_note_is_required(self, client, issue, admin_headers):
        response = client.post(f"{BASE_URL}/{issue.id}/resolve", json={"note": "  "}, headers=admin_headers)

        assert response.status_code == 422

    def test_unknown_issue(self, client, admin_headers):
        response = client.post(f"{BASE_URL}/999/resolve", json={"note": "n/a"}, headers=admin_headers)

        assert response.status_code == 404
