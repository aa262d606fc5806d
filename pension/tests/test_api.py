"""
Tests for the HTTP surface.

The app keeps one module-level service, so every test uses its own member id.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from pension.api import app

client = TestClient(app)


def new_member() -> str:
    return f"M-{uuid4().hex[:8]}"


def contribution_payload(member_id, amount="120000", contribution_date="2024-01-15", contribution_type="Monthly"):
    return {
        "member_id": member_id,
        "contribution_type": contribution_type,
        "amount": amount,
        "contribution_date": contribution_date,
        "reference_number": "REF1",
    }


class TestContributionEndpoints:
    def test_post_contribution(self):
        member_id = new_member()

        response = client.post("/contributions", json=contribution_payload(member_id))

        assert response.status_code == 201
        assert response.json()["member_id"] == member_id
        assert Decimal(response.json()["amount"]) == Decimal("120000")

    def test_duplicate_monthly_conflict(self):
        member_id = new_member()
        client.post("/contributions", json=contribution_payload(member_id))

        response = client.post("/contributions", json=contribution_payload(member_id, contribution_date="2024-01-30"))

        assert response.status_code == 409

    def test_negative_amount_bad_request(self):
        response = client.post("/contributions", json=contribution_payload(new_member(), amount="-5"))

        assert response.status_code == 400

    def test_unknown_contribution_type_rejected(self):
        response = client.post("/contributions", json=contribution_payload(new_member(), contribution_type="Weekly"))

        assert response.status_code == 422

    def test_list_contributions(self):
        member_id = new_member()
        client.post("/contributions", json=contribution_payload(member_id, contribution_date="2024-01-15"))
        client.post("/contributions", json=contribution_payload(member_id, contribution_date="2024-02-15"))

        response = client.get(f"/members/{member_id}/contributions", params={"page_size": 1, "offset": 0})

        assert response.status_code == 200
        assert [c["contribution_date"] for c in response.json()] == ["2024-02-15"]

    def test_page_size_must_be_positive(self):
        response = client.get(f"/members/{new_member()}/contributions", params={"page_size": 0})

        assert response.status_code == 422


class TestMemberEndpoints:
    def test_transaction_history_not_found(self):
        response = client.get(f"/members/{new_member()}/transactions")

        assert response.status_code == 404

    def test_transaction_history(self):
        member_id = new_member()
        client.post("/contributions", json=contribution_payload(member_id))

        response = client.get(f"/members/{member_id}/transactions")

        assert response.status_code == 200
        assert response.json()[0]["change_type"] == "Created"

    def test_calculate_benefit(self):
        member_id = new_member()
        client.post("/contributions", json=contribution_payload(member_id))

        response = client.post(f"/members/{member_id}/benefits")

        assert response.status_code == 201
        assert response.json()["eligibility_status"] == "Eligible"
        assert Decimal(response.json()["amount"]) == Decimal("12000")

    def test_calculate_benefit_without_contributions(self):
        response = client.post(f"/members/{new_member()}/benefits")

        assert response.status_code == 404


class TestSystemEndpoints:
    def test_health(self):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_run_job(self):
        response = client.post("/jobs/MonthlyContributionValidation/run")

        assert response.status_code == 200
        assert response.json()["status"] == "SUCCEEDED"
        assert response.json()["outcome"]["succeeded"] == 1

    def test_run_unknown_job(self):
        response = client.post("/jobs/DoesNotExist/run")

        assert response.status_code == 404


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
