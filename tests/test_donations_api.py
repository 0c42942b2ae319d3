"""
Tests for the donation form endpoint and donation lookups.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

from templegiving.model.orm import User, Donation
from templegiving.model.donations import (
    create_donation, transition_donation_status, update_donation_payment,
)


def donation_form(**extra):
    form = {
        "name": "Asha Verma",
        "email": "Asha@Example.com",
        "mobile": "98765 43210",
        "city": "Varanasi",
        "amount": 1100,
        "donation_type": "construction",
        "dedication_message": "In memory of my grandparents",
    }
    form.update(extra)
    return form


class TestCreateDonation:

    @pytest.mark.asyncio
    async def test_creates_user_and_pending_donation(
        self, client: AsyncClient, db_session
    ):
        response = await client.post("/api/donations", json=donation_form())
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["order_id"] == data["donation_id"]
        assert data["receipt_number"].startswith("RCP-")
        assert data["customer_details"]["customer_email"] == \
            "asha@example.com"
        assert data["customer_details"]["customer_phone"] == "+919876543210"
        assert data["customer_details"]["customer_id"] == \
            "customer_919876543210"

        d = await db_session.get(Donation, data["donation_id"])
        assert d.payment_status == "pending"
        assert d.amount == 1100.0

    @pytest.mark.asyncio
    async def test_existing_user_reused(self, client: AsyncClient,
                                        db_session):
        await client.post("/api/donations", json=donation_form())
        await client.post("/api/donations", json=donation_form(amount=51))
        users = await db_session.scalar(
            select(func.count()).select_from(User)
        )
        donations = await db_session.scalar(
            select(func.count()).select_from(Donation)
        )
        assert users == 1
        assert donations == 2

    @pytest.mark.asyncio
    async def test_rejects_bad_amount(self, client: AsyncClient):
        response = await client.post("/api/donations",
                                     json=donation_form(amount=-5))
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    @pytest.mark.asyncio
    async def test_rejects_bad_mobile(self, client: AsyncClient):
        response = await client.post("/api/donations",
                                     json=donation_form(mobile="12345"))
        assert response.status_code == 400
        fields = [d["field"] for d in response.json()["details"]]
        assert fields == ["mobile"]


class TestGetDonation:

    @pytest.mark.asyncio
    async def test_by_id_with_donor(self, client: AsyncClient,
                                    pending_donation):
        response = await client.get(f"/api/donations/{pending_donation.id}")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == pending_donation.id
        assert data["users"]["email"] == "donor@example.com"

    @pytest.mark.asyncio
    async def test_by_payment_id(self, client: AsyncClient, db_session,
                                 pending_donation):
        pending_donation.payment_id = "pay_42"
        await db_session.commit()
        response = await client.get("/api/donations/pay_42")
        assert response.status_code == 200
        assert response.json()["data"]["id"] == pending_donation.id

    @pytest.mark.asyncio
    async def test_missing(self, client: AsyncClient):
        response = await client.get("/api/donations/nope")
        assert response.status_code == 404
        assert response.json() == {"success": False,
                                   "error": "Donation not found"}


class TestTransitions:

    @pytest.mark.asyncio
    async def test_completed_to_refunded(self, db_session, pending_donation):
        await transition_donation_status(db_session, pending_donation.id,
                                         "completed", payment_id="p1")
        moved = await transition_donation_status(
            db_session, pending_donation.id, "refunded"
        )
        assert moved.ok and moved.value.applied
        assert moved.value.previous == "completed"
        assert moved.value.current == "refunded"

    @pytest.mark.asyncio
    async def test_failed_cannot_complete(self, db_session,
                                          pending_donation):
        await transition_donation_status(db_session, pending_donation.id,
                                         "failed")
        moved = await transition_donation_status(
            db_session, pending_donation.id, "completed"
        )
        assert moved.ok and not moved.value.applied
        assert moved.value.current == "failed"

    @pytest.mark.asyncio
    async def test_unknown_status(self, db_session, pending_donation):
        moved = await transition_donation_status(
            db_session, pending_donation.id, "abandoned"
        )
        assert not moved.ok

    @pytest.mark.asyncio
    async def test_missing_donation(self, db_session):
        moved = await transition_donation_status(db_session, "nope",
                                                 "completed")
        assert moved.ok and not moved.value.found

    @pytest.mark.asyncio
    async def test_unconditional_update(self, db_session, pending_donation):
        updated = await update_donation_payment(
            db_session, pending_donation.id, "failed", payment_id="p9"
        )
        assert updated.ok
        assert updated.value.payment_status == "failed"
        assert updated.value.payment_id == "p9"

    @pytest.mark.asyncio
    async def test_receipt_numbers_generated(self, db_session):
        a = await create_donation(db_session, {"amount": 10})
        b = await create_donation(db_session, {"amount": 20})
        assert a.ok and b.ok
        assert a.value.receipt_number != b.value.receipt_number
        assert a.value.user_id is None
