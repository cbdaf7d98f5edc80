"""
Tests for the HTTP API

Drives the FastAPI app through TestClient with a pre-built service (mock
processor, fixed clock, no persistence).

Tests covering:
1. Authentication and role checks
2. Student approval gate on bidding and checkout
3. Bid submission responses and error mapping
4. Checkout, signed webhooks, capture and payout
5. Place listing visibility and pagination
6. Invoice download
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from core.bidding import BiddingRepository, BiddingService, Principal, Role
from core.bidding.schema import utcnow
from processor.mock import MockCardProcessor
from processor.webhooks import SIGNATURE_HEADER, signature_header
from utils.config import Config
from web.app import create_app
from web.auth import sign_token, verify_token


SESSION_SECRET = "test-session-secret"
WEBHOOK_SECRET = "whsec_test"
START = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config():
    return Config(
        debug=False,
        commission_rate=Decimal("0.0666"),
        bid_window_days=30,
        payout_methods=("bank_transfer", "manual", "other"),
        currency="usd",
        auth_expiry_days=6,
        processor_type="mock",
        webhook_secret=WEBHOOK_SECRET,
        session_secret=SESSION_SECRET,
    )


@pytest.fixture
def processor():
    return MockCardProcessor()


@pytest.fixture
def service(config, processor):
    return BiddingService(BiddingRepository(), config, processor, clock=lambda: START)


@pytest.fixture
def client(config, service):
    return TestClient(create_app(config=config, service=service))


def auth(principal_id: str, role: Role) -> dict:
    token = sign_token(Principal(principal_id, role), SESSION_SECRET)
    return {"Authorization": f"Bearer {token}"}


ADMIN = auth("admin-1", Role.ADMIN)
HOST = auth("host-1", Role.HOTEL_OWNER)
STUDENT = auth("student-1", Role.STUDENT)


@pytest.fixture
def place_id(client):
    response = client.post(
        "/places",
        json={
            "name": "Pod Central",
            "city": "Lisbon",
            "retail_price": "100",
            "minimum_bid": "60",
            "auto_accept_above_minimum": True,
            "status": "LIVE",
        },
        headers=HOST,
    )
    assert response.status_code == 201
    return response.json()["place_id"]


@pytest.fixture
def approved_student(client):
    client.post("/students/me", json={"email": "ana@uni.example", "name": "Ana"}, headers=STUDENT)
    response = client.post("/students/student-1/approve", headers=ADMIN)
    assert response.json()["approval_status"] == "APPROVED"


def submit(client, place_id, amount="70", check_in="2026-03-03", check_out="2026-03-06"):
    return client.post(
        "/bids",
        json={
            "place_id": place_id,
            "check_in_date": check_in,
            "check_out_date": check_out,
            "bid_per_night": amount,
        },
        headers=STUDENT,
    )


def send_webhook(client, event_id, event_type, intent_id, secret=WEBHOOK_SECRET):
    payload = json.dumps(
        {"id": event_id, "type": event_type, "data": {"object": {"id": intent_id}}}
    ).encode()
    return client.post(
        "/payments/webhook",
        content=payload,
        headers={SIGNATURE_HEADER: signature_header(secret, payload)},
    )


# =============================================================================
# Authentication
# =============================================================================


class TestAuthentication:
    """Tests for bearer tokens and role checks."""

    def test_health_needs_no_auth(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_missing_token_is_401(self, client):
        assert client.get("/bids/my").status_code == 401

    def test_forged_token_is_401(self, client):
        token = sign_token(Principal("student-1", Role.STUDENT), "wrong-secret")
        response = client.get("/bids/my", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_expired_token_is_rejected(self):
        token = sign_token(
            Principal("student-1", Role.STUDENT),
            SESSION_SECRET,
            expires_at=utcnow() - timedelta(minutes=1),
        )
        assert verify_token(token, SESSION_SECRET) is None

    def test_token_round_trip(self):
        token = sign_token(Principal("host-1", Role.HOTEL_OWNER, email="h@x.example"), SESSION_SECRET)
        principal = verify_token(token, SESSION_SECRET)
        assert principal.principal_id == "host-1"
        assert principal.role == Role.HOTEL_OWNER
        assert principal.email == "h@x.example"

    def test_wrong_role_is_403(self, client):
        assert client.get("/bids", headers=STUDENT).status_code == 403
        assert client.post("/places", json={}, headers=STUDENT).status_code == 403

    def test_dev_token_route_only_in_debug(self, client):
        assert client.post("/auth/token", json={"principal_id": "x", "role": "ADMIN"}).status_code in (404, 405)


# =============================================================================
# Bidding
# =============================================================================


class TestBidRoutes:
    """Tests for bid submission and views."""

    def test_unapproved_student_cannot_bid(self, client, place_id):
        client.post("/students/me", json={"email": "ana@uni.example"}, headers=STUDENT)
        response = submit(client, place_id)
        assert response.status_code == 403
        assert response.json()["detail"] == "Your student account is pending approval"

    def test_auto_accepted_bid(self, client, place_id, approved_student):
        response = submit(client, place_id)
        assert response.status_code == 201
        body = response.json()
        assert body["bid"]["status"] == "ACCEPTED"
        assert body["bid"]["total_amount"] == "210.00"
        assert "platform_commission" not in body["bid"]
        assert body["message"].startswith("Congratulations")

    def test_below_minimum_is_created_as_rejected(self, client, place_id, approved_student):
        response = submit(client, place_id, amount="50")
        assert response.status_code == 201
        bid = response.json()["bid"]
        assert bid["status"] == "REJECTED"
        assert bid["rejection_reason"] == "Bid below minimum acceptable rate of 60/night"

    def test_duplicate_is_409(self, client, place_id, approved_student):
        submit(client, place_id)
        response = submit(client, place_id)
        assert response.status_code == 409
        assert response.json() == {
            "error": "DuplicateBid",
            "detail": "You already have an active bid for this place",
        }

    @pytest.mark.parametrize(
        "check_in,check_out,amount,kind",
        [
            ("2026-05-01", "2026-05-03", "70", "DateOutOfWindow"),
            ("2026-03-05", "2026-03-04", "70", "InvalidDateRange"),
            ("2026-03-03", "2026-03-06", "0", "InvalidBidAmount"),
        ],
    )
    def test_intake_errors_are_400(self, client, place_id, approved_student, check_in, check_out, amount, kind):
        response = submit(client, place_id, amount=amount, check_in=check_in, check_out=check_out)
        assert response.status_code == 400
        assert response.json()["error"] == kind

    def test_unknown_place_is_400_unavailable(self, client, approved_student):
        response = submit(client, "PLC-MISSING")
        assert response.status_code == 400
        assert response.json()["error"] == "PlaceUnavailable"

    def test_views_by_role(self, client, place_id, approved_student):
        bid_id = submit(client, place_id).json()["bid"]["bid_id"]

        mine = client.get("/bids/my", headers=STUDENT).json()
        assert mine["total"] == 1
        assert client.get(f"/bids/place/{place_id}", headers=STUDENT).json()["bid"]["bid_id"] == bid_id

        hosted = client.get("/bids/hotel", headers=HOST).json()
        assert hosted["items"][0]["platform_commission"] == "13.99"
        summary = client.get("/bids/hotel/summary", headers=HOST).json()
        assert summary["payable_total"] == "196.01"

        other_student = auth("student-2", Role.STUDENT)
        assert client.get(f"/bids/{bid_id}", headers=other_student).status_code == 403
        assert client.get("/bids/stats", headers=ADMIN).json() == {"ACCEPTED": 1}

    def test_operator_resolves_pending_bid(self, client, approved_student):
        place = client.post(
            "/places",
            json={"name": "Hostel", "retail_price": "50", "minimum_bid": "20", "status": "LIVE"},
            headers=HOST,
        ).json()
        bid_id = submit(client, place["place_id"], amount="25").json()["bid"]["bid_id"]

        response = client.patch(f"/bids/{bid_id}/status", json={"status": "accepted"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["status"] == "ACCEPTED"

        again = client.patch(f"/bids/{bid_id}/status", json={"status": "REJECTED"}, headers=ADMIN)
        assert again.status_code == 409
        assert again.json()["error"] == "InvalidStateTransition"

    def test_unknown_bid_is_404(self, client):
        response = client.get("/bids/BID-MISSING", headers=ADMIN)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"


# =============================================================================
# Payments
# =============================================================================


class TestPaymentRoutes:
    """Tests for checkout, webhooks and operator payment actions."""

    @pytest.fixture
    def bid_id(self, client, place_id, approved_student):
        return submit(client, place_id).json()["bid"]["bid_id"]

    def test_checkout_webhook_capture_payout(self, client, processor, bid_id):
        created = client.post("/payments/create-intent", json={"bid_id": bid_id}, headers=STUDENT)
        assert created.status_code == 201
        assert created.json()["client_secret"]
        payment = created.json()["payment"]
        assert "client_secret" not in payment

        resumed = client.post("/payments/create-intent", json={"bid_id": bid_id}, headers=STUDENT)
        assert resumed.status_code == 200
        assert resumed.json()["payment"]["payment_id"] == payment["payment_id"]

        payout = client.patch(f"/bids/{bid_id}/payout", json={"is_paid_to_host": True}, headers=ADMIN)
        assert payout.status_code == 409
        assert payout.json()["error"] == "PaymentNotCaptured"

        processor.simulate_card(payment["intent_id"])
        hook = send_webhook(
            client, "evt_1", "payment_intent.amount_capturable_updated", payment["intent_id"]
        )
        assert hook.json() == {"received": True, "applied": True}
        replay = send_webhook(
            client, "evt_1", "payment_intent.amount_capturable_updated", payment["intent_id"]
        )
        assert replay.json() == {"received": True, "applied": False}

        captured = client.post(f"/payments/{payment['payment_id']}/capture", headers=ADMIN)
        assert captured.status_code == 200
        assert captured.json()["payment"]["status"] == "CAPTURED"

        payout = client.patch(
            f"/bids/{bid_id}/payout",
            json={"is_paid_to_host": True, "payout_method": "manual"},
            headers=ADMIN,
        )
        assert payout.status_code == 200
        assert payout.json()["is_paid_to_host"] is True
        assert payout.json()["payout_method"] == "manual"

    def test_bad_webhook_signature_is_400(self, client, bid_id):
        response = send_webhook(client, "evt_1", "payment_intent.succeeded", "pi_x", secret="nope")
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidWebhook"

    def test_confirm_moves_to_authorized(self, client, processor, bid_id):
        payment = client.post(
            "/payments/create-intent", json={"bid_id": bid_id}, headers=STUDENT
        ).json()["payment"]
        processor.simulate_card(payment["intent_id"])
        response = client.post(f"/payments/{payment['payment_id']}/confirm", headers=STUDENT)
        assert response.json()["payment"]["status"] == "AUTHORIZED"

    def test_cancel_then_list(self, client, bid_id):
        payment = client.post(
            "/payments/create-intent", json={"bid_id": bid_id}, headers=STUDENT
        ).json()["payment"]
        response = client.post(
            f"/payments/{payment['payment_id']}/cancel",
            json={"reason": "Guest changed plans"},
            headers=ADMIN,
        )
        assert response.json()["payment"]["status"] == "CANCELLED"
        assert response.json()["payment"]["failure_reason"] == "Guest changed plans"

        listed = client.get("/payments?status=cancelled", headers=ADMIN).json()
        assert listed["total"] == 1
        assert client.get("/payments?status=bogus", headers=ADMIN).status_code == 400

    def test_invoice_download(self, client, bid_id):
        response = client.get(f"/bids/{bid_id}/invoice.pdf", headers=HOST)
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")
        assert "INV-BID-" in response.headers["content-disposition"]

    def test_students_cannot_download_invoice(self, client, bid_id):
        assert client.get(f"/bids/{bid_id}/invoice.pdf", headers=STUDENT).status_code == 403


# =============================================================================
# Places
# =============================================================================


class TestPlaceRoutes:
    """Tests for listing and managing places."""

    def test_public_sees_live_places_only(self, client, place_id):
        client.post(
            "/places",
            json={"name": "Draft", "retail_price": "90", "minimum_bid": "40"},
            headers=HOST,
        )
        public = client.get("/places").json()
        assert public["total"] == 1
        assert public["items"][0]["place_id"] == place_id
        assert client.get("/places", headers=HOST).json()["total"] == 2

    def test_invalid_place_lists_errors(self, client):
        response = client.post(
            "/places", json={"name": "X", "retail_price": "50", "minimum_bid": "80"}, headers=HOST
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "InvalidPlace"
        assert "Minimum bid must be less than the retail price" in body["errors"]

    def test_validate_dry_run(self, client):
        response = client.post("/places/validate", json={"name": "X"}, headers=HOST)
        assert response.json()["valid"] is False
        assert "retail_price" in response.json()["missing_fields"]

    def test_other_host_cannot_edit(self, client, place_id):
        other = auth("host-2", Role.HOTEL_OWNER)
        response = client.put(f"/places/{place_id}", json={"name": "Mine"}, headers=other)
        assert response.status_code == 403

    def test_status_toggle_and_pagination(self, client, place_id):
        paused = client.patch(f"/places/{place_id}/status", json={"status": "paused"}, headers=HOST)
        assert paused.json()["status"] == "PAUSED"
        assert client.get(f"/places/{place_id}").status_code == 404

        page = client.get("/places?page=2&limit=1", headers=ADMIN).json()
        assert page["page"] == 2
        assert page["items"] == []


# =============================================================================
# Students
# =============================================================================


class TestStudentRoutes:
    """Tests for the approval workflow."""

    def test_register_and_reject(self, client):
        response = client.post("/students/me", json={"email": "ana@uni.example"}, headers=STUDENT)
        assert response.json()["approval_status"] == "PENDING"

        rejected = client.post(
            "/students/student-1/reject", json={"reason": "Blurry ID"}, headers=ADMIN
        )
        assert rejected.json()["approval_status"] == "REJECTED"
        assert client.get("/students/me", headers=STUDENT).json()["rejection_reason"] == "Blurry ID"

        stats = client.get("/students/stats", headers=ADMIN).json()
        assert stats == {"PENDING": 0, "APPROVED": 0, "REJECTED": 1, "total": 1}

    def test_bad_email_is_400(self, client):
        response = client.post("/students/me", json={"email": "nope"}, headers=STUDENT)
        assert response.status_code == 400

    def test_unknown_student_is_404(self, client):
        assert client.get("/students/student-9", headers=ADMIN).status_code == 404
