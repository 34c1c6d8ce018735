from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from doorstep.api.deps import get_booking_service
from doorstep.api.v1.events import get_registry
from doorstep.core.errors import BookingNotFound, BookingRuleError, ConflictError, StaleStateError
from doorstep.main import app
from doorstep.models.booking import BookingStatus, PaymentStatus
from doorstep.realtime.registry import ConnectionRegistry

CUSTOMER = {"X-User-Id": "101", "X-User-Role": "customer"}
PROVIDER = {"X-User-Id": "202", "X-User-Role": "provider"}
ADMIN = {"X-User-Id": "1", "X-User-Role": "admin"}


def fake_booking(**overrides):
    values = dict(
        id=uuid4(),
        customer_id=101,
        provider_id=202,
        service_id=7,
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        payment_reference=None,
        booking_date=datetime(2026, 11, 2, 10, 0, tzinfo=timezone.utc),
        time_slot_label="10:00 - 11:00",
        rejection_reason=None,
        dispute_reason=None,
        created_at=datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def service():
    mock_service = MagicMock()
    for name in ("get_booking", "get_history", "create_booking", "accept", "reject", "reschedule",
                 "mark_en_route", "submit_payment", "fail_payment", "complete", "dispute",
                 "resolve_dispute", "cancel", "process_expired_bookings"):
        setattr(mock_service, name, AsyncMock())
    return mock_service


@pytest.fixture
def client(service):
    app.dependency_overrides[get_booking_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestBookingRoutes:
    def test_create_booking_returns_201(self, client, service):
        booking = fake_booking()
        service.create_booking.return_value = booking

        response = client.post(
            "/api/v1/bookings/",
            json={"service_id": 7, "provider_id": 202, "booking_date": "2026-11-02T10:00:00Z"},
            headers=CUSTOMER,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "pending"
        assert service.create_booking.await_args.kwargs["customer_id"] == 101

    def test_missing_identity_is_rejected(self, client):
        response = client.post("/api/v1/bookings/", json={"service_id": 7, "booking_date": "2026-11-02T10:00:00Z"})
        assert response.status_code == 401

    def test_provider_cannot_create_booking(self, client):
        response = client.post(
            "/api/v1/bookings/",
            json={"service_id": 7, "booking_date": "2026-11-02T10:00:00Z"},
            headers=PROVIDER,
        )
        assert response.status_code == 403

    def test_get_booking_includes_history(self, client, service):
        booking = fake_booking(status=BookingStatus.ACCEPTED)
        service.get_booking.return_value = booking
        service.get_history.return_value = [SimpleNamespace(
            from_status=BookingStatus.PENDING,
            to_status=BookingStatus.ACCEPTED,
            changed_by=202,
            comments="Booking confirmed",
            created_at=datetime(2026, 10, 2, 9, 0, tzinfo=timezone.utc),
        )]

        response = client.get(f"/api/v1/bookings/{booking.id}", headers=CUSTOMER)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "accepted"
        assert data["history"][0]["to_status"] == "accepted"

    def test_non_participant_cannot_read_booking(self, client, service):
        service.get_booking.return_value = fake_booking(customer_id=999)
        response = client.get(f"/api/v1/bookings/{uuid4()}", headers=CUSTOMER)
        assert response.status_code == 403

    def test_unknown_booking_is_404(self, client, service):
        booking_id = uuid4()
        service.get_booking.side_effect = BookingNotFound(booking_id)

        response = client.get(f"/api/v1/bookings/{booking_id}", headers=CUSTOMER)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_accept_without_body(self, client, service):
        booking = fake_booking()
        service.get_booking.return_value = booking
        service.accept.return_value = fake_booking(id=booking.id, status=BookingStatus.ACCEPTED)

        response = client.patch(f"/api/v1/bookings/{booking.id}/accept", headers=PROVIDER)

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "accepted"
        service.accept.assert_awaited_once()

    def test_invalid_transition_is_409(self, client, service):
        booking = fake_booking(status=BookingStatus.COMPLETED)
        service.get_booking.return_value = booking
        service.accept.side_effect = ConflictError(BookingStatus.COMPLETED, "accept")

        response = client.patch(f"/api/v1/bookings/{booking.id}/accept", headers=PROVIDER)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["current_status"] == "completed"
        assert error["requested"] == "accept"

    def test_stale_write_is_409(self, client, service):
        booking = fake_booking()
        service.get_booking.return_value = booking
        service.reject.side_effect = StaleStateError(BookingStatus.PENDING, "reject")

        response = client.patch(
            f"/api/v1/bookings/{booking.id}/reject", json={"reason": "busy"}, headers=PROVIDER
        )

        assert response.status_code == 409

    def test_rule_violation_is_400(self, client, service):
        booking = fake_booking(status=BookingStatus.AWAITING_PAYMENT, payment_status=PaymentStatus.FAILED)
        service.get_booking.return_value = booking
        service.complete.side_effect = BookingRuleError("Cannot complete a booking whose payment failed")

        response = client.patch(f"/api/v1/bookings/{booking.id}/complete", headers=PROVIDER)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "rule_violation"

    def test_payment_reference_is_required(self, client, service):
        response = client.patch(f"/api/v1/bookings/{uuid4()}/payment", json={}, headers=CUSTOMER)
        assert response.status_code == 422

    def test_customer_list(self, client):
        with patch("doorstep.storage.bookings.list_for_customer", AsyncMock(return_value=[fake_booking()])):
            response = client.get("/api/v1/bookings/customer", headers=CUSTOMER)

        assert response.status_code == 200
        assert len(response.json()["data"]) == 1


class TestAdminRoutes:
    def test_resolve_dispute(self, client, service):
        booking_id = uuid4()
        service.resolve_dispute.return_value = fake_booking(id=booking_id, status=BookingStatus.COMPLETED)

        response = client.patch(
            f"/api/v1/admin/bookings/{booking_id}/resolve",
            json={"resolution_status": "completed"},
            headers=ADMIN,
        )

        assert response.status_code == 200
        assert service.resolve_dispute.await_args.args[1] == BookingStatus.COMPLETED

    def test_customer_cannot_resolve(self, client):
        response = client.patch(
            f"/api/v1/admin/bookings/{uuid4()}/resolve",
            json={"resolution_status": "completed"},
            headers=CUSTOMER,
        )
        assert response.status_code == 403

    def test_process_expired_on_demand(self, client, service):
        expired = [fake_booking(status=BookingStatus.EXPIRED)]
        service.process_expired_bookings.return_value = expired

        response = client.post("/api/v1/admin/bookings/process-expired", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["data"]["expired"] == 1


class ClosingRegistry(ConnectionRegistry):
    """Closes each connection right away so the stream ends after its first frame."""

    def register(self, user_id):
        connection = super().register(user_id)
        connection.close()
        return connection


class TestEventStream:
    def test_stream_opens_with_connected_frame(self):
        app.dependency_overrides[get_registry] = lambda: ClosingRegistry()
        try:
            response = TestClient(app).get("/api/events", headers=CUSTOMER)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.text.startswith("event: connected\n")

    def test_full_server_answers_503(self):
        registry = ConnectionRegistry(max_total=0)
        app.dependency_overrides[get_registry] = lambda: registry
        try:
            response = TestClient(app).get("/api/events", headers=CUSTOMER)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert response.headers["retry-after"] == "30"
