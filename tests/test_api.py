"""Tests for the order wizard HTTP API."""

import json
import logging
from types import SimpleNamespace

import httpx
import pytest
import stripe
from fastapi.testclient import TestClient
from PIL import Image

from conftest import BACKEND_SUBMIT_URL, PRINTROVE_URL, RecordingTransport, ok_routes
from tweeshirt.auth import create_access_token
from tweeshirt.db import async_session_maker
from tweeshirt.models import WizardSession
from tweeshirt.orders import get_http_transport
from tweeshirt.server import app

CUSTOMER = {
    "name": "Asha Rao",
    "email": "asha@example.com",
    "mobile": "9876543210",
    "address1": "12 MG Road",
    "city": "Bengaluru",
    "pincode": "560001",
    "state": "Karnataka",
    "country": "India",
}


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def transport():
    transport = RecordingTransport(ok_routes())
    app.dependency_overrides[get_http_transport] = lambda: transport
    yield transport
    app.dependency_overrides.pop(get_http_transport, None)


def _auth(email):
    return {"Authorization": f"Bearer {create_access_token({'sub': email})}"}


def _set_submission_state(client, wizard_id, value):
    """Writes the wizard row directly, on the app's event loop."""
    async def update():
        async with async_session_maker() as session:
            wizard = await session.get(WizardSession, wizard_id)
            wizard.submission_state = value
            await session.commit()

    client.portal.call(update)


def _asgi_client():
    """An in-process client for calls made while another request is being handled."""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


class WizardDriver:
    """Small helper that walks one wizard through the API."""

    def __init__(self, client, email):
        self.client = client
        self.headers = _auth(email)
        response = client.post("/api/orders/wizard", json={"descriptor": "Neon Tiger"}, headers=self.headers)
        assert response.status_code == 201
        self.id = response.json()["id"]

    def post(self, action, payload=None):
        return self.client.post(
            f"/api/orders/wizard/{self.id}/{action}", json=payload, headers=self.headers
        )

    def next(self, **values):
        response = self.post("next", values)
        assert response.status_code == 200
        return response.json()

    def to_payment(self, artwork, size="2XL"):
        self.next(artwork_ref=artwork)
        self.next()
        self.next(garment_color="Navy Blue", garment_size=size)
        data = self.next(customer=CUSTOMER)
        assert data["stage"] == 5
        return data


class TestAuth:
    def test_requires_token(self, client):
        response = client.post("/api/orders/wizard", json={})
        assert response.status_code == 401

    def test_rejects_bad_token(self, client):
        response = client.post("/api/orders/wizard", json={}, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_wizard_is_private_to_its_owner(self, client):
        wizard = WizardDriver(client, "owner@example.com")
        response = client.get(f"/api/orders/wizard/{wizard.id}", headers=_auth("other@example.com"))
        assert response.status_code == 404


class TestWizardFlow:
    def test_new_wizard_starts_on_confirm(self, client):
        wizard = WizardDriver(client, "start@example.com")
        data = client.get(f"/api/orders/wizard/{wizard.id}", headers=wizard.headers).json()
        assert data["stage"] == 1
        assert data["stage_label"] == "Confirm"
        assert data["price"] is None
        assert data["submission_state"] == "idle"

    def test_guard_error_keeps_stage(self, client):
        wizard = WizardDriver(client, "guard@example.com")
        data = wizard.next()
        assert data["stage"] == 1
        assert data["error"]["message"] == "Please confirm your image selection"

        data = wizard.post("dismiss-error").json()
        assert data["error"] is None

    def test_placement_endpoints(self, client, png_b64):
        wizard = WizardDriver(client, "place@example.com")
        wizard.next(artwork_ref=png_b64)

        data = wizard.post("placement/anchor", {"anchor": "top"}).json()
        assert data["placement"]["coords"] == {"x": 50.0, "y": 20.0}

        data = wizard.post("placement/scale", {"scale": 5}).json()
        assert data["placement"]["scale"] == 20.0

        data = wizard.post(
            "placement/drag",
            {
                "container": {"left": 0, "top": 0, "width": 200, "height": 400},
                "points": [{"x": 100, "y": 100}, {"x": 150, "y": 300}],
            },
        ).json()
        assert data["placement"]["anchor"] == "custom"
        assert data["placement"]["coords"] == {"x": 75.0, "y": 75.0}

        data = wizard.next()
        assert data["stage"] == 3
        assert data["draft"]["placement"]["anchor"] == "custom"

    def test_placement_outside_position_stage(self, client):
        wizard = WizardDriver(client, "early@example.com")
        response = wizard.post("placement/anchor", {"anchor": "top"})
        assert response.status_code == 400

    def test_price_is_shown_and_dropped_on_back(self, client, png_b64):
        wizard = WizardDriver(client, "price@example.com")
        data = wizard.to_payment(png_b64)
        assert data["price"]["total"] == "14.57"
        assert data["price"]["subtotal"] == "5.55"

        data = wizard.post("back").json()
        assert data["stage"] == 4
        assert data["price"] is None

    def test_discard_wizard(self, client):
        wizard = WizardDriver(client, "discard@example.com")
        response = client.delete(f"/api/orders/wizard/{wizard.id}", headers=wizard.headers)
        assert response.status_code == 204
        response = client.get(f"/api/orders/wizard/{wizard.id}", headers=wizard.headers)
        assert response.status_code == 404


class TestPaymentIntent:
    def test_creates_intent_for_total(self, client, png_b64, monkeypatch):
        captured = {}

        def fake_create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="pi_123", client_secret="pi_123_secret")

        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
        wizard = WizardDriver(client, "stripe@example.com")
        wizard.to_payment(png_b64)

        response = wizard.post("payment-intent")
        assert response.status_code == 200
        data = response.json()
        assert data["payment_intent_id"] == "pi_123"
        assert data["client_secret"] == "pi_123_secret"
        assert data["amount"] == 14.57
        assert captured["amount"] == 1457
        assert captured["metadata"]["wizard_id"] == wizard.id

    def test_requires_priced_order(self, client):
        wizard = WizardDriver(client, "unpriced@example.com")
        assert wizard.post("payment-intent").status_code == 400


class TestSubmit:
    def test_submit_places_order_and_closes_wizard(self, client, png_b64, transport):
        email = "buyer@example.com"
        wizard = WizardDriver(client, email)
        wizard.to_payment(png_b64)

        data = wizard.post("submit").json()
        assert data["error"]["message"] == "Please confirm the payment to place your order"
        assert transport.requests == []

        wizard.post("payment/confirm", {"confirmed": True})
        data = wizard.post("submit").json()

        assert data["stage"] == 6
        assert data["draft"] is None
        assert data["confirmation"]["order_id"] == "ORD-1"

        upload = transport.calls_to(PRINTROVE_URL)[0]
        assert upload.headers["Authorization"] == "Bearer test-printrove-key"
        assert b"_neon_tiger.png" in upload.content
        order = json.loads(transport.calls_to(BACKEND_SUBMIT_URL)[0].content)
        assert order["garmentColor"] == "Navy Blue"
        assert order["priceBreakdown"]["total"] == "14.57"
        assert order["fileResponse"]["design"]["id"] == 991

        assert client.get(f"/api/orders/wizard/{wizard.id}", headers=wizard.headers).status_code == 404

        orders = client.get("/api/orders/my-orders", headers=wizard.headers).json()
        assert len(orders) == 1
        assert orders[0]["backend_order_id"] == "ORD-1"
        assert orders[0]["garment_size"] == "2XL"
        assert orders[0]["total_cents"] == 1457

    def test_failed_submit_can_be_retried(self, client, png_b64, transport):
        responses = iter([
            httpx.Response(502, json={"message": "Backend unavailable"}),
            httpx.Response(200, json={"success": True, "orderId": "ORD-9"}),
        ])
        transport.routes[BACKEND_SUBMIT_URL] = lambda request: next(responses)
        wizard = WizardDriver(client, "retry@example.com")
        wizard.to_payment(png_b64)
        wizard.post("payment/confirm", {"confirmed": True})

        data = wizard.post("submit").json()
        assert data["stage"] == 5
        assert data["submission_state"] == "error"
        assert data["error"]["kind"] == "submission"
        assert data["error"]["message"] == "Backend unavailable"
        assert data["draft"]["partner_upload_result"]["design"]["id"] == 991

        data = wizard.post("submit").json()
        assert data["stage"] == 6
        assert data["confirmation"]["order_id"] == "ORD-9"
        assert len(transport.calls_to(PRINTROVE_URL)) == 1
        assert len(transport.calls_to(BACKEND_SUBMIT_URL)) == 2

    def test_upload_failure_is_reported(self, client, png_b64, transport):
        transport.routes[PRINTROVE_URL] = lambda request: httpx.Response(401, json={"message": "bad key"})
        wizard = WizardDriver(client, "badkey@example.com")
        wizard.to_payment(png_b64)
        wizard.post("payment/confirm", {"confirmed": True})

        data = wizard.post("submit").json()
        assert data["stage"] == 5
        assert data["error"]["kind"] == "upload"
        assert transport.calls_to(BACKEND_SUBMIT_URL) == []

    def test_second_submit_while_in_flight_is_rejected(self, client, png_b64, transport):
        wizard = WizardDriver(client, "twice.com")
        wizard.to_payment(png_b64)
        wizard.post("payment/confirm", {"confirmed": True})
        _set_submission_state(client, wizard.id, "in_flight")

        response = wizard.post("submit")
        assert response.status_code == 409
        assert transport.requests == []

        data = client.get(f"/api/orders/wizard/{wizard.id}", headers=wizard.headers).json()
        assert data["stage"] == 5
        assert data["submission_state"] == "in_flight"

    def test_leaving_payment_during_upload_discards_result(self, client, png_b64, transport):
        wizard = WizardDriver(client, "wander.com")
        wizard.to_payment(png_b64)
        wizard.post("payment/confirm", {"confirmed": True})

        async def go_back_during_upload(request):
            async with _asgi_client() as inner:
                response = await inner.post(f"/api/orders/wizard/{wizard.id}/back", headers=wizard.headers)
            assert response.status_code == 200
            assert response.json()["submission_state"] == "in_flight"
            return httpx.Response(200, json={"design": {"id": 991}})

        transport.routes[PRINTROVE_URL] = go_back_during_upload

        response = wizard.post("submit")
        assert response.status_code == 200
        data = response.json()
        assert data["stage"] == 4
        assert data["submission_state"] == "idle"
        assert data["error"] is None
        assert data["confirmation"] is None
        assert transport.calls_to(BACKEND_SUBMIT_URL) == []

        data = client.get(f"/api/orders/wizard/{wizard.id}", headers=wizard.headers).json()
        assert data["stage"] == 4
        assert data["submission_state"] == "idle"
        assert data["payment_confirmed"] is False

    def test_order_accepted_after_wizard_discarded_is_logged(self, client, png_b64, transport, caplog):
        wizard = WizardDriver(client, "vanish.com")
        wizard.to_payment(png_b64)
        wizard.post("payment/confirm", {"confirmed": True})

        async def discard_then_accept(request):
            async with _asgi_client() as inner:
                response = await inner.delete(f"/api/orders/wizard/{wizard.id}", headers=wizard.headers)
            assert response.status_code == 204
            return httpx.Response(200, json={"success": True, "orderId": "ORD-LATE"})

        transport.routes[BACKEND_SUBMIT_URL] = discard_then_accept

        with caplog.at_level(logging.WARNING, logger="tweeshirt.orders"):
            response = wizard.post("submit")

        assert response.status_code == 404
        assert any(
            "ORD-LATE" in record.getMessage() and record.levelno == logging.WARNING
            for record in caplog.records
            if record.name == "tweeshirt.orders"
        )
        assert client.get("/api/orders/my-orders", headers=wizard.headers).json() == []

    def test_oversized_artwork_becomes_stage_error(self, client, png_b64, transport, monkeypatch):
        wizard = WizardDriver(client, "huge.com")
        wizard.to_payment(png_b64)
        wizard.post("payment/confirm", {"confirmed": True})
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 16)

        response = wizard.post("submit")
        assert response.status_code == 200
        data = response.json()
        assert data["stage"] == 5
        assert data["submission_state"] == "error"
        assert data["error"]["kind"] == "upload"
        assert transport.requests == []


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
