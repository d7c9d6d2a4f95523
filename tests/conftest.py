"""Pytest fixtures for tweeshirt tests."""

import base64
import os
import tempfile
from io import BytesIO

# Settings are read at import time, so the environment is prepared first.
_DB_DIR = tempfile.mkdtemp(prefix="tweeshirt-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["PRINTROVE_API_KEY"] = "test-printrove-key"
os.environ["ORDER_BACKEND_URL"] = "http://backend.test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["PRICING_STRATEGY"] = "margin"

import httpx
import pytest
from PIL import Image

from tweeshirt.draft import Customer, GarmentSize, OrderDraft
from tweeshirt.placement import Placement
from tweeshirt.pricing import PricingEngine

PRINTROVE_URL = "https://api.printrove.com/api/external/designs"
BACKEND_SUBMIT_URL = "http://backend.test/submit_form"


def make_png(color=(200, 30, 30)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (8, 8), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def png_b64(png_bytes):
    """Artwork as the generator hands it over: a bare base64 PNG."""
    return base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def customer():
    return Customer(
        name="Asha Rao",
        email="asha@example.com",
        mobile="9876543210",
        address1="12 MG Road",
        city="Bengaluru",
        pincode="560001",
        state="Karnataka",
        country="India",
    )


@pytest.fixture
def complete_draft(png_b64, customer):
    """A draft that has passed every stage up to Payment."""
    return OrderDraft(
        artwork_ref=png_b64,
        placement=Placement(),
        garment_color="Black",
        garment_size=GarmentSize.L,
        customer=customer,
        price_breakdown=PricingEngine("margin").compute_price("L", customer.pincode),
    )


class RecordingTransport(httpx.AsyncBaseTransport):
    """
    Routes requests by URL to canned responses and records every request.

    `routes` maps a URL to either an `httpx.Response` or a callable taking the
    request. Unknown URLs get a 404.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    def calls_to(self, url):
        return [r for r in self.requests if str(r.url) == url]

    async def handle_async_request(self, request):
        await request.aread()
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if callable(route):
            route = route(request)
            if hasattr(route, "__await__"):
                route = await route
        return route


def ok_routes():
    return {
        PRINTROVE_URL: lambda request: httpx.Response(200, json={"status": "success", "design": {"id": 991}}),
        BACKEND_SUBMIT_URL: lambda request: httpx.Response(200, json={"success": True, "message": "Order placed", "orderId": "ORD-1"}),
    }


@pytest.fixture
def transport():
    return RecordingTransport(ok_routes())
