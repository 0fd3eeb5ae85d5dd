import httpx
import pytest
import pytest_asyncio
import respx

from config import AppConfig, GatewayCredentials, GatewayMode
from gateway.client import RazorpayClient
from schemas.booking import BookingIntent
from storage.memory import InMemoryBookingStore, InMemoryCustomerStore, InMemoryEventLog

API = "https://api.razorpay.com/v1"
KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"
WEBHOOK_SECRET = "whsec_test"
SITE_URL = "https://play.example.com"

ASHA = {
    "customer": {"name": "Asha", "phone": "9876543210"},
    "selectedStations": ["st1", "st2"],
    "slots": [{"start": "18:00", "end": "18:30"}],
    "selectedDateISO": "2026-10-20",
    "duration": 30,
    "pricing": {"original": 1000, "discount": 0, "final": 1000},
}


class GatewayStub:
    """Canned Razorpay responses on a respx router"""

    def __init__(self, router: respx.MockRouter):
        self.router = router

    def payment(self, payment_id, order_id, status="captured", **extra):
        body = {
            "id": payment_id,
            "order_id": order_id,
            "status": status,
            "amount": 100000,
            "currency": "INR",
            **extra,
        }
        return self.router.get(f"/payments/{payment_id}").mock(
            return_value=httpx.Response(200, json=body)
        )

    def order(self, order_id, notes):
        body = {"id": order_id, "amount": 100000, "currency": "INR", "status": "paid", "notes": notes}
        return self.router.get(f"/orders/{order_id}").mock(
            return_value=httpx.Response(200, json=body)
        )


@pytest.fixture
def credentials():
    return GatewayCredentials(key_id=KEY_ID, key_secret=KEY_SECRET, mode=GatewayMode.TEST)


@pytest.fixture
def app_config():
    return AppConfig(site_url=SITE_URL)


@pytest.fixture
def intent():
    return BookingIntent.model_validate(ASHA)


@pytest.fixture
def customer_store():
    return InMemoryCustomerStore()


@pytest.fixture
def booking_store():
    return InMemoryBookingStore()


@pytest.fixture
def event_log():
    return InMemoryEventLog()


@pytest.fixture
def gateway():
    with respx.mock(base_url=API, assert_all_called=False) as router:
        yield GatewayStub(router)


@pytest_asyncio.fixture
async def client(credentials, app_config):
    async with RazorpayClient(credentials, app_config) as c:
        yield c


@pytest.fixture
def gateway_env(monkeypatch):
    for name in (
        "RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET",
        "RAZORPAY_KEY_ID_LIVE", "RAZORPAY_KEY_SECRET_LIVE", "RAZORPAY_WEBHOOK_SECRET_LIVE",
        "GATEWAY_API_URL", "GATEWAY_CURRENCY", "SITE_URL", "MATERIALIZE_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RAZORPAY_MODE", "test")
    monkeypatch.setenv("RAZORPAY_KEY_ID_TEST", KEY_ID)
    monkeypatch.setenv("RAZORPAY_KEY_SECRET_TEST", KEY_SECRET)
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET_TEST", WEBHOOK_SECRET)
    monkeypatch.setenv("PUBLIC_SITE_URL", SITE_URL)
