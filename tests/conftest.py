import mongomock
import pytest

from cart import CartStore
from config import Settings
from device_store import DeviceStore
from payment import TransferResponse


def transfer_body(status="success", transfer_status="complete", transfer_id="TXN1", message="ok"):
    body = {"status": status, "message": message}
    if transfer_status is not None:
        body["data"] = {
            "id": transfer_id,
            "wallet_id": "wallet-test",
            "amount": "450",
            "number_phone": "841234567",
            "type": "transfer",
            "status": transfer_status,
            "at_created": "2025-09-04T10:00:00Z",
        }
    return body


class FakeGibrapay:
    """Scripted stand-in for GibrapayClient: each transfer pops the next outcome."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []
        self.statuses = {}

    def transfer(self, phone_number, amount):
        self.calls.append((phone_number, amount))
        outcome = self.outcomes.pop(0) if self.outcomes else transfer_body()
        if isinstance(outcome, Exception):
            raise outcome
        return TransferResponse.model_validate(outcome)

    def get_transfer_status(self, transfer_id):
        return self.statuses.get(transfer_id)

    def get_wallet_balance(self):
        return {"status": "success", "data": {"balance": "1000.00"}}

    def get_transactions(self):
        return [{"id": k, "status": v} for k, v in self.statuses.items()]


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient().mozstore_test


@pytest.fixture
def settings():
    return Settings(
        admin_email="admin@mozstoredigital.com",
        admin_password="admin-pass-123",
        support_whatsapp_number="258871009140",
    )


@pytest.fixture
def device(mongo_db):
    return DeviceStore(mongo_db, "device-1")


@pytest.fixture
def cart(device):
    return CartStore(device)


@pytest.fixture
def gateway():
    return FakeGibrapay()


@pytest.fixture
def netflix():
    return {"id": "p1", "name": "Netflix Premium 1 Mês", "price": 450, "discount": 0,
            "category": "streaming", "image": "https://img/netflix.png"}


@pytest.fixture
def ebook():
    return {"id": "p2", "name": "Guia de Python", "price": 300, "discount": 0,
            "category": "ebooks", "image": "", "download_link": "https://dl/python.pdf"}


@pytest.fixture
def game():
    return {"id": "p3", "name": "FIFA Mobile", "price": 900, "discount": 0, "category": "jogos", "image": ""}
