from urllib.parse import unquote

import pytest

from checkout import (
    PAYMENT_UNAVAILABLE,
    PAYMENT_UNCONFIRMED,
    CheckoutOrchestrator,
    build_handoff_link,
    partition_delivery,
)
from errors import CheckoutConflictError, EmptyCartError, GatewayCommunicationError, PaymentFailedError, ValidationError
from schemas import CartItem
from tests.conftest import FakeGibrapay, transfer_body


def _item(pid, category, **extra):
    return CartItem(product_id=pid, name=f"Produto {pid}", price=100, quantity=1, category=category, **extra)


@pytest.fixture
def orchestrator(mongo_db, cart, gateway, settings):
    return CheckoutOrchestrator(mongo_db, cart, gateway, settings)


def test_partition_keeps_order():
    plan = partition_delivery(
        [_item("a", "jogos"), _item("b", "streaming"), _item("c", "ebooks")], "TXN9", "258871009140"
    )
    assert [d.product_id for d in plan.downloadable] == ["a", "c"]
    assert [d.product_id for d in plan.handoff] == ["b"]


def test_partition_category_is_case_insensitive():
    plan = partition_delivery([_item("a", "Ebooks")], "TXN9", "258871009140")
    assert plan.downloadable[0].kind == "download"
    assert plan.auto_redirect_url is None


def test_download_without_link_gets_email_message():
    plan = partition_delivery(
        [_item("a", "ebooks", download_link="https://dl/a.pdf"), _item("b", "jogos")], "TXN9", "258871009140"
    )
    assert plan.downloadable[0].url == "https://dl/a.pdf"
    assert plan.downloadable[0].message is None
    assert plan.downloadable[1].url is None
    assert "email" in plan.downloadable[1].message


def test_handoff_uses_redirect_link_or_whatsapp():
    plan = partition_delivery(
        [_item("a", "paypal", redirect_link="https://t.me/mozstore"), _item("b", "streaming")],
        "TXN9",
        "258871009140",
        countdown_seconds=5,
    )
    assert plan.handoff[0].url == "https://t.me/mozstore"
    assert plan.handoff[1].url.startswith("https://wa.me/258871009140?text=")
    assert plan.auto_redirect_url == "https://t.me/mozstore"
    assert plan.countdown_seconds == 5


def test_whatsapp_message_names_product_and_transaction():
    link = build_handoff_link("Netflix Premium", "TXN42", "258871009140")
    text = unquote(link.split("?text=", 1)[1])
    assert '"Netflix Premium"' in text
    assert "TXN42" in text


def test_empty_cart_cannot_start(orchestrator, mongo_db):
    with pytest.raises(EmptyCartError):
        orchestrator.start()
    assert mongo_db["checkout"].count_documents({}) == 0


def test_end_to_end_handoff(orchestrator, cart, gateway, netflix):
    cart.add(netflix)
    checkout = orchestrator.start()
    assert checkout["state"] == "awaiting_phone_input"
    assert checkout["total"] == 450

    result = orchestrator.submit(checkout["id"], "+258 84 123 4567")

    assert gateway.calls == [("841234567", 450)]
    assert cart.is_empty()
    assert result["state"] == "delivering"
    assert result["transaction_id"].startswith("TXN")
    assert result["phone_number"] == "+258 84 123 4567"
    delivery = result["delivery"]
    assert delivery["transaction_id"] == result["transaction_id"]
    assert [d["product_id"] for d in delivery["handoff"]] == ["p1"]
    assert delivery["downloadable"] == []
    assert delivery["countdown_seconds"] == 10
    assert delivery["auto_redirect_url"] == delivery["handoff"][0]["url"]

    done = orchestrator.complete(checkout["id"])
    assert done["state"] == "done"


def test_invalid_phone_never_reaches_gateway(orchestrator, cart, gateway, netflix):
    cart.add(netflix)
    checkout = orchestrator.start()
    with pytest.raises(ValidationError):
        orchestrator.submit(checkout["id"], "+258 82 123 4567")
    assert gateway.calls == []
    assert orchestrator.get(checkout["id"])["state"] == "awaiting_phone_input"
    assert not cart.is_empty()


def test_refused_transfer_keeps_cart_and_allows_retry(orchestrator, cart, gateway, netflix, ebook):
    gateway.outcomes = [transfer_body(status="error", transfer_status=None, message="saldo insuficiente"), transfer_body()]
    cart.add(netflix)
    cart.add(ebook)
    before = cart.items()
    checkout = orchestrator.start()

    with pytest.raises(PaymentFailedError) as exc:
        orchestrator.submit(checkout["id"], "841234567")
    assert "saldo" not in exc.value.message
    assert cart.items() == before
    state = orchestrator.get(checkout["id"])
    assert state["state"] == "awaiting_phone_input"
    assert state["last_error"]

    result = orchestrator.submit(checkout["id"], "851234567")
    assert result["state"] == "delivering"
    assert len(gateway.calls) == 2
    assert cart.is_empty()


def test_gateway_outage_returns_to_phone_input(orchestrator, cart, netflix, mongo_db, settings):
    gateway = FakeGibrapay([GatewayCommunicationError()])
    orchestrator = CheckoutOrchestrator(mongo_db, cart, gateway, settings)
    cart.add(netflix)
    checkout = orchestrator.start()
    with pytest.raises(PaymentFailedError) as exc:
        orchestrator.submit(checkout["id"], "841234567")
    assert exc.value.message == PAYMENT_UNAVAILABLE
    state = orchestrator.get(checkout["id"])
    assert state["state"] == "awaiting_phone_input"
    assert state["last_error"] == PAYMENT_UNAVAILABLE
    assert cart.count() == 1

    assert orchestrator.submit(checkout["id"], "841234567")["state"] == "delivering"


def test_second_submit_is_rejected(orchestrator, cart, gateway, netflix):
    cart.add(netflix)
    checkout = orchestrator.start()
    orchestrator.submit(checkout["id"], "841234567")
    with pytest.raises(CheckoutConflictError):
        orchestrator.submit(checkout["id"], "841234567")
    assert len(gateway.calls) == 1


def test_cart_cleared_exactly_once(orchestrator, cart, netflix, monkeypatch):
    cart.add(netflix)
    checkout = orchestrator.start()
    cleared = []
    real_clear = cart.clear
    monkeypatch.setattr(cart, "clear", lambda: (cleared.append(1), real_clear()))
    orchestrator.submit(checkout["id"], "841234567")
    assert cleared == [1]


def test_checkouts_are_scoped_to_their_device(orchestrator, mongo_db, gateway, settings, netflix, cart):
    from cart import CartStore
    from device_store import DeviceStore
    from errors import NotFoundError

    cart.add(netflix)
    checkout = orchestrator.start()
    other = CheckoutOrchestrator(mongo_db, CartStore(DeviceStore(mongo_db, "device-2")), gateway, settings)
    with pytest.raises(NotFoundError):
        other.get(checkout["id"])


def test_complete_requires_delivering(orchestrator, cart, netflix):
    cart.add(netflix)
    checkout = orchestrator.start()
    with pytest.raises(CheckoutConflictError):
        orchestrator.complete(checkout["id"])


def test_settlement_mode_waits_for_complete(orchestrator, cart, gateway, settings, netflix):
    settings.require_settlement = True
    gateway.outcomes = [transfer_body(transfer_status="pending", transfer_id="G-7")]
    cart.add(netflix)
    checkout = orchestrator.start()

    pending = orchestrator.submit(checkout["id"], "841234567")
    assert pending["state"] == "pending_settlement"
    assert pending["gateway_transfer_id"] == "G-7"
    assert not cart.is_empty()

    assert orchestrator.refresh_settlement(checkout["id"])["state"] == "pending_settlement"

    gateway.statuses["G-7"] = "complete"
    settled = orchestrator.refresh_settlement(checkout["id"])
    assert settled["state"] == "delivering"
    assert cart.is_empty()


def test_settlement_mode_failed_transfer(orchestrator, cart, gateway, settings, netflix):
    settings.require_settlement = True
    gateway.outcomes = [transfer_body(transfer_status="failed")]
    cart.add(netflix)
    checkout = orchestrator.start()
    with pytest.raises(PaymentFailedError):
        orchestrator.submit(checkout["id"], "841234567")
    assert orchestrator.get(checkout["id"])["state"] == "awaiting_phone_input"
    assert not cart.is_empty()


def test_default_mode_accepts_pending_transfer(orchestrator, cart, gateway, netflix):
    gateway.outcomes = [transfer_body(transfer_status="pending")]
    cart.add(netflix)
    checkout = orchestrator.start()
    assert orchestrator.submit(checkout["id"], "841234567")["state"] == "delivering"


def test_restarting_checkout_supersedes_the_open_one(orchestrator, cart, gateway, netflix):
    cart.add(netflix)
    first = orchestrator.start()
    second = orchestrator.start()

    assert orchestrator.get(first["id"])["state"] == "superseded"
    with pytest.raises(CheckoutConflictError):
        orchestrator.submit(first["id"], "841234567")
    assert orchestrator.submit(second["id"], "841234567")["state"] == "delivering"
    assert gateway.calls == [("841234567", 450)]


def test_racing_checkouts_on_one_device_charge_once(orchestrator, cart, gateway, netflix, mongo_db):
    cart.add(netflix)
    first = orchestrator.start()
    # a second open checkout, as left behind by two start() calls racing
    copy = mongo_db["checkout"].find_one()
    copy.pop("_id")
    second_id = str(mongo_db["checkout"].insert_one(copy).inserted_id)

    blocked = []
    scripted_transfer = gateway.transfer

    def transfer(phone_number, amount):
        with pytest.raises(CheckoutConflictError):
            orchestrator.submit(second_id, phone_number)
        blocked.append(second_id)
        return scripted_transfer(phone_number, amount)

    gateway.transfer = transfer
    assert orchestrator.submit(first["id"], "841234567")["state"] == "delivering"
    assert blocked == [second_id]

    assert orchestrator.get(second_id)["state"] == "superseded"
    with pytest.raises(CheckoutConflictError):
        orchestrator.submit(second_id, "841234567")
    assert gateway.calls == [("841234567", 450)]
    assert mongo_db["checkout_locks"].count_documents({}) == 0


def test_cannot_start_while_payment_is_pending(orchestrator, cart, gateway, settings, netflix):
    settings.require_settlement = True
    gateway.outcomes = [transfer_body(transfer_status="pending", transfer_id="G-8")]
    cart.add(netflix)
    checkout = orchestrator.start()
    orchestrator.submit(checkout["id"], "841234567")

    with pytest.raises(CheckoutConflictError):
        orchestrator.start()

    gateway.statuses["G-8"] = "failed"
    with pytest.raises(PaymentFailedError):
        orchestrator.refresh_settlement(checkout["id"])
    assert orchestrator.start()["state"] == "awaiting_phone_input"


def test_success_without_data_is_enough_by_default(orchestrator, cart, gateway, netflix):
    gateway.outcomes = [{"status": "success", "message": "ok"}]
    cart.add(netflix)
    checkout = orchestrator.start()
    result = orchestrator.submit(checkout["id"], "841234567")
    assert result["state"] == "delivering"
    assert result["gateway_transfer_id"] is None
    assert cart.is_empty()


def test_unknown_transfer_status_is_still_delivered_by_default(orchestrator, cart, gateway, netflix):
    gateway.outcomes = [{"status": "success", "message": "ok", "data": {"id": 77, "status": "processing"}}]
    cart.add(netflix)
    checkout = orchestrator.start()
    result = orchestrator.submit(checkout["id"], "841234567")
    assert result["state"] == "delivering"
    assert result["gateway_transfer_id"] == "77"
    assert result["gateway_status"] == "processing"


def test_settlement_mode_unknown_status_waits(orchestrator, cart, gateway, settings, netflix):
    settings.require_settlement = True
    gateway.outcomes = [{"status": "success", "message": "ok", "data": {"id": "G-9", "status": "processing"}}]
    cart.add(netflix)
    checkout = orchestrator.start()
    pending = orchestrator.submit(checkout["id"], "841234567")
    assert pending["state"] == "pending_settlement"
    assert not cart.is_empty()


def test_settlement_mode_without_transfer_id_reopens(orchestrator, cart, gateway, settings, netflix, mongo_db):
    settings.require_settlement = True
    gateway.outcomes = [{"status": "success", "message": "ok"}]
    cart.add(netflix)
    checkout = orchestrator.start()

    with pytest.raises(PaymentFailedError) as exc:
        orchestrator.submit(checkout["id"], "841234567")
    assert exc.value.message == PAYMENT_UNCONFIRMED
    state = orchestrator.get(checkout["id"])
    assert state["state"] == "awaiting_phone_input"
    assert state["last_error"] == PAYMENT_UNCONFIRMED
    assert not cart.is_empty()
    assert mongo_db["checkout_locks"].count_documents({}) == 0


def test_malformed_checkout_id_leaves_no_lock(orchestrator, cart, netflix, mongo_db):
    from errors import NotFoundError

    cart.add(netflix)
    with pytest.raises(NotFoundError):
        orchestrator.submit("not-an-id", "841234567")
    assert mongo_db["checkout_locks"].count_documents({}) == 0
    checkout = orchestrator.start()
    assert orchestrator.submit(checkout["id"], "841234567")["state"] == "delivering"
