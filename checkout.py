"""
Checkout: cart -> phone number -> Gibrapay transfer -> delivery.

A checkout is a document in the "checkout" collection and moves through

    awaiting_phone_input -> submitting -> [pending_settlement] -> succeeded
        -> delivering -> done

A device has at most one open checkout. Starting a new one, or paying
one, moves any other checkout still awaiting a phone number to
"superseded", which can never be submitted.

Submitting first takes the device's lock in "checkout_locks" (its _id is
the device id, so a second insert fails) and then moves the checkout
into "submitting" with a conditional update on its state. Only one
transfer can therefore be in flight per device; a second submit gets
CheckoutConflictError instead of charging the buyer again. The lock is
held through "pending_settlement" and released when the checkout is
reopened or paid. A refused or unreachable transfer puts the checkout
back to awaiting_phone_input and leaves the cart alone.

The cart is cleared once, right after the checkout is recorded as
succeeded. If the process dies between that point and storing the
delivery plan, the buyer is charged and the checkout stays in
"succeeded" without delivery links. A crash while "submitting" leaves
the device lock behind and blocks new payments from that device until
the lock document is removed.
"""
import logging
import time
import uuid
from typing import Iterable, List, Optional
from urllib.parse import quote

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from cart import CartStore
from catalog import object_id
from database import now_utc, to_dict
from errors import (
    CheckoutConflictError,
    EmptyCartError,
    GatewayCommunicationError,
    NotFoundError,
    PaymentFailedError,
    ValidationError,
)
from phone import format_phone_number, normalize_phone_number, validate_phone_number
from schemas import DOWNLOADABLE_CATEGORIES, CartItem, CheckoutSession, DeliveryItem, DeliveryPlan

logger = logging.getLogger(__name__)

CHECKOUT_COLLECTION = "checkout"
LOCKS_COLLECTION = "checkout_locks"

PAYMENT_REFUSED = "Pagamento não processado. Verifique o número e tente novamente."
PAYMENT_UNAVAILABLE = "Serviço de pagamento indisponível. Tente novamente em alguns minutos."
PAYMENT_UNCONFIRMED = (
    "Não foi possível confirmar o pagamento. "
    "Contacte o suporte antes de tentar novamente."
)
PAYMENT_IN_PROGRESS = "Já existe um pagamento em curso para este carrinho."
DOWNLOAD_BY_EMAIL = 'O link de download para "{name}" será enviado por email em breve.'
HANDOFF_MESSAGE = (
    'Olá! Meu pagamento para "{name}" foi efetuado com sucesso. '
    "ID da transação: {transaction_id}. Por favor, me envie o produto."
)


def new_transaction_id() -> str:
    return f"TXN{int(time.time() * 1000)}-{uuid.uuid4().hex[:8].upper()}"


def build_handoff_link(product_name: str, transaction_id: str, support_number: str) -> str:
    message = HANDOFF_MESSAGE.format(name=product_name, transaction_id=transaction_id)
    return f"https://wa.me/{support_number}?text={quote(message, safe='')}"


def is_downloadable(category: str) -> bool:
    return (category or "").lower() in DOWNLOADABLE_CATEGORIES


def partition_delivery(
    items: Iterable[CartItem],
    transaction_id: str,
    support_number: str,
    countdown_seconds: int = 10,
) -> DeliveryPlan:
    """Split purchased items into download and hand-off deliveries, keeping their order."""
    downloadable: List[DeliveryItem] = []
    handoff: List[DeliveryItem] = []
    for item in items:
        if is_downloadable(item.category):
            downloadable.append(DeliveryItem(
                product_id=item.product_id,
                name=item.name,
                category=item.category,
                kind="download",
                url=item.download_link or None,
                message=None if item.download_link else DOWNLOAD_BY_EMAIL.format(name=item.name),
            ))
        else:
            handoff.append(DeliveryItem(
                product_id=item.product_id,
                name=item.name,
                category=item.category,
                kind="handoff",
                url=item.redirect_link or build_handoff_link(item.name, transaction_id, support_number),
            ))

    return DeliveryPlan(
        transaction_id=transaction_id,
        downloadable=downloadable,
        handoff=handoff,
        countdown_seconds=countdown_seconds,
        auto_redirect_url=handoff[0].url if handoff else None,
    )


class CheckoutOrchestrator:
    def __init__(self, database: Database, cart: CartStore, payment, settings):
        self.db = database
        self.cart = cart
        self.payment = payment
        self.settings = settings

    @property
    def _col(self):
        return self.db[CHECKOUT_COLLECTION]

    @property
    def device_id(self) -> str:
        return self.cart.device.device_id

    def _key(self, checkout_id: str) -> dict:
        return {"_id": object_id(checkout_id), "device_id": self.device_id}

    def _move(self, checkout_id: str, from_states, changes: dict, inc: dict = None) -> Optional[dict]:
        if isinstance(from_states, str):
            from_states = [from_states]
        update = {"$set": {**changes, "updated_at": now_utc()}}
        if inc:
            update["$inc"] = inc
        return self._col.find_one_and_update(
            {**self._key(checkout_id), "state": {"$in": list(from_states)}},
            update,
            return_document=ReturnDocument.AFTER,
        )

    def get(self, checkout_id: str) -> dict:
        doc = self._col.find_one(self._key(checkout_id))
        if not doc:
            raise NotFoundError("Checkout not found")
        return to_dict(doc)

    def _supersede(self, keep: Optional[str] = None) -> None:
        filt = {"device_id": self.device_id, "state": "awaiting_phone_input"}
        if keep:
            filt["_id"] = {"$ne": object_id(keep)}
        result = self._col.update_many(filt, {"$set": {"state": "superseded", "updated_at": now_utc()}})
        if result.modified_count:
            logger.info("device %s: %d open checkout(s) superseded", self.device_id, result.modified_count)

    def _acquire(self, checkout_id: str) -> bool:
        try:
            self.db[LOCKS_COLLECTION].insert_one(
                {"_id": self.device_id, "checkout_id": checkout_id, "created_at": now_utc()}
            )
        except DuplicateKeyError:
            return False
        return True

    def _release(self, checkout_id: str) -> None:
        self.db[LOCKS_COLLECTION].delete_one({"_id": self.device_id, "checkout_id": checkout_id})

    def start(self) -> dict:
        items = self.cart.items()
        if not items:
            raise EmptyCartError("Adicione produtos ao carrinho antes de finalizar a compra.")
        busy = self._col.find_one(
            {"device_id": self.device_id, "state": {"$in": ["submitting", "pending_settlement"]}}
        )
        if busy:
            raise CheckoutConflictError(PAYMENT_IN_PROGRESS)
        self._supersede()
        session = CheckoutSession(device_id=self.device_id, items=items, total=self.cart.total())
        doc = session.model_dump()
        doc["created_at"] = doc["updated_at"] = now_utc()
        inserted = self._col.insert_one(doc)
        logger.info("checkout %s started: %d item(s), total %s", inserted.inserted_id, len(items), session.total)
        return self.get(str(inserted.inserted_id))

    def submit(self, checkout_id: str, phone_number: str) -> dict:
        if not validate_phone_number(phone_number):
            raise ValidationError("Por favor, insira um número de telefone válido (84/85/86/87).")

        object_id(checkout_id)
        if not self._acquire(checkout_id):
            self.get(checkout_id)
            raise CheckoutConflictError(PAYMENT_IN_PROGRESS)

        doc = self._move(
            checkout_id,
            "awaiting_phone_input",
            {"state": "submitting", "phone_number": format_phone_number(phone_number), "last_error": None},
            inc={"attempts": 1},
        )
        if doc is None:
            self._release(checkout_id)
            self.get(checkout_id)
            raise CheckoutConflictError()

        try:
            result = self.payment.transfer(normalize_phone_number(phone_number), doc["total"])
        except GatewayCommunicationError as e:
            self._reopen(checkout_id, "submitting", PAYMENT_UNAVAILABLE)
            raise PaymentFailedError(PAYMENT_UNAVAILABLE) from e
        except Exception:
            self._reopen(checkout_id, "submitting", PAYMENT_UNAVAILABLE)
            raise

        if result.status != "success":
            logger.warning("checkout %s: transfer refused: %s", checkout_id, result.message)
            self._reopen(checkout_id, "submitting", PAYMENT_REFUSED)
            raise PaymentFailedError(PAYMENT_REFUSED)

        data = result.data
        transfer_id = str(data.id) if data is not None and data.id is not None else None
        transfer_status = data.status if data is not None else None

        if self.settings.require_settlement:
            return self._settle(checkout_id, "submitting", transfer_id, transfer_status)
        return self._fulfil(checkout_id, "submitting", transfer_id, transfer_status)

    def refresh_settlement(self, checkout_id: str) -> dict:
        current = self.get(checkout_id)
        if current["state"] != "pending_settlement":
            return current
        transfer_id = current.get("gateway_transfer_id")
        status = self.payment.get_transfer_status(transfer_id) if transfer_id else None
        return self._settle(checkout_id, "pending_settlement", transfer_id, status or "pending")

    def _settle(self, checkout_id: str, from_state: str, transfer_id: Optional[str], transfer_status: Optional[str]) -> dict:
        # Unknown provider statuses count as pending; without an id there is nothing to poll.
        if transfer_status == "complete":
            return self._fulfil(checkout_id, from_state, transfer_id, transfer_status)
        if transfer_status == "failed":
            self._reopen(checkout_id, from_state, PAYMENT_REFUSED)
            raise PaymentFailedError(PAYMENT_REFUSED)
        if not transfer_id:
            logger.error("checkout %s: transfer accepted without an id, settlement cannot be tracked", checkout_id)
            self._reopen(checkout_id, from_state, PAYMENT_UNCONFIRMED)
            raise PaymentFailedError(PAYMENT_UNCONFIRMED)

        doc = self._move(
            checkout_id,
            from_state,
            {"state": "pending_settlement", "gateway_transfer_id": transfer_id, "gateway_status": transfer_status},
        )
        if doc is None:
            raise CheckoutConflictError()
        return to_dict(doc)

    def _reopen(self, checkout_id: str, from_state: str, message: str) -> None:
        self._move(checkout_id, from_state, {"state": "awaiting_phone_input", "last_error": message})
        self._release(checkout_id)

    def _fulfil(self, checkout_id: str, from_state: str, transfer_id: Optional[str], transfer_status: Optional[str]) -> dict:
        transaction_id = new_transaction_id()
        doc = self._move(
            checkout_id,
            from_state,
            {
                "state": "succeeded",
                "transaction_id": transaction_id,
                "gateway_transfer_id": transfer_id,
                "gateway_status": transfer_status,
            },
        )
        if doc is None:
            raise CheckoutConflictError()

        self._supersede(keep=checkout_id)
        self.cart.clear()
        self._release(checkout_id)
        logger.info("checkout %s paid: transaction %s, gateway id %s", checkout_id, transaction_id, transfer_id)

        plan = partition_delivery(
            [CartItem(**raw) for raw in doc["items"]],
            transaction_id,
            self.settings.support_whatsapp_number,
            self.settings.delivery_countdown,
        )
        doc = self._move(checkout_id, "succeeded", {"state": "delivering", "delivery": plan.model_dump()})
        return to_dict(doc)

    def complete(self, checkout_id: str) -> dict:
        doc = self._move(checkout_id, "delivering", {"state": "done"})
        if doc is None:
            self.get(checkout_id)
            raise CheckoutConflictError("Checkout is not delivering")
        return to_dict(doc)
