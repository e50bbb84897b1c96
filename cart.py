"""Shopping cart kept in per-device state."""
import logging
from typing import List

from device_store import DeviceStore
from errors import NotFoundError
from schemas import CartItem, effective_price

logger = logging.getLogger(__name__)

CART_KEY = "mozstore-cart"


class CartStore:
    def __init__(self, device: DeviceStore):
        self.device = device

    def items(self) -> List[CartItem]:
        return [CartItem(**raw) for raw in self.device.get(CART_KEY, [])]

    def _save(self, items: List[CartItem]) -> None:
        self.device.set(CART_KEY, [item.model_dump() for item in items])

    def add(self, product: dict) -> CartItem:
        """
        Add one unit of `product` (a catalog record with an "id").

        The name, price, image and delivery links are copied now and not
        refreshed later, so the cart keeps the price the buyer saw.
        """
        items = self.items()
        for item in items:
            if item.product_id == product["id"]:
                item.quantity += 1
                self._save(items)
                return item

        item = CartItem(
            product_id=product["id"],
            name=product["name"],
            price=effective_price(product["price"], product.get("discount", 0) or 0),
            quantity=1,
            image=product.get("image") or "",
            category=product["category"],
            download_link=product.get("download_link"),
            redirect_link=product.get("redirect_link"),
        )
        items.append(item)
        self._save(items)
        logger.debug("device %s added %s to cart", self.device.device_id, item.product_id)
        return item

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove(product_id)
            return
        items = self.items()
        for item in items:
            if item.product_id == product_id:
                item.quantity = quantity
                self._save(items)
                return
        raise NotFoundError("Item not in cart")

    def remove(self, product_id: str) -> None:
        self._save([i for i in self.items() if i.product_id != product_id])

    def clear(self) -> None:
        self.device.remove(CART_KEY)

    def total(self) -> float:
        return round(sum(i.price * i.quantity for i in self.items()), 2)

    def count(self) -> int:
        return sum(i.quantity for i in self.items())

    def is_empty(self) -> bool:
        return not self.items()
