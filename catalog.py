"""
Catalog access: products, banners and the store settings singleton.

Read paths never raise on backend trouble; they log and return an empty
result so browsing keeps working. Write paths wrap driver errors in
GatewayCommunicationError and let them propagate.
"""
import logging
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, now_utc, to_dict
from errors import GatewayCommunicationError, NotFoundError
from schemas import Banner, BannerUpdate, Product, ProductUpdate, StoreSettings, effective_price

logger = logging.getLogger(__name__)

PRODUCTS_COLLECTION = "products"
BANNERS_COLLECTION = "banners"
SETTINGS_COLLECTION = "settings"
SETTINGS_DOC = "store_settings"

DEFAULT_SETTINGS = {
    "store_name": "Moz Store Digital",
    "store_email": "mozstoredigitalp2@gmail.com",
    "store_phone": "+258 87 650 0685",
    "store_description": "Sua loja digital de confiança em Moçambique",
}


def object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError("Not found")


def with_effective_price(doc: dict) -> dict:
    doc = to_dict(doc)
    doc["effective_price"] = effective_price(doc.get("price") or 0, doc.get("discount") or 0)
    return doc


def _collection(database: Optional[Database], name: str):
    if database is None:
        raise GatewayCommunicationError("Database not configured")
    return database[name]


class ProductGateway:
    def __init__(self, database: Optional[Database]):
        self.db = database

    @property
    def _col(self):
        return _collection(self.db, PRODUCTS_COLLECTION)

    def _find(self, filt: dict, ordered: bool = True) -> List[dict]:
        if self.db is None:
            logger.warning("product query %s skipped: database not configured", filt)
            return []
        try:
            cursor = self._col.find(filt)
            if ordered:
                cursor = cursor.sort("created_at", DESCENDING)
            return [with_effective_price(d) for d in cursor]
        except PyMongoError as e:
            logger.error("product query %s failed: %s", filt, e)
            return []

    def list_all(self) -> List[dict]:
        return self._find({}, ordered=False)

    def list_by_category(self, category: str) -> List[dict]:
        return self._find({"category": category.strip().lower()})

    def list_promoted(self) -> List[dict]:
        return self._find({"is_promotion": True})

    def list_new(self) -> List[dict]:
        return self._find({"is_new": True})

    def get(self, product_id: str) -> dict:
        try:
            doc = self._col.find_one({"_id": object_id(product_id)})
        except PyMongoError as e:
            logger.error("product lookup %s failed: %s", product_id, e)
            raise GatewayCommunicationError()
        if not doc:
            raise NotFoundError("Product not found")
        return with_effective_price(doc)

    def create(self, product: Product) -> str:
        try:
            return create_document(PRODUCTS_COLLECTION, product, self.db)
        except PyMongoError as e:
            logger.error("creating product %r failed: %s", product.name, e)
            raise GatewayCommunicationError()

    def update(self, product_id: str, changes: ProductUpdate) -> None:
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        fields["updated_at"] = now_utc()
        try:
            result = self._col.update_one({"_id": object_id(product_id)}, {"$set": fields})
        except PyMongoError as e:
            logger.error("updating product %s failed: %s", product_id, e)
            raise GatewayCommunicationError()
        if result.matched_count == 0:
            raise NotFoundError("Product not found")

    def delete(self, product_id: str) -> None:
        try:
            result = self._col.delete_one({"_id": object_id(product_id)})
        except PyMongoError as e:
            logger.error("deleting product %s failed: %s", product_id, e)
            raise GatewayCommunicationError()
        if result.deleted_count == 0:
            raise NotFoundError("Product not found")


class BannerGateway:
    def __init__(self, database: Optional[Database]):
        self.db = database

    @property
    def _col(self):
        return _collection(self.db, BANNERS_COLLECTION)

    def _find(self, filt: dict) -> List[dict]:
        if self.db is None:
            logger.warning("banner query skipped: database not configured")
            return []
        try:
            return [to_dict(d) for d in self._col.find(filt).sort("order", ASCENDING)]
        except PyMongoError as e:
            logger.error("banner query failed: %s", e)
            return []

    def list_active(self) -> List[dict]:
        return self._find({"is_active": True})

    def list_all(self) -> List[dict]:
        return self._find({})

    def create(self, banner: Banner) -> str:
        try:
            return create_document(BANNERS_COLLECTION, banner, self.db)
        except PyMongoError as e:
            logger.error("creating banner %r failed: %s", banner.title, e)
            raise GatewayCommunicationError()

    def update(self, banner_id: str, changes: BannerUpdate) -> None:
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            return
        try:
            result = self._col.update_one({"_id": object_id(banner_id)}, {"$set": fields})
        except PyMongoError as e:
            logger.error("updating banner %s failed: %s", banner_id, e)
            raise GatewayCommunicationError()
        if result.matched_count == 0:
            raise NotFoundError("Banner not found")

    def delete(self, banner_id: str) -> None:
        try:
            result = self._col.delete_one({"_id": object_id(banner_id)})
        except PyMongoError as e:
            logger.error("deleting banner %s failed: %s", banner_id, e)
            raise GatewayCommunicationError()
        if result.deleted_count == 0:
            raise NotFoundError("Banner not found")


class SettingsGateway:
    def __init__(self, database: Optional[Database]):
        self.db = database

    def get(self) -> StoreSettings:
        try:
            doc = self.db[SETTINGS_COLLECTION].find_one({"_id": SETTINGS_DOC}) if self.db is not None else None
        except PyMongoError as e:
            logger.error("reading store settings failed: %s", e)
            doc = None
        if not doc:
            return StoreSettings(**DEFAULT_SETTINGS, updated_at=now_utc())
        doc.pop("_id", None)
        return StoreSettings(**doc)

    def update(self, settings: StoreSettings) -> StoreSettings:
        data = settings.model_dump()
        data["updated_at"] = now_utc()
        try:
            self.db[SETTINGS_COLLECTION].replace_one({"_id": SETTINGS_DOC}, data, upsert=True)
        except PyMongoError as e:
            logger.error("updating store settings failed: %s", e)
            raise GatewayCommunicationError()
        return StoreSettings(**data)
