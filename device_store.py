"""
Per-device state: the things a browser would keep in local storage.

Each (device_id, key) pair is one document in "device_state" and every
write replaces the whole value. There is no merging, so two tabs
writing the same key race and the last write wins.
"""
import logging
from typing import Any, Optional

from pymongo.database import Database

from database import now_utc
from errors import ValidationError

logger = logging.getLogger(__name__)

COLLECTION = "device_state"
COOKIE_CONSENT_KEY = "moz-store-cookie-consent"
COOKIE_DECISIONS = ("accepted", "rejected")


class DeviceStore:
    def __init__(self, database: Database, device_id: str):
        if not device_id or not device_id.strip():
            raise ValidationError("Missing device id")
        self.db = database
        self.device_id = device_id.strip()

    @property
    def _col(self):
        return self.db[COLLECTION]

    def get(self, key: str, default: Any = None) -> Any:
        doc = self._col.find_one({"device_id": self.device_id, "key": key})
        if doc is None:
            return default
        return doc.get("value", default)

    def set(self, key: str, value: Any) -> None:
        self._col.replace_one(
            {"device_id": self.device_id, "key": key},
            {"device_id": self.device_id, "key": key, "value": value, "updated_at": now_utc()},
            upsert=True,
        )

    def remove(self, key: str) -> None:
        self._col.delete_one({"device_id": self.device_id, "key": key})

    # ---- cookie consent ----

    def get_cookie_consent(self) -> Optional[str]:
        return self.get(COOKIE_CONSENT_KEY)

    def set_cookie_consent(self, decision: str) -> None:
        if decision not in COOKIE_DECISIONS:
            raise ValidationError("Cookie decision must be 'accepted' or 'rejected'")
        self.set(COOKIE_CONSENT_KEY, decision)
        logger.info("device %s cookie consent: %s", self.device_id, decision)

    def should_show_cookie_banner(self) -> bool:
        return self.get_cookie_consent() is None

    # ---- notification read markers ----

    @staticmethod
    def _read_key(user_id: str, notification_id: str) -> str:
        return f"notification_read_{user_id}_{notification_id}"

    def mark_notification_read(self, user_id: str, notification_id: str) -> None:
        self.set(self._read_key(user_id, notification_id), True)

    def is_notification_read(self, user_id: str, notification_id: str) -> bool:
        return self.get(self._read_key(user_id, notification_id)) is True
