"""
Support tickets and admin notifications.

A ticket holds both sides of the exchange: the admin's response and the
submitter's read flag for it. The "my responses" list a user sees is a
query over "support_messages" by email rather than a second copy, so
answering a ticket is one write.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from catalog import object_id
from database import as_utc, create_document, now_utc, to_dict
from device_store import DeviceStore
from errors import ConflictError, GatewayCommunicationError, NotFoundError, ValidationError
from schemas import Notification, SupportMessage, UserSupportResponse

logger = logging.getLogger(__name__)

SUPPORT_COLLECTION = "support_messages"
NOTIFICATIONS_COLLECTION = "notifications"
ANONYMOUS_READER = "anonymous"


class SupportMailbox:
    def __init__(self, database: Database):
        self.db = database

    @property
    def _col(self):
        return self.db[SUPPORT_COLLECTION]

    def submit_ticket(self, name: str, email: str, message: str) -> str:
        ticket = SupportMessage(name=name.strip(), email=email.strip().lower(), message=message.strip())
        try:
            return create_document(SUPPORT_COLLECTION, ticket, self.db)
        except PyMongoError as e:
            logger.error("saving support message from %s failed: %s", ticket.email, e)
            raise GatewayCommunicationError()

    def list_tickets(self) -> List[dict]:
        try:
            return [to_dict(d) for d in self._col.find({}).sort("created_at", DESCENDING)]
        except PyMongoError as e:
            logger.error("support message query failed: %s", e)
            return []

    def mark_ticket_read(self, ticket_id: str) -> None:
        try:
            result = self._col.update_one({"_id": object_id(ticket_id)}, {"$set": {"is_read": True}})
        except PyMongoError as e:
            logger.error("marking ticket %s read failed: %s", ticket_id, e)
            raise GatewayCommunicationError()
        if result.matched_count == 0:
            raise NotFoundError("Support message not found")

    def respond(self, ticket_id: str, response_text: str) -> dict:
        response_text = (response_text or "").strip()
        if not response_text:
            raise ValidationError("Response must not be empty")
        key = object_id(ticket_id)
        try:
            result = self._col.update_one(
                {"_id": key, "admin_response": None},
                {"$set": {
                    "admin_response": response_text,
                    "is_read": True,
                    "responded_at": now_utc(),
                    "response_read": False,
                }},
            )
            if result.matched_count == 0:
                if self._col.find_one({"_id": key}) is None:
                    raise NotFoundError("Support message not found")
                raise ConflictError("Support message already answered")
            return to_dict(self._col.find_one({"_id": key}))
        except PyMongoError as e:
            logger.error("responding to ticket %s failed: %s", ticket_id, e)
            raise GatewayCommunicationError()

    def user_responses(self, email: str) -> List[UserSupportResponse]:
        try:
            cursor = self._col.find(
                {"email": email.strip().lower(), "admin_response": {"$ne": None}}
            ).sort("responded_at", ASCENDING)
            return [
                UserSupportResponse(
                    message_id=str(d["_id"]),
                    response=d["admin_response"],
                    responded_at=as_utc(d["responded_at"]),
                    is_read=d.get("response_read", False),
                )
                for d in cursor
            ]
        except PyMongoError as e:
            logger.error("support responses for %s failed: %s", email, e)
            return []

    def mark_response_read(self, email: str, message_id: str) -> None:
        try:
            self._col.update_one(
                {"_id": object_id(message_id), "email": email.strip().lower()},
                {"$set": {"response_read": True}},
            )
        except PyMongoError as e:
            logger.error("marking response %s read failed: %s", message_id, e)
            raise GatewayCommunicationError()


def is_visible(notification: dict, user_id: Optional[str], now: datetime) -> bool:
    expires_at = as_utc(notification.get("expires_at"))
    if expires_at and expires_at < now:
        return False
    targets = notification.get("target_users") or []
    if not targets:
        return True
    return user_id is not None and user_id in targets


class NotificationCenter:
    def __init__(self, database: Database):
        self.db = database

    @property
    def _col(self):
        return self.db[NOTIFICATIONS_COLLECTION]

    def create(self, notification: Notification) -> str:
        try:
            return create_document(NOTIFICATIONS_COLLECTION, notification, self.db)
        except PyMongoError as e:
            logger.error("creating notification %r failed: %s", notification.title, e)
            raise GatewayCommunicationError()

    def list_all(self) -> List[dict]:
        try:
            return [to_dict(d) for d in self._col.find({}).sort("created_at", DESCENDING)]
        except PyMongoError as e:
            logger.error("notification query failed: %s", e)
            return []

    def set_active(self, notification_id: str, is_active: bool) -> None:
        try:
            result = self._col.update_one({"_id": object_id(notification_id)}, {"$set": {"is_active": is_active}})
        except PyMongoError as e:
            logger.error("toggling notification %s failed: %s", notification_id, e)
            raise GatewayCommunicationError()
        if result.matched_count == 0:
            raise NotFoundError("Notification not found")

    def delete(self, notification_id: str) -> None:
        try:
            result = self._col.delete_one({"_id": object_id(notification_id)})
        except PyMongoError as e:
            logger.error("deleting notification %s failed: %s", notification_id, e)
            raise GatewayCommunicationError()
        if result.deleted_count == 0:
            raise NotFoundError("Notification not found")

    def get_active_notifications(self, user_id: Optional[str] = None, now: datetime = None) -> List[dict]:
        now = now or now_utc()
        try:
            docs = list(self._col.find({"is_active": True}).sort("created_at", DESCENDING))
        except PyMongoError as e:
            logger.error("notification query failed: %s", e)
            return []
        return [to_dict(d) for d in docs if is_visible(d, user_id, now)]

    def for_device(self, user_id: Optional[str], device: DeviceStore, now: datetime = None) -> List[dict]:
        """Active notifications for `user_id`, each flagged with this device's read marker."""
        reader = user_id or ANONYMOUS_READER
        items = self.get_active_notifications(user_id, now)
        for n in items:
            n["is_read"] = device.is_notification_read(reader, n["id"])
        return items

    def unread_count(self, user_id: Optional[str], device: DeviceStore, now: datetime = None) -> int:
        return sum(1 for n in self.for_device(user_id, device, now) if not n["is_read"])
