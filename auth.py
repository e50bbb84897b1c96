"""
Accounts, sessions and the admin gate.

Sessions are opaque bearer tokens stored in "sessions". Admin access is
a role on the session, granted only by admin_login with the configured
admin credentials or by a stored "admin" role on the user document.
Registration is open, so the configured admin email is reserved and a
regular login never elevates on email alone. Every admin route checks
the role on the server.
"""
import hashlib
import hmac
import logging
import secrets
from typing import Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import now_utc, to_dict
from errors import AuthorizationError, ValidationError
from phone import format_phone_number, validate_phone_number
from schemas import User

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
SESSIONS_COLLECTION = "sessions"
ADMIN_ROLE = "admin"
PBKDF2_ROUNDS = 100_000


def _hash(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), PBKDF2_ROUNDS).hex()


def _public(user: dict) -> dict:
    user = to_dict(user)
    user.pop("password_hash", None)
    user.pop("salt", None)
    return user


class IdentityService:
    def __init__(self, database: Database, settings):
        self.db = database
        self.settings = settings

    @property
    def _users(self):
        return self.db[USERS_COLLECTION]

    @property
    def _sessions(self):
        return self.db[SESSIONS_COLLECTION]

    def _is_admin_email(self, email: str) -> bool:
        admin_email = self.settings.admin_email
        return bool(admin_email) and email == admin_email.strip().lower()

    def register(self, email: str, password: str, display_name: str, phone: Optional[str] = None) -> dict:
        email = email.strip().lower()
        if self._is_admin_email(email):
            logger.warning("registration refused for reserved admin email")
            raise ValidationError("This email cannot be used to register")
        if len(password or "") < 6:
            raise ValidationError("Password must have at least 6 characters")
        if self._users.find_one({"email": email}):
            raise ValidationError("An account with this email already exists")

        salt = secrets.token_hex(16)
        user = User(
            email=email,
            display_name=display_name.strip(),
            phone=format_phone_number(phone) if phone and validate_phone_number(phone) else phone,
            password_hash=_hash(password, salt),
            salt=salt,
        )
        doc = user.model_dump()
        doc["created_at"] = now_utc()
        self._users.create_index("email", unique=True)
        try:
            doc["_id"] = self._users.insert_one(doc).inserted_id
        except DuplicateKeyError:
            raise ValidationError("An account with this email already exists")
        logger.info("registered %s", email)
        return _public(doc)

    def _open_session(self, user: dict, role: str) -> str:
        token = secrets.token_urlsafe(32)
        self._sessions.insert_one({
            "token": token,
            "user_id": str(user["_id"]) if "_id" in user else None,
            "email": user["email"],
            "role": role,
            "created_at": now_utc(),
        })
        return token

    def login(self, email: str, password: str) -> str:
        email = email.strip().lower()
        user = self._users.find_one({"email": email})
        if not user or not hmac.compare_digest(_hash(password, user["salt"]), user["password_hash"]):
            raise AuthorizationError("Invalid email or password")
        return self._open_session(user, user.get("role", "customer"))

    def admin_login(self, email: str, password: str) -> str:
        admin_email = self.settings.admin_email
        admin_password = self.settings.admin_password
        if not admin_email or not admin_password:
            logger.warning("admin login attempted but ADMIN_EMAIL/ADMIN_PASSWORD are not configured")
            raise AuthorizationError("Admin access is not configured")
        email_ok = hmac.compare_digest(email.strip().lower(), admin_email.lower())
        password_ok = hmac.compare_digest(password, admin_password)
        if not (email_ok and password_ok):
            logger.warning("failed admin login for %s", email)
            raise AuthorizationError("Invalid admin credentials")
        return self._open_session({"email": admin_email.lower()}, ADMIN_ROLE)

    def logout(self, token: str) -> None:
        self._sessions.delete_one({"token": token})

    def current_session(self, token: Optional[str]) -> Optional[dict]:
        if not token:
            return None
        session = self._sessions.find_one({"token": token})
        if session is None:
            return None
        session.pop("_id", None)
        return session

    def current_user(self, token: Optional[str]) -> Optional[dict]:
        session = self.current_session(token)
        if session is None:
            return None
        user = self._users.find_one({"email": session["email"]})
        if user is None:
            return {"id": None, "email": session["email"], "display_name": "Admin", "role": session["role"]}
        public = _public(user)
        public["role"] = session["role"]
        return public

    def is_admin(self, session: Optional[dict]) -> bool:
        return bool(session) and session.get("role") == ADMIN_ROLE

    def require_admin(self, token: Optional[str]) -> dict:
        session = self.current_session(token)
        if not self.is_admin(session):
            raise AuthorizationError("Admin access required")
        return session
