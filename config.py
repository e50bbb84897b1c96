"""
Runtime configuration for Moz Store Digital.

Everything is read from the environment (a local .env file is loaded
first). Payment and admin credentials have no defaults: a deployment
that does not set them simply cannot take payments or log admins in.
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    gibrapay_api_url: str = "https://gibrapay.online/v1"
    gibrapay_api_key: Optional[str] = None
    gibrapay_wallet_id: Optional[str] = None
    gibrapay_auth_token: Optional[str] = None
    payment_timeout: float = 30.0

    # When set, only a "complete" transfer unlocks delivery.
    require_settlement: bool = False
    delivery_countdown: int = 10
    support_whatsapp_number: str = "258871009140"

    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    s3_bucket: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_public_base_url: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: Optional[str] = None

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            gibrapay_api_url=os.getenv("GIBRAPAY_API_URL", "https://gibrapay.online/v1"),
            gibrapay_api_key=os.getenv("GIBRAPAY_API_KEY"),
            gibrapay_wallet_id=os.getenv("GIBRAPAY_WALLET_ID"),
            gibrapay_auth_token=os.getenv("GIBRAPAY_AUTH_TOKEN"),
            payment_timeout=float(os.getenv("PAYMENT_TIMEOUT", "30")),
            require_settlement=_bool_env("CHECKOUT_REQUIRE_SETTLEMENT"),
            delivery_countdown=int(os.getenv("DELIVERY_COUNTDOWN", "10")),
            support_whatsapp_number=os.getenv("SUPPORT_WHATSAPP_NUMBER", "258871009140"),
            admin_email=os.getenv("ADMIN_EMAIL"),
            admin_password=os.getenv("ADMIN_PASSWORD"),
            s3_bucket=os.getenv("S3_BUCKET"),
            s3_endpoint_url=os.getenv("S3_ENDPOINT_URL"),
            s3_public_base_url=os.getenv("S3_PUBLIC_BASE_URL"),
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            aws_region=os.getenv("AWS_REGION"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
