"""
Gibrapay mobile-money client.

The client holds one account's static credentials and never refreshes
them. An expired token comes back from the provider as a normal
{"status": "error"} body, which callers handle like any refused payment.
Transport problems and unreadable bodies are logged with their detail
and re-raised as a generic GatewayCommunicationError.
"""
import logging
from typing import Any, List, Literal, Optional, Union

import requests
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaError
from requests.exceptions import RequestException

from errors import GatewayCommunicationError

logger = logging.getLogger(__name__)


class TransferData(BaseModel):
    """Transfer record as the provider reports it.

    Every field is optional: once the top-level status says "success" the
    money may have moved, so an odd record must not be treated as a
    communication failure.
    """

    model_config = ConfigDict(extra="allow")

    id: Optional[Union[str, int]] = None
    wallet_id: Optional[Any] = None
    amount: Optional[Any] = None
    number_phone: Optional[Any] = None
    type: Optional[str] = None
    status: Optional[str] = None
    at_created: Optional[Any] = None


class TransferResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Literal["success", "error"]
    message: str = ""
    data: Optional[TransferData] = None


class GibrapayClient:
    def __init__(self, api_url: str, api_key: str, wallet_id: str, auth_token: str, timeout: float = 30.0):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.wallet_id = wallet_id
        self.auth_token = auth_token
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "GibrapayClient":
        return cls(
            api_url=settings.gibrapay_api_url,
            api_key=settings.gibrapay_api_key or "",
            wallet_id=settings.gibrapay_wallet_id or "",
            auth_token=settings.gibrapay_auth_token or "",
            timeout=settings.payment_timeout,
        )

    def _headers(self, with_token: bool = True) -> dict:
        headers = {"Content-Type": "application/json", "API-Key": self.api_key}
        if with_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _read_json(self, resp: requests.Response, what: str):
        try:
            return resp.json()
        except ValueError:
            logger.error("%s: non-JSON response (HTTP %s): %r", what, resp.status_code, resp.text[:200])
            raise GatewayCommunicationError("Payment service communication error")

    def transfer(self, phone_number: str, amount: float) -> TransferResponse:
        payload = {"wallet_id": self.wallet_id, "amount": amount, "number_phone": phone_number}
        try:
            resp = requests.post(
                f"{self.api_url}/transfer",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except RequestException as e:
            logger.error("transfer of %s to %s failed: %s", amount, phone_number, e)
            raise GatewayCommunicationError("Payment service communication error")

        body = self._read_json(resp, "transfer")
        try:
            result = TransferResponse.model_validate(body)
        except SchemaError as e:
            logger.error("transfer: unexpected response shape (HTTP %s): %s", resp.status_code, e)
            raise GatewayCommunicationError("Payment service communication error")

        logger.info(
            "transfer %s MZN -> %s: %s (%s)",
            amount,
            phone_number,
            result.status,
            result.data.status if result.data else "no data",
        )
        return result

    def get_wallet_balance(self) -> dict:
        try:
            resp = requests.get(
                f"{self.api_url}/wallet/{self.wallet_id}",
                headers=self._headers(with_token=False),
                timeout=self.timeout,
            )
        except RequestException as e:
            logger.error("wallet balance lookup failed: %s", e)
            raise GatewayCommunicationError("Could not read wallet balance")
        return self._read_json(resp, "wallet balance")

    def get_transactions(self) -> List[dict]:
        try:
            resp = requests.get(
                f"{self.api_url}/transactions/{self.wallet_id}",
                headers=self._headers(with_token=False),
                timeout=self.timeout,
            )
        except RequestException as e:
            logger.error("transactions lookup failed: %s", e)
            raise GatewayCommunicationError("Could not read transactions")
        body = self._read_json(resp, "transactions")
        if isinstance(body, dict):
            body = body.get("data") or []
        if not isinstance(body, list):
            logger.error("transactions: unexpected response shape %r", type(body))
            raise GatewayCommunicationError("Could not read transactions")
        return body

    def get_transfer_status(self, transfer_id: str) -> Optional[str]:
        """Settlement status of a transfer, or None if the provider has no record of it yet."""
        for tx in self.get_transactions():
            if str(tx.get("id")) == str(transfer_id):
                return tx.get("status")
        return None
