from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import hashlib
import hmac
import json

import httpx
from loguru import logger

from .errors import AuthenticationError, TransientError, ValidationError
from .errors import VerificationFailure
from .helpers import ct_equal
from .infra.timings import timeit

SIGNATURE_HEADER = "verif-hash"
CHARGE_COMPLETED = "charge.completed"
SUCCESSFUL = "successful"


# ----------------------------
# Webhook signatures
# ----------------------------
def sign_payload(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(
        secret: Optional[str], payload: bytes, signature: Optional[str]
) -> bool:
    if not secret or not signature:
        return False
    expected = sign_payload(secret, payload)
    return ct_equal(expected, signature.strip().lower())


# ----------------------------
# Gateway verifier
# ----------------------------
@dataclass(frozen=True)
class VerifiedTransaction:
    id: str
    status: str
    amount: Any
    currency: str
    tx_ref: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def successful(self) -> bool:
        return self.status == SUCCESSFUL


class GatewayVerifier:
    """Asks the gateway directly what happened to a transaction.

    This is the only place allowed to say "funds were captured". Anything
    short of a well-formed `successful` answer is a failure:
    network trouble, timeouts, 5xx and malformed bodies raise
    TransientError (retry later); 4xx and non-successful statuses raise
    VerificationFailure.
    """

    def __init__(self, *, http: httpx.AsyncClient, base_url: str,
                 secret_key: str, timeout: float = 5.0) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout

    async def verify(self, transaction_id: Any) -> VerifiedTransaction:
        url = f"{self.base_url}/transactions/{transaction_id}/verify"
        try:
            async with timeit("gateway.verify"):
                r = await self.http.get(
                    url,
                    headers={"authorization": f"Bearer {self.secret_key}"},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise TransientError(
                f"gateway lookup failed for {transaction_id}: {e!r}"
            ) from e

        if r.status_code >= 500:
            raise TransientError(
                f"gateway answered {r.status_code} for {transaction_id}"
            )
        if r.status_code >= 400:
            raise VerificationFailure(
                f"gateway rejected lookup of {transaction_id} "
                f"({r.status_code})"
            )

        try:
            body = r.json()
            data = body["data"]
            tx = VerifiedTransaction(
                id=str(data["id"]),
                status=str(data["status"]),
                amount=data["amount"],
                currency=str(data["currency"]).upper(),
                tx_ref=data.get("tx_ref"),
                raw=data,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise TransientError(
                f"malformed gateway response for {transaction_id}"
            ) from e

        if not tx.successful:
            raise VerificationFailure(
                f"transaction {transaction_id} is {tx.status}"
            )
        return tx


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    name = "flutterwave"

    def __init__(self, *, verifier: GatewayVerifier,
                 webhook_secret: str) -> None:
        self.verifier = verifier
        self.webhook_secret = webhook_secret

    def verify_webhook(self, payload: bytes, headers: Dict[str, str]) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        if not verify_signature(self.webhook_secret, payload, sig):
            raise AuthenticationError("Invalid signature")
        try:
            event = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationError("Invalid JSON")
        if not isinstance(event, dict):
            raise ValidationError("Invalid JSON")
        return event

    def event_kind(self, event: dict) -> str:
        return str(event.get("event") or "")

    # (gateway transaction id, tx_ref)
    def event_ids(self, event: dict) -> Tuple[Optional[str], Optional[str]]:
        data = event.get("data") or {}
        if not isinstance(data, dict):
            return None, None
        tx_id = data.get("id") or data.get("transaction_id")
        tx_ref = data.get("tx_ref") or data.get("txRef")
        return (
            str(tx_id) if tx_id else None,
            str(tx_ref) if tx_ref else None,
        )

    async def verify(self, transaction_id: str) -> VerifiedTransaction:
        return await self.verifier.verify(transaction_id)

    @abstractmethod
    def checkout_params(self, prepared: Dict[str, Any]) -> Dict[str, Any]:
        """What the browser needs to hand the shopper to the gateway."""
        ...


class Flutterwave(PaymentAdapter):
    def __init__(self, *, verifier: GatewayVerifier, webhook_secret: str,
                 public_key: str) -> None:
        super().__init__(verifier=verifier, webhook_secret=webhook_secret)
        self.public_key = public_key
        if not webhook_secret:
            logger.warning("FLW_WEBHOOK_HASH is empty: every webhook "
                           "will be rejected")

    def checkout_params(self, prepared: Dict[str, Any]) -> Dict[str, Any]:
        customer = prepared["customer"]
        return {
            "provider": self.name,
            "public_key": self.public_key,
            "tx_ref": prepared["tx_ref"],
            "amount": prepared["amount"],
            "currency": prepared["currency"],
            "customer": {
                "email": customer["email"],
                "name": f"{customer['first_name']} {customer['last_name']}",
                "phone_number": customer.get("phone") or "",
            },
        }
