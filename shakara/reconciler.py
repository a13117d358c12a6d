"""Webhook reconciler: the only place a reservation becomes an order.

    authenticate -> filter event -> extract ids -> verify with gateway
        -> look up reservation -> match amount -> promote atomically

Steps up to id extraction reject or acknowledge for good. A failing
gateway lookup or store write answers 503 so the gateway redelivers;
reservation-state and amount decisions answer 200 because a redelivery
would reach the same conclusion.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from loguru import logger

from .errors import AuthenticationError, TransientError, ValidationError
from .errors import VerificationFailure
from .gateway import CHARGE_COMPLETED, PaymentAdapter
from .helpers import same_amount
from .model.db import EXPIRED, PENDING
from .model.store import CheckoutStore

# outcomes
REJECTED = "rejected"
IGNORED = "ignored"
NOT_VERIFIED = "not_verified"
CONFLICT = "conflict"
AMOUNT_MISMATCH = "amount_mismatch"
DUPLICATE = "duplicate"
CONFIRMED = "confirmed"
RETRY = "retry"


@dataclass
class ReconcileResult:
    outcome: str
    status_code: int = 200
    tx_ref: str | None = None
    body: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        ok = (self.status_code == 200
              and self.outcome not in (NOT_VERIFIED, CONFLICT, AMOUNT_MISMATCH))
        out = {"ok": ok, "outcome": self.outcome}
        if self.tx_ref:
            out["tx_ref"] = self.tx_ref
        out.update(self.body)
        return out


class WebhookReconciler:
    def __init__(self, *, adapter: PaymentAdapter, store: CheckoutStore) -> None:
        self.adapter = adapter
        self.store = store

    async def handle(
            self, payload: bytes, headers: Dict[str, str]
    ) -> ReconcileResult:
        # 1. authenticate before anything else is read
        try:
            event = self.adapter.verify_webhook(payload, headers)
        except AuthenticationError:
            logger.error("webhook signature verification failed")
            return ReconcileResult(REJECTED, 401,
                                   body={"error": "Invalid signature"})
        except ValidationError as e:
            logger.error("webhook body rejected: {}", e.message)
            return ReconcileResult(REJECTED, 400, body={"error": e.message})

        # 2. only completed charges move money
        kind = self.adapter.event_kind(event)
        tx_id, tx_ref = self.adapter.event_ids(event)
        logger.info("webhook received: {} {}", kind, tx_ref)
        if kind != CHARGE_COMPLETED:
            return ReconcileResult(IGNORED, body={"event": kind})

        # 3. malformed third-party notifications are acknowledged, not retried
        if not tx_id or not tx_ref:
            logger.error("webhook without transaction id or tx_ref")
            return ReconcileResult(IGNORED)

        # 4. ask the gateway; the webhook's own amount/status is not evidence
        try:
            verified = await self.adapter.verify(tx_id)
        except TransientError as e:
            logger.error("verification of {} failed, asking for redelivery: {}",
                         tx_ref, e.message)
            return ReconcileResult(RETRY, 503, tx_ref,
                                   body={"error": "Verification unavailable"})
        except VerificationFailure as e:
            logger.error("payment verification failed for {}: {}",
                         tx_ref, e.message)
            return ReconcileResult(NOT_VERIFIED, tx_ref=tx_ref)

        if verified.tx_ref and verified.tx_ref != tx_ref:
            logger.warning(
                "gateway transaction {} belongs to {}, webhook claimed {}",
                tx_id, verified.tx_ref, tx_ref)
            return ReconcileResult(CONFLICT, tx_ref=tx_ref)

        # 5. idempotency anchor
        try:
            reservation = await self.store.get_reservation(tx_ref)
        except TransientError as e:
            logger.error("reservation lookup for {} failed: {}",
                         tx_ref, e.message)
            return ReconcileResult(RETRY, 503, tx_ref,
                                   body={"error": "Storage unavailable"})
        if reservation is None:
            logger.warning("no reservation for {}", tx_ref)
            return ReconcileResult(IGNORED, tx_ref=tx_ref)
        if reservation["status"] != PENDING:
            if reservation["status"] == EXPIRED:
                logger.warning("payment {} arrived for expired reservation {}; "
                               "needs manual review", tx_id, tx_ref)
            else:
                logger.info("reservation {} already {}, nothing to do",
                            tx_ref, reservation["status"])
            return ReconcileResult(IGNORED, tx_ref=tx_ref,
                                   body={"status": reservation["status"]})

        # 6. full payment only
        if (verified.currency != reservation["currency"].upper()
                or not same_amount(verified.amount, reservation["amount"])):
            logger.warning(
                "amount mismatch for {}: gateway {} {}, reservation {} {}; "
                "left pending for manual reconciliation",
                tx_ref, verified.amount, verified.currency,
                reservation["amount"], reservation["currency"])
            return ReconcileResult(AMOUNT_MISMATCH, tx_ref=tx_ref)

        # 7. conditional promotion, one transaction
        try:
            created = await self.store.promote(
                tx_ref,
                {
                    "id": verified.id,
                    "amount": verified.amount,
                    "currency": verified.currency,
                },
                gateway=self.adapter.name,
            )
        except TransientError as e:
            logger.opt(exception=e).error(
                "promotion of {} failed, reservation stays pending", tx_ref)
            return ReconcileResult(RETRY, 503, tx_ref,
                                   body={"error": "Storage unavailable"})

        if not created:
            return ReconcileResult(DUPLICATE, tx_ref=tx_ref)

        logger.info("payment verified for {}: order created", tx_ref)
        return ReconcileResult(CONFIRMED, tx_ref=tx_ref,
                               body={"order_status": "paid"})
