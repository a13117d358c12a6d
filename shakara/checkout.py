"""Reservation service: turns a submitted cart into a pending reservation.

The browser's idea of prices is never used. Every line is re-priced from
the catalog, the discount is re-evaluated against that server-side
subtotal, and the reservation row is written before the tx_ref is handed
back, so the webhook always has something to look up.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .discounts import DiscountEvaluator, ResolvedDiscount
from .errors import ConflictError, ValidationError
from .helpers import generate_tx_ref, now_ts
from .model.catalog import CatalogReader
from .model.store import CheckoutStore
from .schemas import PreparePayload

TX_REF_ATTEMPTS = 3


@dataclass(frozen=True)
class PreparedCheckout:
    tx_ref: str
    amount: int
    currency: str
    subtotal: int
    lines: List[Dict[str, Any]]
    discount: Optional[ResolvedDiscount]
    customer: Dict[str, Any]

    def to_json(self) -> Dict[str, Any]:
        return {
            "tx_ref": self.tx_ref,
            "amount": self.amount,
            "currency": self.currency,
            "subtotal": self.subtotal,
            "lines": self.lines,
            "discount": self.discount.to_json() if self.discount else None,
        }


class ReservationService:
    def __init__(
        self,
        *,
        catalog: CatalogReader,
        store: CheckoutStore,
        discounts: DiscountEvaluator,
        currency: str = "NGN",
        ttl_seconds: int = 600,
        production: bool = False,
        new_tx_ref: Callable[[], str] = generate_tx_ref,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.discounts = discounts
        self.currency = currency
        self.ttl_seconds = ttl_seconds
        self.production = production
        self.new_tx_ref = new_tx_ref

    async def price_lines(self, payload: PreparePayload):
        skus = {line.sku for line in payload.lines}
        entries = await self.catalog.get_entries(skus)

        subtotal = 0
        priced: List[Dict[str, Any]] = []
        for line in payload.lines:
            entry = entries.get(line.sku)
            if entry is None:
                raise ValidationError(f"Unknown SKU {line.sku}")
            if not entry.available or entry.sold_out:
                raise ValidationError(f"SKU not available {line.sku}")
            if not entry.can_sell(line.quantity):
                raise ConflictError(f"Insufficient inventory for {line.sku}")
            if entry.currency != self.currency:
                raise ValidationError(
                    f"SKU {line.sku} is priced in {entry.currency}"
                )

            unit_price = entry.unit_price(self.production)
            subtotal += unit_price * line.quantity
            priced.append({
                "sku": entry.sku,
                "name": entry.name,
                "quantity": line.quantity,
                "units": entry.bundle_size * line.quantity,
                "unit_price": unit_price,
                "selected_dates": list(line.selected_dates or []),
            })
        return subtotal, priced

    async def prepare(self, payload: PreparePayload) -> PreparedCheckout:
        subtotal, lines = await self.price_lines(payload)
        customer = payload.customer

        discount = None
        if payload.discount_code:
            result = await self.discounts.validate(
                payload.discount_code,
                subtotal,
                cart_skus=[line["sku"] for line in lines],
                customer_email=customer.email,
            )
            if not result.valid:
                raise ValidationError(result.error or "Invalid discount code")
            discount = result.discount

        amount = subtotal - (discount.value_applied if discount else 0)
        # the gateway cannot settle a zero charge, so nothing would confirm it
        if amount <= 0:
            raise ValidationError("Order total must be greater than zero")
        created = now_ts()
        row = {
            "email": customer.email,
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "phone": customer.phone,
            "lines": lines,
            "subtotal": subtotal,
            "discount_code": discount.code if discount else None,
            "discount": discount.to_json() if discount else None,
            "amount": amount,
            "currency": self.currency,
            "created_at": created,
            "expires_at": created + self.ttl_seconds,
        }

        for attempt in range(TX_REF_ATTEMPTS):
            tx_ref = self.new_tx_ref()
            try:
                await self.store.create_reservation({**row, "tx_ref": tx_ref})
                break
            except ConflictError:
                logger.warning("tx_ref collision on {} (attempt {})",
                               tx_ref, attempt + 1)
        else:
            raise ConflictError("Could not allocate a transaction reference")

        logger.info("reservation {} pending: {} {} ({} lines)",
                    tx_ref, amount, self.currency, len(lines))
        return PreparedCheckout(
            tx_ref=tx_ref,
            amount=amount,
            currency=self.currency,
            subtotal=subtotal,
            lines=lines,
            discount=discount,
            customer={
                "email": customer.email,
                "first_name": customer.first_name,
                "last_name": customer.last_name,
                "phone": customer.phone,
            },
        )
