"""Shopper-side cart.

The cart lives with the browser session and is persisted in local storage
under versioned keys. Its prices are for display only: the checkout
payload it builds carries SKUs, quantities and dates, never prices.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .discounts import ResolvedDiscount
from .helpers import normalize_dates

CART_STORAGE_KEY = "shakara_cart_v1"
DISCOUNT_STORAGE_KEY = "shakara_discount_v1"


@dataclass(frozen=True)
class CartLine:
    sku: str
    name: str
    price: int
    quantity: int = 1
    category: str = "ticket"
    selected_dates: tuple = ()

    def __post_init__(self):
        if self.quantity < 1:
            raise ValueError("quantity must be at least 1")
        object.__setattr__(
            self, "selected_dates", tuple(normalize_dates(self.selected_dates))
        )

    @property
    def uid(self) -> str:
        parts = [self.category or "ticket", self.sku]
        if self.selected_dates:
            parts.append("@" + "|".join(self.selected_dates))
        return ":".join(parts)

    @property
    def line_total(self) -> int:
        return self.price * self.quantity

    def to_json(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "id": self.sku,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
            "category": self.category,
            "selectedDates": list(self.selected_dates),
        }

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "CartLine":
        return cls(
            sku=d.get("id") or d["sku"],
            name=d.get("name") or "",
            price=int(d.get("price") or 0),
            quantity=max(1, int(d.get("quantity") or 1)),
            category=d.get("category") or "ticket",
            selected_dates=tuple(normalize_dates(
                d.get("selectedDates") or d.get("selectedDate")
            )),
        )


@dataclass
class DiscountQuote:
    """A discount as quoted for one particular cart state."""

    discount: ResolvedDiscount
    subtotal: int
    skus: tuple

    def to_json(self) -> Dict[str, Any]:
        return {
            "discount": self.discount.to_json(),
            "subtotal": self.subtotal,
            "skus": list(self.skus),
        }

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "DiscountQuote":
        disc = d["discount"]
        return cls(
            discount=ResolvedDiscount(
                code=disc["code"],
                label=disc.get("label") or disc["code"],
                type=disc["type"],
                amount=int(disc["amount"]),
                value_applied=int(disc["valueApplied"]),
            ),
            subtotal=int(d["subtotal"]),
            skus=tuple(d.get("skus") or ()),
        )


@dataclass
class Cart:
    lines: List[CartLine] = field(default_factory=list)
    quote: Optional[DiscountQuote] = None

    # ---- mutation

    def add(self, line: CartLine) -> CartLine:
        """Add a line; an equal identity key bumps the existing quantity."""
        for i, existing in enumerate(self.lines):
            if existing.uid == line.uid:
                merged = replace(
                    existing, quantity=existing.quantity + line.quantity
                )
                self.lines[i] = merged
                return merged
        self.lines.append(line)
        return line

    def update_quantity(self, uid: str, quantity: int) -> None:
        self.lines = [
            replace(ln, quantity=max(1, quantity)) if ln.uid == uid else ln
            for ln in self.lines
        ]

    def remove(self, uid: str) -> None:
        self.lines = [ln for ln in self.lines if ln.uid != uid]
        if not self.lines:
            self.quote = None

    def clear(self) -> None:
        self.lines = []
        self.quote = None

    # ---- derived

    @property
    def count(self) -> int:
        return sum(ln.quantity for ln in self.lines)

    @property
    def subtotal(self) -> int:
        return sum(ln.line_total for ln in self.lines)

    @property
    def skus(self) -> List[str]:
        return sorted({ln.sku for ln in self.lines})

    # ---- discount quote

    def apply_quote(self, discount: ResolvedDiscount) -> None:
        self.quote = DiscountQuote(discount, self.subtotal, tuple(self.skus))

    def quote_is_current(self) -> bool:
        if self.quote is None:
            return False
        return (self.quote.subtotal == self.subtotal
                and list(self.quote.skus) == self.skus)

    @property
    def total(self) -> int:
        if not self.quote_is_current():
            return self.subtotal
        return self.subtotal - self.quote.discount.value_applied

    # ---- persistence

    def to_storage(self) -> Dict[str, str]:
        if not self.lines:
            return {}
        out = {
            CART_STORAGE_KEY: json.dumps([ln.to_json() for ln in self.lines])
        }
        if self.quote is not None:
            out[DISCOUNT_STORAGE_KEY] = json.dumps(self.quote.to_json())
        return out

    @classmethod
    def from_storage(cls, storage: Dict[str, str]) -> "Cart":
        try:
            raw = json.loads(storage.get(CART_STORAGE_KEY) or "[]")
            lines = [CartLine.from_json(d) for d in raw]
        except (ValueError, KeyError, TypeError):
            return cls()
        cart = cls()
        for ln in lines:
            cart.add(ln)
        if not cart.lines:
            return cart
        try:
            q = storage.get(DISCOUNT_STORAGE_KEY)
            cart.quote = DiscountQuote.from_json(json.loads(q)) if q else None
        except (ValueError, KeyError, TypeError):
            cart.quote = None
        return cart

    # ---- checkout

    def checkout_payload(self, customer: Dict[str, Any]) -> Dict[str, Any]:
        """Body for POST /api/checkout/prepare."""
        payload: Dict[str, Any] = {
            "customer": customer,
            "lines": [
                {
                    "sku": ln.sku,
                    "quantity": ln.quantity,
                    "selectedDates": list(ln.selected_dates),
                }
                for ln in self.lines
            ],
        }
        if self.quote is not None and self.quote_is_current():
            payload["discountCode"] = self.quote.discount.code
        return payload
