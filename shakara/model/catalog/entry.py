"""Catalog entry as read from the content store."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

TICKET = "ticket"
ADDON = "addon"


@dataclass(frozen=True)
class CatalogEntry:
    """One sellable SKU, immutable for the lifetime of a fetch."""

    sku: str
    name: str
    price: int
    currency: str = "NGN"
    category: str = TICKET
    available: bool = True
    order: int = 0
    id: Optional[str] = None
    description: Optional[str] = None
    badge: Optional[str] = None
    sold_out: bool = False
    bundle_size: int = 1
    inventory: Optional[int] = None
    sold: int = 0
    reserved: int = 0
    allow_oversell: bool = False
    live: bool = True
    test_price: Optional[int] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "CatalogEntry":
        """Build from a content-store document (camelCase keys)."""
        sku = str(doc.get("sku") or "").strip()
        # content docs mark add-ons through `type`; local files may use
        # `category`
        is_addon = ADDON in (doc.get("category"), doc.get("type"))
        category = ADDON if is_addon else TICKET
        available = doc.get("available")
        return cls(
            sku=sku,
            name=doc.get("name") or sku,
            price=int(doc.get("price") or 0),
            currency=(doc.get("currency") or "NGN").upper(),
            category=category,
            # older documents have no availability field: treat as available
            available=True if available is None else bool(available),
            order=int(doc.get("order") or 0),
            id=doc.get("_id") or doc.get("id") or f"ticket.{sku}",
            description=doc.get("description"),
            badge=doc.get("badge"),
            sold_out=bool(doc.get("soldOut") or False),
            bundle_size=max(1, int(doc.get("bundleSize") or 1)),
            inventory=(
                None if doc.get("inventory") is None
                else int(doc["inventory"])
            ),
            sold=int(doc.get("sold") or 0),
            reserved=int(doc.get("reserved") or 0),
            allow_oversell=bool(doc.get("allowOversell") or False),
            live=True if doc.get("live") is None else bool(doc["live"]),
            test_price=(
                None if doc.get("testPrice") is None
                else int(doc["testPrice"])
            ),
        )

    def unit_price(self, production: bool) -> int:
        # outside production, or while a SKU is not live, charge testPrice
        if self.live and production:
            return self.price
        return self.test_price if self.test_price is not None else self.price

    @property
    def available_units(self) -> float:
        if self.inventory is None:
            return math.inf
        return self.inventory - self.sold - self.reserved

    def can_sell(self, quantity: int) -> bool:
        if self.allow_oversell:
            return True
        return self.available_units >= self.bundle_size * quantity

    def public(self) -> Dict[str, Any]:
        """Storefront shape: no inventory internals."""
        d = asdict(self)
        return {
            "id": d["id"],
            "name": d["name"],
            "sku": d["sku"],
            "description": d["description"],
            "price": d["price"],
            "currency": d["currency"],
            "badge": d["badge"],
            "available": d["available"] and not d["sold_out"],
        }
