"""Discount code evaluation.

`DiscountEvaluator.validate()` never writes: a usage slot is consumed only
when a paid order is created (see `CheckoutStore.promote`).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Protocol

from .helpers import now_ts, round_half_up

PERCENTAGE = "percentage"
FLAT = "flat"


class DiscountRules(Protocol):
    async def get_discount(self, code: str) -> Optional[Dict[str, Any]]: ...

    async def count_discount_uses(self, code: str, email: str) -> int: ...


@dataclass(frozen=True)
class ResolvedDiscount:
    code: str
    label: str
    type: str
    amount: int
    value_applied: int

    def to_json(self) -> Dict[str, Any]:
        d = asdict(self)
        d["valueApplied"] = d.pop("value_applied")
        return d


@dataclass(frozen=True)
class DiscountResult:
    valid: bool
    discount: Optional[ResolvedDiscount] = None
    error: Optional[str] = None


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def calculate_value(rule: Dict[str, Any], cart_total: int) -> int:
    amount = int(rule.get("amount") or 0)
    if rule.get("type") == PERCENTAGE:
        pct = Decimal(min(amount, 100)) / Decimal(100)
        value = round_half_up(Decimal(cart_total) * pct)
    else:
        value = amount
    return max(0, min(value, cart_total))


def _invalid(error: str) -> DiscountResult:
    return DiscountResult(valid=False, error=error)


class DiscountEvaluator:
    def __init__(self, rules: DiscountRules) -> None:
        self.rules = rules

    async def validate(
        self,
        code: str,
        cart_total: int,
        cart_skus: Optional[Iterable[str]] = None,
        customer_email: Optional[str] = None,
        now: Optional[float] = None,
    ) -> DiscountResult:
        code = normalize_code(code)
        if not code:
            return _invalid("Discount code is required")
        if cart_total < 0:
            return _invalid("Cart total must be positive")
        now = now_ts() if now is None else now
        skus = [s for s in (cart_skus or []) if s]
        email = (customer_email or "").strip().lower()

        rule = await self.rules.get_discount(code)
        if not rule:
            return _invalid("Invalid discount code")
        if not rule.get("active", True):
            return _invalid("This discount code is no longer active")

        valid_from = rule.get("valid_from")
        valid_to = rule.get("valid_to")
        if valid_from is not None and valid_from > now:
            return _invalid("This discount code is not yet valid")
        if valid_to is not None and valid_to < now:
            return _invalid("This discount code has expired")

        max_uses = rule.get("max_uses")
        if max_uses is not None and (rule.get("usage_count") or 0) >= max_uses:
            return _invalid("This discount code has reached its usage limit")

        allowed = [e.strip().lower() for e in rule.get("allowed_emails") or []]
        if allowed and email not in allowed:
            return _invalid("This discount code is not available to you")

        per_email = rule.get("max_uses_per_email")
        if per_email is not None and email:
            used = await self.rules.count_discount_uses(code, email)
            if used >= per_email:
                return _invalid(
                    "You have already used this discount code the maximum "
                    "number of times"
                )

        min_total = rule.get("min_cart_total")
        if min_total is not None and cart_total < min_total:
            return _invalid(
                f"This discount code requires a minimum order of {min_total}"
            )

        applicable = rule.get("applicable_skus") or []
        if applicable and not any(s in applicable for s in skus):
            return _invalid(
                "This discount code is not applicable to items in your cart"
            )

        value = calculate_value(rule, cart_total)
        if value <= 0:
            return _invalid("Discount cannot be applied to this order")

        return DiscountResult(valid=True, discount=ResolvedDiscount(
            code=code,
            label=rule.get("label") or code,
            type=rule.get("type") or FLAT,
            amount=int(rule.get("amount") or 0),
            value_applied=value,
        ))
