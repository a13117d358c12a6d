from __future__ import annotations
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession, async_sessionmaker

from ..errors import ConflictError, TransientError
from ..helpers import now_ts
from ..infra.sql import Gated
from ..infra.timings import timeit
from .db import (
    CONFIRMED,
    EXPIRED,
    ORDER_PAID,
    PENDING,
    Base,
    DiscountCode,
    Order,
    Reservation,
)


async def create_schema(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.create_all)


def _reservation_dict(r: Reservation) -> Dict[str, Any]:
    return {
        "tx_ref": r.tx_ref,
        "email": r.email,
        "first_name": r.first_name,
        "last_name": r.last_name,
        "phone": r.phone,
        "lines": r.lines,
        "subtotal": r.subtotal,
        "discount_code": r.discount_code,
        "discount": r.discount,
        "amount": r.amount,
        "currency": r.currency,
        "status": r.status,
        "created_at": r.created_at,
        "expires_at": r.expires_at,
        "confirmed_at": r.confirmed_at,
    }


def _order_dict(o: Order) -> Dict[str, Any]:
    return {
        "tx_ref": o.tx_ref,
        "email": o.email,
        "first_name": o.first_name,
        "last_name": o.last_name,
        "phone": o.phone,
        "lines": o.lines,
        "amount": o.amount,
        "currency": o.currency,
        "discount_code": o.discount_code,
        "discount": o.discount,
        "status": o.status,
        "gateway": o.gateway,
        "gateway_tx_id": o.gateway_tx_id,
        "gateway_amount": o.gateway_amount,
        "gateway_currency": o.gateway_currency,
        "created_at": o.created_at,
    }


def _discount_dict(d: DiscountCode) -> Dict[str, Any]:
    return {
        "code": d.code,
        "label": d.label,
        "type": d.type,
        "amount": d.amount,
        "active": bool(d.active),
        "valid_from": d.valid_from,
        "valid_to": d.valid_to,
        "max_uses": d.max_uses,
        "max_uses_per_email": d.max_uses_per_email,
        "min_cart_total": d.min_cart_total,
        "applicable_skus": list(d.applicable_skus or []),
        "allowed_emails": list(d.allowed_emails or []),
        "usage_count": d.usage_count or 0,
    }


class CheckoutStore:
    """Durable home of reservations, orders and discount rules.

    Every method runs its own short transaction behind the DB gate.
    `promote()` is the only place a reservation leaves `pending` because
    of a payment; it is a conditional update, so concurrent webhook
    deliveries for one tx_ref produce exactly one order.
    """

    def __init__(
        self, *, sessions: async_sessionmaker[AsyncSession], gated: Gated
    ) -> None:
        self.sessions = sessions
        self.gated = gated

    # ---- reservations

    async def create_reservation(self, data: Dict[str, Any]) -> None:
        """Insert a pending reservation; ConflictError if the tx_ref exists."""
        try:
            async with timeit("store.create_reservation"):
                async with self.gated():
                    async with self.sessions() as db:
                        async with db.begin():
                            db.add(Reservation(status=PENDING, **data))
        except IntegrityError:
            raise ConflictError(f"tx_ref already exists: {data['tx_ref']}")
        except SQLAlchemyError as e:
            raise TransientError("could not persist reservation") from e

    async def get_reservation(self, tx_ref: str) -> Optional[Dict[str, Any]]:
        try:
            async with self.gated():
                async with self.sessions() as db:
                    r = await db.get(Reservation, tx_ref)
                    return _reservation_dict(r) if r else None
        except SQLAlchemyError as e:
            raise TransientError("could not read reservation") from e

    async def promote(
        self,
        tx_ref: str,
        evidence: Dict[str, Any],
        gateway: str = "flutterwave",
    ) -> bool:
        """Confirm a pending reservation and create its order atomically.

        Returns True when this call created the order, False when another
        delivery got there first (or the reservation is no longer pending).
        Storage failures roll everything back and raise TransientError.
        """
        ts = now_ts()
        try:
            async with timeit("store.promote"):
                async with self.gated():
                    async with self.sessions() as db:
                        async with db.begin():
                            res = await db.execute(text("""
                                UPDATE reservations
                                SET status = :confirmed, confirmed_at = :ts
                                WHERE tx_ref = :tx_ref AND status = :pending
                            """), {
                                "confirmed": CONFIRMED,
                                "pending": PENDING,
                                "ts": ts,
                                "tx_ref": tx_ref,
                            })
                            if res.rowcount != 1:
                                return False

                            r = await db.get(Reservation, tx_ref)
                            db.add(Order(
                                tx_ref=r.tx_ref,
                                email=r.email,
                                first_name=r.first_name,
                                last_name=r.last_name,
                                phone=r.phone,
                                lines=r.lines,
                                amount=r.amount,
                                currency=r.currency,
                                discount_code=r.discount_code,
                                discount=r.discount,
                                status=ORDER_PAID,
                                gateway=gateway,
                                gateway_tx_id=str(evidence["id"]),
                                gateway_amount=str(evidence["amount"]),
                                gateway_currency=str(evidence["currency"]),
                                created_at=ts,
                            ))
                            if r.discount_code:
                                await self._consume_discount(
                                    db, r.discount_code
                                )
                            await db.flush()
            return True
        except IntegrityError:
            # an order for this tx_ref already exists: idempotent replay
            logger.info("order for {} already exists, replay ignored", tx_ref)
            return False
        except SQLAlchemyError as e:
            raise TransientError(f"could not promote {tx_ref}") from e

    async def _consume_discount(self, db: AsyncSession, code: str) -> None:
        await db.execute(text("""
            UPDATE discount_codes
            SET usage_count = usage_count + 1
            WHERE code = :code
        """), {"code": code})

    async def expire_stale(self, now: Optional[float] = None) -> int:
        """Move pending reservations past their expiry to `expired`."""
        now = now_ts() if now is None else now
        try:
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        res = await db.execute(text("""
                            UPDATE reservations SET status = :expired
                            WHERE status = :pending AND expires_at < :now
                        """), {
                            "expired": EXPIRED,
                            "pending": PENDING,
                            "now": now,
                        })
            return int(res.rowcount or 0)
        except SQLAlchemyError as e:
            raise TransientError("could not expire reservations") from e

    # ---- orders

    async def get_order(self, tx_ref: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.sessions() as db:
                o = (await db.execute(
                    select(Order).where(Order.tx_ref == tx_ref)
                )).scalar_one_or_none()
                return _order_dict(o) if o else None

    async def count_orders(self, tx_ref: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(Order)
        if tx_ref is not None:
            stmt = stmt.where(Order.tx_ref == tx_ref)
        async with self.gated():
            async with self.sessions() as db:
                return int((await db.execute(stmt)).scalar_one())

    # ---- discount rules

    async def get_discount(self, code: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.sessions() as db:
                d = await db.get(DiscountCode, code)
                return _discount_dict(d) if d else None

    async def count_discount_uses(self, code: str, email: str) -> int:
        stmt = (
            select(func.count()).select_from(Order)
            .where(Order.discount_code == code)
            .where(func.lower(Order.email) == email.strip().lower())
        )
        async with self.gated():
            async with self.sessions() as db:
                return int((await db.execute(stmt)).scalar_one())

    async def upsert_discounts(self, rows: List[Dict[str, Any]]) -> int:
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    for row in rows:
                        row = dict(row)
                        row["code"] = row["code"].strip().upper()
                        await db.merge(DiscountCode(**row))
        return len(rows)
