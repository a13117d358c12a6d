from typing import Any, Dict, Optional

from .helpers import to_iso
from .model.store import CheckoutStore


class OrderReader:
    """Read side for the success page polling after the gateway redirect.

    A missing order usually means the webhook has not landed yet, so
    `get()` answers None rather than raising. Anyone holding a tx_ref can
    call it, so the shape carries no customer contact details.
    """

    def __init__(self, store: CheckoutStore) -> None:
        self.store = store

    async def get(self, tx_ref: str) -> Optional[Dict[str, Any]]:
        order = await self.store.get_order(tx_ref)
        if order is None:
            return None
        return {
            "tx_ref": order["tx_ref"],
            "status": order["status"],
            "amount": order["amount"],
            "currency": order["currency"] or "NGN",
            "lines": order["lines"],
            "discount": order["discount"],
            "gateway": {
                "name": order["gateway"],
                "id": order["gateway_tx_id"],
                "amount": order["gateway_amount"],
                "currency": order["gateway_currency"],
            },
            "created_at": to_iso(order["created_at"]),
        }
