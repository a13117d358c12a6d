from typing import Any, Dict, Optional
import itertools
import time
import uuid

import httpx
import orjson
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from loguru import logger

from .config import PACKAGE_DIR
from .gateway import CHARGE_COMPLETED, SIGNATURE_HEADER, SUCCESSFUL
from .gateway import PaymentAdapter, sign_payload

templates = Jinja2Templates(directory=str(PACKAGE_DIR / "templates"))

OUTCOMES = {"successful", "failed", "cancelled"}


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """Stand-in gateway speaking the Flutterwave webhook/verify dialect."""

    name = "mockpay"

    def checkout_params(self, prepared: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "redirect_url": f"/mockpay/{prepared['tx_ref']}",
        }


class MockLedger:
    """Transactions the mock gateway has 'processed', in memory."""

    def __init__(self) -> None:
        self._ids = itertools.count(int(time.time()))
        self.transactions: Dict[str, Dict[str, Any]] = {}

    def record(self, *, tx_ref: str, amount: Any, currency: str,
               status: str) -> Dict[str, Any]:
        tx_id = str(next(self._ids))
        tx = {
            "id": int(tx_id),
            "tx_ref": tx_ref,
            "flw_ref": f"MOCK-{uuid.uuid4().hex[:12].upper()}",
            "amount": amount,
            "charged_amount": amount,
            "currency": currency,
            "status": status,
            "created_at": int(time.time()),
        }
        self.transactions[tx_id] = tx
        return tx

    def get(self, tx_id: str) -> Optional[Dict[str, Any]]:
        return self.transactions.get(str(tx_id))


def webhook_event(tx: Dict[str, Any]) -> Dict[str, Any]:
    return {"event": CHARGE_COMPLETED, "data": dict(tx)}


router = APIRouter(prefix="/mockpay", tags=["mockpay"])


# verify endpoint the GatewayVerifier calls when GATEWAY=mock
@router.get("/v3/transactions/{tx_id}/verify")
async def mockpay_verify(tx_id: str, request: Request):
    tx = request.app.state.mock_ledger.get(tx_id)
    if tx is None:
        raise HTTPException(404, detail="No transaction was found for this id")
    return {"status": "success", "message": "Transaction fetched successfully",
            "data": tx}


@router.get("/{tx_ref}", response_class=HTMLResponse)
async def mockpay_screen(request: Request, tx_ref: str):
    reservation = await request.app.state.store.get_reservation(tx_ref)
    if not reservation:
        raise HTTPException(404, "reservation not found")
    return templates.TemplateResponse(request, "mockpay.html", {
        "tx_ref": tx_ref,
        "amount": reservation["amount"],
        "currency": reservation["currency"],
        "email": reservation["email"],
        "lines": reservation["lines"],
        "webhook_url": request.app.state.settings.mock_webhook_url,
    })


@router.post("/{tx_ref}/emit")
async def mockpay_emit(tx_ref: str, request: Request):
    form = await request.form()
    outcome = form.get("t") or SUCCESSFUL
    if outcome not in OUTCOMES:
        raise HTTPException(400, detail="invalid outcome")

    state = request.app.state
    reservation = await state.store.get_reservation(tx_ref)
    if not reservation:
        raise HTTPException(404, "reservation not found")

    # `amount` lets a tester simulate a short payment
    amount = form.get("amount") or reservation["amount"]
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise HTTPException(400, detail="invalid amount")
    tx = state.mock_ledger.record(
        tx_ref=tx_ref,
        amount=amount,
        currency=reservation["currency"],
        status=outcome,
    )

    payload = orjson.dumps(webhook_event(tx))
    sig = sign_payload(state.settings.webhook_secret, payload)

    client_http: httpx.AsyncClient = state.http
    try:
        await client_http.post(
            state.settings.mock_webhook_url,
            content=payload,
            headers={
                SIGNATURE_HEADER: sig,
                "content-type": "application/json",
            },
        )
    except httpx.HTTPError as e:
        # the shopper can press the button again; the webhook is idempotent
        logger.error("mock webhook delivery failed: {!r}", e)

    status = "successful" if outcome == SUCCESSFUL else outcome
    return RedirectResponse(
        url=(f"{state.settings.success_url}?tx_ref={tx_ref}"
             f"&status={status}&transaction_id={tx['id']}"),
        status_code=303,
    )
