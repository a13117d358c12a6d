from __future__ import annotations
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger

from .checkout import ReservationService
from .config import Settings
from .discounts import DiscountEvaluator
from .errors import CheckoutError, NotFoundError, VerificationFailure
from .gateway import Flutterwave, GatewayVerifier, PaymentAdapter
from .helpers import same_amount
from .infra.log import setup_logging
from .infra.sql import make_async_engine
from .infra.timings import install_shutdown_flush
from .mockpay import MockLedger, MockPay, router as mockpay_router
from .model.catalog import CatalogReader, new_reader
from .model.store import CheckoutStore, create_schema
from .orders import OrderReader
from .reconciler import WebhookReconciler
from .schemas import DiscountValidatePayload, PreparePayload, VerifyPayload


# ----------------------------
# Wiring
# ----------------------------
def build_adapter(settings: Settings, http: httpx.AsyncClient) -> PaymentAdapter:
    verifier = GatewayVerifier(
        http=http,
        base_url=settings.gateway_base_url,
        secret_key=settings.flw_secret_key,
        timeout=settings.gateway_timeout,
    )
    if settings.gateway == "mock":
        return MockPay(verifier=verifier,
                       webhook_secret=settings.webhook_secret)
    if settings.gateway == "flutterwave":
        return Flutterwave(verifier=verifier,
                           webhook_secret=settings.webhook_secret,
                           public_key=settings.flw_public_key)
    raise RuntimeError(f"unknown GATEWAY: {settings.gateway}")


def get_store(request: Request) -> CheckoutStore:
    return request.app.state.store


def get_catalog(request: Request) -> CatalogReader:
    return request.app.state.catalog


def get_adapter(request: Request) -> PaymentAdapter:
    return request.app.state.adapter


def get_discounts(store: CheckoutStore = Depends(get_store)) -> DiscountEvaluator:
    return DiscountEvaluator(store)


def get_reservations(
    request: Request,
    store: CheckoutStore = Depends(get_store),
    catalog: CatalogReader = Depends(get_catalog),
    discounts: DiscountEvaluator = Depends(get_discounts),
) -> ReservationService:
    settings: Settings = request.app.state.settings
    return ReservationService(
        catalog=catalog,
        store=store,
        discounts=discounts,
        currency=settings.currency,
        ttl_seconds=settings.reservation_ttl_seconds,
        production=settings.production,
    )


def get_reconciler(
    store: CheckoutStore = Depends(get_store),
    adapter: PaymentAdapter = Depends(get_adapter),
) -> WebhookReconciler:
    return WebhookReconciler(adapter=adapter, store=store)


def get_orders(store: CheckoutStore = Depends(get_store)) -> OrderReader:
    return OrderReader(store)


# ----------------------------
# Error handlers
# ----------------------------
async def checkout_error_handler(request: Request, exc: Exception):
    error = exc if isinstance(exc, CheckoutError) else CheckoutError(str(exc))
    return ORJSONResponse(status_code=error.status_code,
                          content={"ok": False, "error": error.message})


async def validation_error_handler(request: Request, exc: Exception):
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    details = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"),
         "type": e.get("type")}
        for e in errors
    ]
    return ORJSONResponse(
        status_code=400,
        content={"ok": False, "error": "Invalid request data",
                 "details": jsonable_encoder(details)},
    )


async def general_500_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error("unhandled error on {}", request.url.path)
    return ORJSONResponse(status_code=500,
                          content={"ok": False,
                                   "error": "Internal server error"})


# ----------------------------
# App factory
# ----------------------------
def create_app(
    settings: Optional[Settings] = None,
    *,
    catalog: Optional[CatalogReader] = None,
    adapter: Optional[PaymentAdapter] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Shakara Checkout",
        default_response_class=ORJSONResponse,
    )
    app.state.settings = settings
    app.add_exception_handler(CheckoutError, checkout_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, general_500_handler)

    install_shutdown_flush(app)

    if settings.gateway == "mock":
        app.state.mock_ledger = MockLedger()
        app.include_router(mockpay_router)

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        logger.info("Shakara checkout is starting up...")
        logger.info("   - Catalog backend: {}", settings.catalog_backend)
        logger.info("   - Payment gateway: {}", settings.gateway)
        logger.info("   - Environment:     {}", settings.app_env)

    @app.on_event("startup")
    async def _http_client_start():
        app.state.http = httpx.AsyncClient(
            timeout=settings.gateway_timeout,
            limits=httpx.Limits(
                max_connections=256, max_keepalive_connections=256
            ),
        )

    @app.on_event("startup")
    async def _db_init():
        engine, SessionAsync, gated = make_async_engine(settings.database_url)
        app.state.engine = engine
        async with engine.begin() as conn:
            await create_schema(conn)
        app.state.store = CheckoutStore(sessions=SessionAsync, gated=gated)

    @app.on_event("startup")
    async def _components_start():
        app.state.catalog = catalog or new_reader(
            backend=settings.catalog_backend,
            catalog_file=settings.catalog_file,
            http=app.state.http,
            project_id=settings.sanity_project_id,
            dataset=settings.sanity_dataset,
            api_version=settings.sanity_api_version,
            token=settings.sanity_token,
        )
        app.state.adapter = adapter or build_adapter(settings, app.state.http)

    @app.on_event("shutdown")
    async def _http_client_stop():
        http = getattr(app.state, "http", None)
        if http is not None:
            await http.aclose()
            app.state.http = None

    @app.on_event("shutdown")
    async def _db_stop():
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
            app.state.engine = None

    # ----------------------------
    # Catalog (never a hard error for the storefront)
    # ----------------------------
    @app.get("/api/checkout/addons")
    async def list_addons(catalog: CatalogReader = Depends(get_catalog)):
        try:
            entries = await catalog.list_addons()
        except Exception:
            logger.exception("addon listing failed")
            return {"addons": []}
        return {"addons": [e.public() for e in entries]}

    @app.get("/api/checkout/tickets")
    async def list_tickets(catalog: CatalogReader = Depends(get_catalog)):
        try:
            entries = await catalog.list_tickets()
        except Exception:
            logger.exception("ticket listing failed")
            return {"tickets": []}
        return {"tickets": [e.public() for e in entries]}

    # ----------------------------
    # Discounts
    # ----------------------------
    @app.post("/api/discounts/validate")
    async def validate_discount(
        payload: DiscountValidatePayload,
        discounts: DiscountEvaluator = Depends(get_discounts),
    ):
        try:
            result = await discounts.validate(
                payload.code,
                payload.cart_total,
                cart_skus=payload.cart_skus,
                customer_email=payload.customer_email,
            )
        except Exception:
            logger.exception("discount validation error")
            return ORJSONResponse(
                status_code=500,
                content={"ok": False,
                         "error": "Failed to validate discount code"},
            )
        if not result.valid:
            return ORJSONResponse(status_code=400,
                                  content={"ok": False, "error": result.error})
        return {
            "ok": True,
            "discount": result.discount.to_json(),
            "amountOff": result.discount.value_applied,
        }

    # ----------------------------
    # Checkout
    # ----------------------------
    @app.post("/api/checkout/prepare")
    async def prepare_checkout(
        payload: PreparePayload,
        reservations: ReservationService = Depends(get_reservations),
        adapter: PaymentAdapter = Depends(get_adapter),
    ):
        prepared = await reservations.prepare(payload)
        body = prepared.to_json()
        body["payment"] = adapter.checkout_params({
            "tx_ref": prepared.tx_ref,
            "amount": prepared.amount,
            "currency": prepared.currency,
            "customer": prepared.customer,
        })
        return body

    @app.post("/api/checkout/webhook")
    async def checkout_webhook(
        request: Request,
        reconciler: WebhookReconciler = Depends(get_reconciler),
    ):
        payload = await request.body()
        headers = dict(request.headers)
        result = await reconciler.handle(payload, headers)
        return ORJSONResponse(status_code=result.status_code,
                              content=result.to_json())

    # advisory check for the success page; never changes state
    @app.post("/api/checkout/verify")
    async def verify_checkout(
        payload: VerifyPayload,
        adapter: PaymentAdapter = Depends(get_adapter),
    ):
        try:
            tx = await adapter.verify(str(payload.transaction_id))
        except VerificationFailure as e:
            return ORJSONResponse(status_code=400,
                                  content={"ok": False, "error": e.message})
        ok = True
        if payload.expected_amount is not None:
            ok = ok and same_amount(tx.amount, payload.expected_amount)
        if payload.expected_currency:
            ok = ok and tx.currency == payload.expected_currency.upper()
        return ORJSONResponse(status_code=200 if ok else 400,
                              content={"ok": ok, "data": tx.raw})

    # ----------------------------
    # Orders (polled by the success page)
    # ----------------------------
    @app.get("/api/orders/{tx_ref}")
    async def get_order(tx_ref: str, orders: OrderReader = Depends(get_orders)):
        order = await orders.get(tx_ref)
        if order is None:
            # webhook still in flight -> client keeps polling
            raise NotFoundError("Order not found")
        return order

    return app


app = create_app()
