from typing import Any, Dict, List, Optional

import httpx
import pytest

from shakara.gateway import GatewayVerifier, sign_payload
from shakara.infra.sql import make_async_engine
from shakara.mockpay import MockPay
from shakara.model.catalog import CatalogEntry, StaticCatalog
from shakara.model.store import CheckoutStore, create_schema

WEBHOOK_SECRET = 'test-webhook-secret'
GATEWAY_URL = 'https://gateway.test/v3'


def catalog_entries() -> List[CatalogEntry]:
    return [
        CatalogEntry(sku='TKT-GA-FRI', name='General Admission - Friday', price=50000, order=1),
        CatalogEntry(sku='TKT-VIP-SAT', name='VIP - Saturday', price=180000, order=2),
        CatalogEntry(sku='TKT-SOLD', name='Sold Out Night', price=10000, sold_out=True),
        CatalogEntry(sku='TKT-HIDDEN', name='Not On Sale', price=10000, available=False),
        CatalogEntry(sku='TKT-LIMITED', name='Limited', price=20000, inventory=5, sold=2, reserved=1),
        CatalogEntry(sku='TKT-4PK', name='4-Pack', price=150000, bundle_size=4, inventory=6),
        CatalogEntry(
            sku='TKT-ADDON-PARKING', name='Parking', price=3500, category='addon', order=2
        ),
        CatalogEntry(
            sku='TKT-ADDON-FASTLANE', name='Fast Lane', price=30000, category='addon', order=1
        ),
    ]


@pytest.fixture
def catalog() -> StaticCatalog:
    return StaticCatalog(catalog_entries())


@pytest.fixture
def database_url(tmp_path) -> str:
    return f'sqlite:///{tmp_path / "checkout.db"}'


@pytest.fixture
async def store(database_url):
    engine, SessionAsync, gated = make_async_engine(database_url)
    async with engine.begin() as conn:
        await create_schema(conn)
    yield CheckoutStore(sessions=SessionAsync, gated=gated)
    await engine.dispose()


class GatewayStub:
    """Answers transaction lookups the way the gateway's verify endpoint does."""

    def __init__(self) -> None:
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.fail_with: Optional[Exception] = None
        self.status_code = 200

    def add(self, tx_id: str, tx_ref: str, amount: Any, currency: str = 'NGN',
            status: str = 'successful') -> None:
        self.transactions[tx_id] = {
            'id': int(tx_id),
            'tx_ref': tx_ref,
            'amount': amount,
            'currency': currency,
            'status': status,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        tx_id = request.url.path.rstrip('/').split('/')[-2]
        self.calls.append(tx_id)
        if self.fail_with is not None:
            raise self.fail_with
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={'status': 'error'})
        tx = self.transactions.get(tx_id)
        if tx is None:
            return httpx.Response(404, json={'status': 'error', 'message': 'not found'})
        return httpx.Response(200, json={'status': 'success', 'data': tx})


@pytest.fixture
def gateway() -> GatewayStub:
    return GatewayStub()


@pytest.fixture
def adapter(gateway: GatewayStub) -> MockPay:
    http = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler))
    verifier = GatewayVerifier(http=http, base_url=GATEWAY_URL, secret_key='sk_test')
    return MockPay(verifier=verifier, webhook_secret=WEBHOOK_SECRET)


def signed(body: bytes, secret: str = WEBHOOK_SECRET) -> Dict[str, str]:
    return {'verif-hash': sign_payload(secret, body), 'content-type': 'application/json'}


def reservation_row(tx_ref: str = 'shakara-test-1', amount: int = 80000, **overrides) -> Dict[str, Any]:
    row = {
        'tx_ref': tx_ref,
        'email': 'ada@example.com',
        'first_name': 'Ada',
        'last_name': 'Obi',
        'phone': None,
        'lines': [
            {
                'sku': 'TKT-GA-FRI',
                'name': 'General Admission - Friday',
                'quantity': 2,
                'units': 2,
                'unit_price': 50000,
                'selected_dates': [],
            }
        ],
        'subtotal': 100000,
        'discount_code': None,
        'discount': None,
        'amount': amount,
        'currency': 'NGN',
        'created_at': 1_000.0,
        'expires_at': 10_000_000_000.0,
    }
    row.update(overrides)
    return row
