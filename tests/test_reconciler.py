import asyncio
from unittest.mock import AsyncMock

import orjson
import pytest

from shakara.errors import TransientError
from shakara.reconciler import WebhookReconciler

from conftest import reservation_row, signed

TX_REF = 'shakara-test-1'


def _event(tx_id=1001, tx_ref=TX_REF, event='charge.completed', **data) -> bytes:
    body = {'id': tx_id, 'tx_ref': tx_ref, 'amount': 80000, 'currency': 'NGN',
            'status': 'successful'}
    body.update(data)
    return orjson.dumps({'event': event, 'data': body})


@pytest.fixture
async def pending(store):
    await store.create_reservation(reservation_row(TX_REF, amount=80000))


@pytest.fixture
def reconciler(adapter, store) -> WebhookReconciler:
    return WebhookReconciler(adapter=adapter, store=store)


@pytest.mark.asyncio
async def test_verified_payment_confirms_reservation(pending, gateway, reconciler, store):
    gateway.add('1001', TX_REF, 80000)
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'confirmed'
    assert result.status_code == 200
    assert result.to_json() == {
        'ok': True, 'outcome': 'confirmed', 'tx_ref': TX_REF, 'order_status': 'paid',
    }
    assert (await store.get_reservation(TX_REF))['status'] == 'confirmed'
    assert await store.count_orders(TX_REF) == 1


@pytest.mark.asyncio
async def test_redelivery_is_a_no_op(pending, gateway, reconciler, store):
    gateway.add('1001', TX_REF, 80000)
    body = _event()

    first = await reconciler.handle(body, signed(body))
    second = await reconciler.handle(body, signed(body))

    assert first.outcome == 'confirmed'
    assert second.outcome == 'ignored'
    assert second.status_code == 200
    assert await store.count_orders(TX_REF) == 1


@pytest.mark.asyncio
async def test_concurrent_deliveries_create_one_order(pending, gateway, reconciler, store):
    gateway.add('1001', TX_REF, 80000)
    body = _event()

    results = await asyncio.gather(*[
        reconciler.handle(body, signed(body)) for _ in range(4)
    ])

    outcomes = sorted(r.outcome for r in results)
    assert outcomes.count('confirmed') == 1
    assert all(r.status_code == 200 for r in results)
    assert await store.count_orders(TX_REF) == 1


@pytest.mark.asyncio
async def test_invalid_signature_touches_nothing(adapter, gateway):
    store = AsyncMock()
    reconciler = WebhookReconciler(adapter=adapter, store=store)
    body = _event()

    result = await reconciler.handle(body, signed(body, secret='forged'))

    assert result.status_code == 401
    assert result.to_json()['ok'] is False
    assert gateway.calls == []
    store.get_reservation.assert_not_called()
    store.promote.assert_not_called()


@pytest.mark.asyncio
async def test_signed_garbage_is_a_bad_request(reconciler):
    body = b'{"event": '
    result = await reconciler.handle(body, signed(body))
    assert result.status_code == 400


@pytest.mark.asyncio
async def test_other_events_are_acknowledged(pending, gateway, reconciler, store):
    body = _event(event='transfer.completed')

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'ignored'
    assert result.status_code == 200
    assert gateway.calls == []
    assert (await store.get_reservation(TX_REF))['status'] == 'pending'


@pytest.mark.asyncio
async def test_missing_ids_are_acknowledged(gateway, reconciler):
    body = _event(tx_ref=None)

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'ignored'
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_webhook_amount_is_not_evidence(pending, gateway, reconciler, store):
    # the webhook claims full payment, the gateway knows better
    gateway.add('1001', TX_REF, 100)
    body = _event(amount=80000)

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'amount_mismatch'
    assert result.status_code == 200
    assert (await store.get_reservation(TX_REF))['status'] == 'pending'
    assert await store.count_orders() == 0


@pytest.mark.asyncio
async def test_currency_mismatch(pending, gateway, reconciler, store):
    gateway.add('1001', TX_REF, 80000, currency='USD')
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'amount_mismatch'
    assert await store.count_orders() == 0


@pytest.mark.asyncio
async def test_decimal_amount_matches(pending, gateway, reconciler, store):
    gateway.add('1001', TX_REF, '80000.00')
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'confirmed'


@pytest.mark.asyncio
async def test_failed_payment_is_not_verified(pending, gateway, reconciler, store):
    gateway.add('1001', TX_REF, 80000, status='failed')
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'not_verified'
    assert result.status_code == 200
    assert result.to_json()['ok'] is False
    assert (await store.get_reservation(TX_REF))['status'] == 'pending'


@pytest.mark.asyncio
async def test_gateway_outage_asks_for_redelivery(pending, gateway, reconciler, store):
    gateway.status_code = 503
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'retry'
    assert result.status_code == 503
    assert (await store.get_reservation(TX_REF))['status'] == 'pending'

    # the redelivery succeeds once the gateway is back
    gateway.status_code = 200
    gateway.add('1001', TX_REF, 80000)
    again = await reconciler.handle(body, signed(body))
    assert again.outcome == 'confirmed'


@pytest.mark.asyncio
async def test_transaction_for_another_reference(pending, gateway, reconciler, store):
    gateway.add('1001', 'shakara-other', 80000)
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'conflict'
    assert await store.count_orders() == 0


@pytest.mark.asyncio
async def test_unknown_reservation_is_ignored(gateway, reconciler, store):
    gateway.add('1001', TX_REF, 80000)
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'ignored'
    assert await store.count_orders() == 0


@pytest.mark.asyncio
async def test_expired_reservation_is_not_promoted(gateway, reconciler, store):
    await store.create_reservation(reservation_row(TX_REF, expires_at=100.0))
    await store.expire_stale(now=500.0)
    gateway.add('1001', TX_REF, 80000)
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'ignored'
    assert result.body == {'status': 'expired'}
    assert await store.count_orders() == 0


@pytest.mark.asyncio
async def test_storage_failure_during_promotion(adapter, gateway):
    gateway.add('1001', TX_REF, 80000)
    store = AsyncMock()
    store.get_reservation.return_value = {
        'tx_ref': TX_REF, 'status': 'pending', 'amount': 80000, 'currency': 'NGN',
    }
    store.promote.side_effect = TransientError('disk full')
    reconciler = WebhookReconciler(adapter=adapter, store=store)
    body = _event()

    result = await reconciler.handle(body, signed(body))

    assert result.outcome == 'retry'
    assert result.status_code == 503


@pytest.mark.asyncio
async def test_discount_usage_is_consumed_once(gateway, reconciler, store):
    await store.upsert_discounts([
        {'code': 'EARLYBIRD', 'label': 'Early Bird', 'type': 'flat', 'amount': 20000}
    ])
    await store.create_reservation(reservation_row(
        TX_REF, discount_code='EARLYBIRD',
        discount={'code': 'EARLYBIRD', 'valueApplied': 20000},
    ))
    gateway.add('1001', TX_REF, 80000)
    body = _event()

    await reconciler.handle(body, signed(body))
    await reconciler.handle(body, signed(body))

    assert (await store.get_discount('EARLYBIRD'))['usage_count'] == 1
