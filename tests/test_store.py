import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from shakara.errors import ConflictError, TransientError

from conftest import reservation_row

EVIDENCE = {'id': '1001', 'amount': 80000, 'currency': 'NGN'}


@pytest.mark.asyncio
async def test_create_and_read_reservation(store):
    await store.create_reservation(reservation_row())

    row = await store.get_reservation('shakara-test-1')
    assert row['status'] == 'pending'
    assert row['amount'] == 80000
    assert row['lines'][0]['sku'] == 'TKT-GA-FRI'
    assert await store.get_reservation('shakara-missing') is None


@pytest.mark.asyncio
async def test_duplicate_tx_ref_is_a_conflict(store):
    await store.create_reservation(reservation_row())
    with pytest.raises(ConflictError):
        await store.create_reservation(reservation_row())


@pytest.mark.asyncio
async def test_promote_creates_exactly_one_order(store):
    await store.create_reservation(reservation_row())

    assert await store.promote('shakara-test-1', EVIDENCE, gateway='mockpay') is True
    assert await store.promote('shakara-test-1', EVIDENCE, gateway='mockpay') is False

    reservation = await store.get_reservation('shakara-test-1')
    order = await store.get_order('shakara-test-1')
    assert reservation['status'] == 'confirmed'
    assert reservation['confirmed_at'] is not None
    assert order['status'] == 'paid'
    assert order['gateway'] == 'mockpay'
    assert order['gateway_tx_id'] == '1001'
    assert order['gateway_amount'] == '80000'
    assert await store.count_orders('shakara-test-1') == 1


@pytest.mark.asyncio
async def test_concurrent_promotion_is_idempotent(store):
    await store.create_reservation(reservation_row())

    results = await asyncio.gather(*[
        store.promote('shakara-test-1', EVIDENCE) for _ in range(5)
    ])

    assert sorted(results) == [False, False, False, False, True]
    assert await store.count_orders() == 1


@pytest.mark.asyncio
async def test_promote_unknown_tx_ref(store):
    assert await store.promote('shakara-missing', EVIDENCE) is False
    assert await store.count_orders() == 0


@pytest.mark.asyncio
async def test_promote_consumes_discount_usage(store):
    await store.upsert_discounts([
        {'code': 'EARLYBIRD', 'label': 'Early Bird', 'type': 'flat', 'amount': 20000}
    ])
    await store.create_reservation(reservation_row(
        discount_code='EARLYBIRD',
        discount={'code': 'EARLYBIRD', 'valueApplied': 20000},
    ))

    await store.promote('shakara-test-1', EVIDENCE)
    await store.promote('shakara-test-1', EVIDENCE)

    rule = await store.get_discount('EARLYBIRD')
    assert rule['usage_count'] == 1
    assert await store.count_discount_uses('EARLYBIRD', 'ADA@example.com') == 1


@pytest.mark.asyncio
async def test_expire_stale_only_touches_overdue_pending(store):
    await store.create_reservation(reservation_row('shakara-old', expires_at=100.0))
    await store.create_reservation(reservation_row('shakara-new', expires_at=10_000.0))
    await store.create_reservation(reservation_row('shakara-paid', expires_at=100.0))
    await store.promote('shakara-paid', EVIDENCE)

    assert await store.expire_stale(now=500.0) == 1

    assert (await store.get_reservation('shakara-old'))['status'] == 'expired'
    assert (await store.get_reservation('shakara-new'))['status'] == 'pending'
    assert (await store.get_reservation('shakara-paid'))['status'] == 'confirmed'

    # an expired reservation can no longer be promoted
    assert await store.promote('shakara-old', EVIDENCE) is False


@pytest.mark.asyncio
async def test_upsert_discounts_normalizes_code(store):
    n = await store.upsert_discounts([
        {'code': ' vip50 ', 'label': 'VIP', 'type': 'percentage', 'amount': 50,
         'allowed_emails': ['vip@example.com']},
    ])
    assert n == 1

    rule = await store.get_discount('VIP50')
    assert rule['active'] is True
    assert rule['usage_count'] == 0
    assert rule['allowed_emails'] == ['vip@example.com']


@pytest.mark.asyncio
async def test_failed_promotion_rolls_back(store, monkeypatch):
    await store.upsert_discounts([
        {'code': 'EARLYBIRD', 'label': 'Early Bird', 'type': 'flat', 'amount': 20000}
    ])
    await store.create_reservation(reservation_row(discount_code='EARLYBIRD'))

    async def disk_failure(db, code):
        raise OperationalError('UPDATE discount_codes', {}, Exception('disk I/O error'))

    monkeypatch.setattr(store, '_consume_discount', disk_failure)

    with pytest.raises(TransientError):
        await store.promote('shakara-test-1', EVIDENCE)

    assert (await store.get_reservation('shakara-test-1'))['status'] == 'pending'
    assert await store.count_orders() == 0
    assert (await store.get_discount('EARLYBIRD'))['usage_count'] == 0

    # the redelivery goes through once storage recovers
    monkeypatch.undo()
    assert await store.promote('shakara-test-1', EVIDENCE) is True
