from decimal import Decimal

import pytest

from shakara.helpers import ct_equal, generate_tx_ref, normalize_dates, round_half_up
from shakara.helpers import same_amount
from shakara.infra import timings
from shakara.sweep import sweep_once

from conftest import reservation_row


@pytest.mark.asyncio
async def test_sweep_expires_overdue_reservations(store):
    await store.create_reservation(reservation_row('shakara-old', expires_at=1.0))
    await store.create_reservation(reservation_row('shakara-new'))

    assert await sweep_once(store) == 1
    assert await sweep_once(store) == 0
    assert (await store.get_reservation('shakara-old'))['status'] == 'expired'
    assert (await store.get_reservation('shakara-new'))['status'] == 'pending'


def test_tx_ref_shape():
    ref = generate_tx_ref()
    prefix, stamp, tail = ref.split('-')
    assert prefix == 'shakara'
    assert stamp.isalnum()
    assert len(tail) == 6
    assert generate_tx_ref() != ref


def test_amounts_compare_as_money():
    assert same_amount(80000, '80000.00')
    assert same_amount(80000.0, 80000)
    assert not same_amount(80000, '79999.99')
    assert not same_amount(80000, 'n/a')


def test_round_half_up():
    assert round_half_up(Decimal('2.5')) == 3
    assert round_half_up(Decimal('2.49')) == 2


def test_normalize_dates():
    assert normalize_dates(None) == []
    assert normalize_dates('2025-12-20,2025-12-19, ') == ['2025-12-19', '2025-12-20']


@pytest.mark.asyncio
async def test_store_calls_are_timed(store):
    timings.reset()
    await store.create_reservation(reservation_row())
    await store.promote('shakara-test-1', {'id': '1', 'amount': 80000, 'currency': 'NGN'})

    kinds = {rec['kind']: rec for rec in timings.aggregates()}
    assert kinds['store.promote']['n'] == 1
    assert kinds['store.create_reservation']['p95'] >= 0
    timings.reset()
    assert timings.aggregates() == []


def test_ct_equal():
    assert ct_equal('abc123', 'abc123')
    assert not ct_equal('abc123', 'abc124')
    assert not ct_equal('abc', 'abc123')
