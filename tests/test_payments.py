from datetime import date

import pytest

from errors import NotFoundError, ValidationError
from payments import add_payment, delete_payment, derive_payment_status, ledger_summary


@pytest.mark.parametrize('total_paid, total_amount, expected', [
    (0, 100, 'PENDING'),
    (100, 100, 'FULLY_PAID'),
    (50, 100, 'PARTIALLY_PAID'),
    (10, None, 'FULLY_PAID'),
    (0, None, 'PENDING'),
    (120, 100, 'FULLY_PAID'),
    (10, 0, 'FULLY_PAID'),
])
def test_derive_payment_status(total_paid, total_amount, expected):
    assert derive_payment_status(total_paid, total_amount) == expected


@pytest.fixture
def priced_booking(room, make_booking):
    return make_booking(room, date(2024, 6, 6), date(2024, 6, 9), total_amount=400)


def test_payments_move_status(priced_booking):
    payment, status = add_payment(priced_booking, {'amount': 150, 'method': 'CASH', 'date': '2024-06-06'})
    assert status == 'PARTIALLY_PAID'

    _, status = add_payment(priced_booking, {'amount': 250, 'method': 'TRANSFER', 'date': '2024-06-07'})
    assert status == 'FULLY_PAID'
    assert priced_booking.payment_status == 'FULLY_PAID'

    status = delete_payment(priced_booking, payment.id)
    assert status == 'PARTIALLY_PAID'


def test_huf_payments_do_not_settle_eur_total(priced_booking):
    _, status = add_payment(priced_booking, {
        'amount': 160000, 'currency': 'HUF', 'method': 'CASH', 'date': '2024-06-06',
    })
    assert status == 'PENDING'

    summary = ledger_summary(priced_booking)
    assert summary['paid_eur'] == 0
    assert summary['paid_huf'] == 160000
    assert summary['remaining'] == 400


def test_custom_huf_price_remaining(priced_booking):
    priced_booking.has_custom_huf_price = True
    priced_booking.custom_huf_price = 150000
    add_payment(priced_booking, {'amount': 50000, 'currency': 'HUF', 'method': 'CASH', 'date': '2024-06-06'})

    assert ledger_summary(priced_booking)['remaining_huf'] == 100000


@pytest.mark.parametrize('payload', [
    {'amount': 0, 'method': 'CASH', 'date': '2024-06-06'},
    {'amount': -5, 'method': 'CASH', 'date': '2024-06-06'},
    {'amount': 10, 'method': 'CHEQUE', 'date': '2024-06-06'},
    {'amount': 10, 'method': 'CASH', 'currency': 'USD', 'date': '2024-06-06'},
    {'amount': 10, 'method': 'CASH', 'date': 'tomorrow'},
    {'method': 'CASH', 'date': '2024-06-06'},
])
def test_invalid_payments_are_rejected(priced_booking, payload):
    with pytest.raises(ValidationError):
        add_payment(priced_booking, payload)
    assert priced_booking.payments == []


def test_deleting_unknown_payment(priced_booking):
    with pytest.raises(NotFoundError):
        delete_payment(priced_booking, 12345)


def test_booking_payment_endpoints(client, priced_booking):
    response = client.post(f'/api/bookings/{priced_booking.id}/payments',
                           json={'amount': 100, 'method': 'CREDIT_CARD', 'date': '2024-06-01', 'note': 'deposit'})
    assert response.status_code == 201
    payment_id = response.get_json()['payment']['id']
    assert response.get_json()['payment_status'] == 'PARTIALLY_PAID'

    listing = client.get(f'/api/bookings/{priced_booking.id}/payments').get_json()
    assert [p['note'] for p in listing['payments']] == ['deposit']
    assert listing['summary']['remaining'] == 300

    response = client.delete(f'/api/bookings/{priced_booking.id}/payments/{payment_id}')
    assert response.get_json() == {'success': True, 'payment_status': 'PENDING'}


def test_total_change_recomputes_status(client, priced_booking):
    add_payment(priced_booking, {'amount': 200, 'method': 'CASH', 'date': '2024-06-06'})

    response = client.put(f'/api/bookings/{priced_booking.id}', json={'total_amount': 200})

    assert response.status_code == 200
    assert response.get_json()['booking']['payment_status'] == 'FULLY_PAID'


def test_client_payment_status_is_ignored(client, priced_booking):
    response = client.put(f'/api/bookings/{priced_booking.id}', json={'payment_status': 'FULLY_PAID'})
    assert response.get_json()['booking']['payment_status'] == 'PENDING'
