"""
Payment ledger for bookings and booking groups.

A booking and a group keep separate ledgers: a group's status comes from the
group's own payments and total, never from its member bookings. Only EUR
payments count toward the status and the remaining balance; HUF payments are
reported alongside.
"""

import logging

from errors import NotFoundError, ValidationError
from models import db, Payment, CURRENCIES, PAYMENT_METHODS
from utils import parse_choice, parse_date, parse_float

logger = logging.getLogger(__name__)


def derive_payment_status(total_paid, total_amount):
    if total_amount is None or total_amount <= 0:
        return 'FULLY_PAID' if total_paid > 0 else 'PENDING'
    if total_paid <= 0:
        return 'PENDING'
    if total_paid >= total_amount:
        return 'FULLY_PAID'
    return 'PARTIALLY_PAID'


def paid_in(payments, currency):
    return sum(p.amount for p in payments if p.currency == currency)


def refresh_payment_status(owner):
    """Re-derive and store the status of a Booking or BookingGroup."""
    status = derive_payment_status(paid_in(owner.payments, 'EUR'), owner.total_amount)
    if status != owner.payment_status:
        logger.info('%s %s payment status %s -> %s',
                    type(owner).__name__, owner.id, owner.payment_status, status)
        owner.payment_status = status
    return status


def ledger_summary(owner):
    paid_eur = paid_in(owner.payments, 'EUR')
    paid_huf = paid_in(owner.payments, 'HUF')
    remaining = (owner.total_amount or 0) - paid_eur
    summary = {
        'total_amount': owner.total_amount,
        'has_custom_huf_price': owner.has_custom_huf_price,
        'custom_huf_price': owner.custom_huf_price,
        'total_paid': paid_eur,
        'paid_eur': paid_eur,
        'paid_huf': paid_huf,
        'remaining': remaining if remaining > 0 else 0,
        'payment_status': owner.payment_status,
    }
    if owner.has_custom_huf_price and owner.custom_huf_price:
        remaining_huf = owner.custom_huf_price - paid_huf
        summary['remaining_huf'] = remaining_huf if remaining_huf > 0 else 0
    return summary


def add_payment(owner, data):
    amount = parse_float(data.get('amount'), 'amount')
    if amount <= 0:
        raise ValidationError('Amount must be greater than 0')
    method = parse_choice(data.get('method'), PAYMENT_METHODS, 'method')
    currency = parse_choice(data.get('currency') or 'EUR', CURRENCIES, 'currency')
    paid_on = parse_date(data.get('date'), 'date')

    payment = Payment(
        amount=amount,
        currency=currency,
        method=method,
        date=paid_on,
        note=data.get('note') or None,
    )
    owner.payments.append(payment)
    db.session.flush()
    status = refresh_payment_status(owner)
    db.session.commit()

    logger.info('Recorded %.2f %s payment on %s %s', amount, currency, type(owner).__name__, owner.id)
    return payment, status


def delete_payment(owner, payment_id):
    payment = next((p for p in owner.payments if p.id == payment_id), None)
    if payment is None:
        raise NotFoundError('Payment not found', payment_id=payment_id)

    owner.payments.remove(payment)
    db.session.delete(payment)
    db.session.flush()
    status = refresh_payment_status(owner)
    db.session.commit()

    logger.info('Deleted payment %s from %s %s', payment_id, type(owner).__name__, owner.id)
    return status
