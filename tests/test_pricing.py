from datetime import date

import pytest

from errors import NotFoundError, ValidationError
from models import BookingAdditionalPrice, DateRangePrice, SpecialDay, db
from pricing import (
    SOURCE_DATE_RANGE, SOURCE_NONE, SOURCE_OVERRIDE, fee_quantity, is_weekend_night,
    parse_weekend_days, price_booking_details, price_group, price_night, price_stay,
    pricing_calendar,
)


def test_weekend_nights_are_friday_and_saturday(app):
    assert is_weekend_night(date(2024, 6, 7))      # Friday
    assert is_weekend_night(date(2024, 6, 8))      # Saturday
    assert not is_weekend_night(date(2024, 6, 9))  # Sunday
    assert not is_weekend_night(date(2024, 6, 6))  # Thursday


def test_parse_weekend_days():
    assert parse_weekend_days('fri,sat') == frozenset({4, 5})
    assert parse_weekend_days('Saturday, Sunday') == frozenset({5, 6})
    assert parse_weekend_days('') == frozenset({4, 5})
    with pytest.raises(ValueError):
        parse_weekend_days('fri,funday')


@pytest.mark.parametrize('nights', [1, 2, 7, 31])
def test_breakdown_has_one_line_per_night(room_type, june_prices, nights):
    check_in = date(2024, 6, 1)
    check_out = date.fromordinal(check_in.toordinal() + nights)
    breakdown = price_stay(room_type, check_in, check_out)
    assert breakdown.nights == nights
    assert len(breakdown.nightly) == nights


def test_check_out_must_follow_check_in(room_type):
    with pytest.raises(ValidationError):
        price_stay(room_type, date(2024, 6, 6), date(2024, 6, 6))
    with pytest.raises(ValidationError):
        price_stay(room_type, date(2024, 6, 6), date(2024, 6, 5))


def test_thursday_to_sunday_stay(room_type, june_prices):
    breakdown = price_stay(room_type, date(2024, 6, 6), date(2024, 6, 9), guest_count=2)

    assert breakdown.nights == 3
    assert [n.price for n in breakdown.nightly] == [100, 150, 150]
    assert [n.is_weekend for n in breakdown.nightly] == [False, True, True]
    assert all(n.source == SOURCE_DATE_RANGE for n in breakdown.nightly)
    assert breakdown.accommodation_total == 400
    assert breakdown.room_total == 400


def test_override_price_wins_over_date_range(room_type, june_prices, make_override):
    make_override(date(2024, 6, 7), price=90)

    breakdown = price_stay(room_type, date(2024, 6, 6), date(2024, 6, 9))

    assert [n.price for n in breakdown.nightly] == [100, 90, 150]
    assert breakdown.nightly[1].source == SOURCE_OVERRIDE
    assert breakdown.accommodation_total == 340


def test_override_without_price_falls_back_to_range(room_type, june_prices, make_override):
    make_override(date(2024, 6, 7), min_nights=3)
    night = price_night(room_type, date(2024, 6, 7))
    assert (night.price, night.source) == (150, SOURCE_DATE_RANGE)


def test_inactive_override_marks_night_unbookable(room_type, june_prices, make_override):
    make_override(date(2024, 6, 7), price=90, is_inactive=True)

    breakdown = price_stay(room_type, date(2024, 6, 6), date(2024, 6, 9))

    assert breakdown.nightly[1].is_inactive
    assert breakdown.nightly[1].price == 0
    assert breakdown.inactive_dates == ['2024-06-07']


def test_missing_price_is_zero_with_source_none(room_type, june_prices):
    breakdown = price_stay(room_type, date(2024, 6, 30), date(2024, 7, 2))

    assert [n.price for n in breakdown.nightly] == [100, 0]
    assert breakdown.nightly[1].source == SOURCE_NONE
    assert breakdown.unpriced_dates == ['2024-07-01']


def test_inactive_date_range_is_not_used_for_pricing(room_type):
    db.session.add(DateRangePrice(
        room_type=room_type, start_date=date(2024, 7, 1), end_date=date(2024, 7, 31),
        weekday_price=80, weekend_price=120, is_inactive=True,
    ))
    db.session.commit()

    night = price_night(room_type, date(2024, 7, 3))
    assert (night.price, night.source) == (0, SOURCE_NONE)


def test_fee_quantity_formula():
    assert fee_quantity(True, True, nights=3, guest_count=2) == 6
    assert fee_quantity(True, False, nights=3, guest_count=2) == 3
    assert fee_quantity(False, True, nights=3, guest_count=2) == 2
    assert fee_quantity(False, False, nights=3, guest_count=2) == 1


def test_mandatory_per_night_per_guest_fee(room_type, june_prices, make_fee):
    make_fee('Tourist tax', 5, mandatory=True, per_night=True, per_guest=True)

    breakdown = price_stay(room_type, date(2024, 6, 6), date(2024, 6, 9), guest_count=2)

    [fee] = breakdown.mandatory_fees
    assert fee.quantity == 6
    assert fee.total == 30
    assert breakdown.mandatory_total == 30
    assert breakdown.room_total == 430


def test_optional_fees_only_when_selected(room_type, june_prices, make_fee):
    breakfast = make_fee('Breakfast', 10, per_night=True, per_guest=True)
    make_fee('Late checkout', 20)

    plain = price_stay(room_type, date(2024, 6, 6), date(2024, 6, 9), guest_count=2)
    assert plain.optional_fees == []
    assert plain.grand_total == 400

    selected = price_stay(room_type, date(2024, 6, 6), date(2024, 6, 9), guest_count=2,
                          selected_fee_ids=[breakfast.id])
    assert [f.title for f in selected.optional_fees] == ['Breakfast']
    assert selected.optional_total == 60
    assert selected.room_total == 400
    assert selected.grand_total == 460


def test_building_fees_come_before_room_type_fees(room_type, june_prices, make_fee):
    make_fee('Cleaning', 30, mandatory=True, order=0)
    make_fee('Parking', 8, scope='building', mandatory=True, order=5)

    breakdown = price_stay(room_type, date(2024, 6, 6), date(2024, 6, 8))

    assert [(f.origin, f.title) for f in breakdown.mandatory_fees] == [
        ('building', 'Parking'), ('roomType', 'Cleaning'),
    ]
    assert breakdown.mandatory_total == 38


def test_fee_titles_are_localized(room_type, june_prices, make_fee):
    fee = make_fee('Tourist tax', 5, mandatory=True)
    fee.title = {'en': 'Tourist tax', 'hu': 'Idegenforgalmi adó', 'de': ''}
    db.session.commit()

    assert price_stay(room_type, date(2024, 6, 6), date(2024, 6, 8), lang='hu').mandatory_fees[0].title \
        == 'Idegenforgalmi adó'
    assert price_stay(room_type, date(2024, 6, 6), date(2024, 6, 8), lang='de').mandatory_fees[0].title \
        == 'Tourist tax'


def test_price_group_sums_rooms(room_type, june_prices, make_room, make_fee):
    make_fee('Tourist tax', 5, mandatory=True, per_night=True, per_guest=True)
    first, second = make_room('Room 1'), make_room('Room 2')

    group = price_group(
        [{'room_id': first.id, 'guest_count': 2}, {'room_id': second.id, 'guest_count': 1}],
        date(2024, 6, 6), date(2024, 6, 9),
    )

    assert group.nights == 3
    assert group.accommodation_total == 800
    assert group.mandatory_total == 30 + 15
    assert group.grand_total == 845


def test_price_group_fails_on_unknown_room(room, june_prices):
    with pytest.raises(NotFoundError):
        price_group([{'room_id': room.id}, {'room_id': 999}], date(2024, 6, 6), date(2024, 6, 9))


def test_pricing_calendar_month(room_type, june_prices, make_override):
    make_override(date(2024, 6, 10), price=200, min_nights=3)
    make_override(date(2024, 6, 11), is_inactive=True)
    db.session.add(SpecialDay(name='Pentecost', start_date=date(2024, 6, 29), end_date=date(2024, 7, 1)))
    db.session.commit()

    days = {d['date']: d for d in pricing_calendar(room_type, 2024, 6)}

    assert len(days) == 30
    assert days['2024-06-06']['price'] == 100
    assert days['2024-06-07']['is_weekend']
    assert days['2024-06-10']['price'] == 200
    assert days['2024-06-10']['min_nights'] == 3
    assert days['2024-06-10']['source'] == SOURCE_OVERRIDE
    assert days['2024-06-11']['is_inactive']
    assert days['2024-06-12']['min_nights'] == 2
    assert days['2024-06-29']['special_day'] == 'Pentecost'
    assert days['2024-06-28']['special_day'] is None


def test_pricing_calendar_rejects_bad_month(room_type):
    with pytest.raises(ValidationError):
        pricing_calendar(room_type, 2024, 13)


def test_booking_details_split_lines_by_stored_flag(room, june_prices, make_booking):
    booking = make_booking(room, date(2024, 6, 6), date(2024, 6, 9), additional_prices=[
        BookingAdditionalPrice(title='Tourist tax', price_eur=5, quantity=6, mandatory=True),
        BookingAdditionalPrice(title='Breakfast', price_eur=10, quantity=6, mandatory=False),
    ])

    details = price_booking_details(booking)

    assert details['accommodation_total'] == 400
    assert [line['title'] for line in details['mandatory_prices']] == ['Tourist tax']
    assert [line['title'] for line in details['optional_prices']] == ['Breakfast']
    assert details['computed_total'] == 490
    assert details['grand_total'] == 490

    booking.total_amount = 450
    db.session.commit()
    assert price_booking_details(booking)['grand_total'] == 450
