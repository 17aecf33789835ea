"""
Pricing engine.

Every nightly price and every fee total in the application is computed here;
route handlers and the booking services never add prices up on their own.

A night is priced by the first rule that applies, per room type:

1. a calendar override for that date marked inactive - the night cannot be
   booked and carries no price,
2. a calendar override with a price,
3. the active date range price containing the date (weekend or weekday rate),
4. nothing - price 0 with source "none", left for staff to fix.

Fees come from the building and room type catalogs. Mandatory fees are always
charged; optional fees only when selected. Quantity is
``(nights if per_night else 1) * (guest_count if per_guest else 1)``.
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional

from flask import current_app, has_app_context

from errors import NotFoundError, ValidationError
from i18n import LocalizedText
from models import db, Room, SpecialDay
from utils import parse_int

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')

# Friday and Saturday nights
DEFAULT_WEEKEND_DAYS = frozenset({4, 5})

SOURCE_OVERRIDE = 'override'
SOURCE_DATE_RANGE = 'dateRange'
SOURCE_NONE = 'none'


def parse_weekend_days(value):
    """'fri,sat' -> frozenset({4, 5})"""
    if not value:
        return DEFAULT_WEEKEND_DAYS
    if isinstance(value, (set, frozenset, list, tuple)):
        return frozenset(int(v) for v in value)
    days = set()
    for name in value.split(','):
        name = name.strip().lower()[:3]
        if name not in WEEKDAY_NAMES:
            raise ValueError(f'Unknown weekday in WEEKEND_DAYS: {name!r}')
        days.add(WEEKDAY_NAMES.index(name))
    return frozenset(days)


def weekend_days():
    if has_app_context():
        return current_app.config.get('WEEKEND_DAYS', DEFAULT_WEEKEND_DAYS)
    return DEFAULT_WEEKEND_DAYS


def is_weekend_night(day, weekend=None):
    return day.weekday() in (weekend if weekend is not None else weekend_days())


def nights_between(check_in, check_out):
    if check_out <= check_in:
        raise ValidationError('Check-out must be after check-in')
    return (check_out - check_in).days


def stay_dates(check_in, check_out):
    """Every night of a [check_in, check_out) stay."""
    day = check_in
    while day < check_out:
        yield day
        day += timedelta(days=1)


def fee_quantity(per_night, per_guest, nights, guest_count):
    quantity = nights if per_night else 1
    if per_guest:
        quantity *= guest_count
    return quantity


# ============================================
# RESULT TYPES
# ============================================

@dataclass
class NightPrice:
    date: date
    price: float
    source: str
    is_weekend: bool
    is_inactive: bool = False

    def to_dict(self):
        return {
            'date': self.date.isoformat(),
            'day_of_week': self.date.strftime('%a'),
            'price': self.price,
            'is_weekend': self.is_weekend,
            'is_inactive': self.is_inactive,
            'source': self.source,
        }


@dataclass
class FeeLine:
    source_id: int
    origin: str
    title: str
    unit_price: float
    quantity: int
    mandatory: bool
    per_night: bool
    per_guest: bool

    @property
    def total(self):
        return self.unit_price * self.quantity

    def to_dict(self):
        return {
            'id': self.source_id,
            'origin': self.origin,
            'title': self.title,
            'price_eur': self.unit_price,
            'quantity': self.quantity,
            'total': self.total,
            'mandatory': self.mandatory,
            'per_night': self.per_night,
            'per_guest': self.per_guest,
        }


@dataclass
class StayBreakdown:
    room_type_id: int
    check_in: date
    check_out: date
    guest_count: int
    nights: int
    nightly: List[NightPrice]
    mandatory_fees: List[FeeLine]
    optional_fees: List[FeeLine] = field(default_factory=list)
    room: Optional[Room] = None

    @property
    def accommodation_total(self):
        return sum(n.price for n in self.nightly)

    @property
    def mandatory_total(self):
        return sum(f.total for f in self.mandatory_fees)

    @property
    def optional_total(self):
        return sum(f.total for f in self.optional_fees)

    @property
    def room_total(self):
        return self.accommodation_total + self.mandatory_total

    @property
    def grand_total(self):
        return self.room_total + self.optional_total

    @property
    def inactive_dates(self):
        return [n.date.isoformat() for n in self.nightly if n.is_inactive]

    @property
    def unpriced_dates(self):
        return [n.date.isoformat() for n in self.nightly if n.source == SOURCE_NONE and not n.is_inactive]

    def to_dict(self, lang=None):
        data = {
            'room_type_id': self.room_type_id,
            'check_in_date': self.check_in.isoformat(),
            'check_out_date': self.check_out.isoformat(),
            'guest_count': self.guest_count,
            'nights': self.nights,
            'nightly_breakdown': [n.to_dict() for n in self.nightly],
            'accommodation_total': self.accommodation_total,
            'mandatory_prices': [f.to_dict() for f in self.mandatory_fees],
            'mandatory_total': self.mandatory_total,
            'optional_prices': [f.to_dict() for f in self.optional_fees],
            'optional_total': self.optional_total,
            'room_total': self.room_total,
            'grand_total': self.grand_total,
            'inactive_dates': self.inactive_dates,
            'unpriced_dates': self.unpriced_dates,
        }
        if self.room is not None:
            data.update({
                'room_id': self.room.id,
                'room_name': self.room.name,
                'room_type_name': self.room.room_type.localized_name(lang),
                'building_name': self.room.room_type.building.name,
            })
        return data


@dataclass
class GroupBreakdown:
    check_in: date
    check_out: date
    nights: int
    rooms: List[StayBreakdown]

    @property
    def accommodation_total(self):
        return sum(r.accommodation_total for r in self.rooms)

    @property
    def mandatory_total(self):
        return sum(r.mandatory_total for r in self.rooms)

    @property
    def grand_total(self):
        return sum(r.room_total for r in self.rooms)

    def to_dict(self, lang=None):
        return {
            'check_in_date': self.check_in.isoformat(),
            'check_out_date': self.check_out.isoformat(),
            'nights': self.nights,
            'rooms': [r.to_dict(lang) for r in self.rooms],
            'group_accommodation_total': self.accommodation_total,
            'group_mandatory_total': self.mandatory_total,
            'group_total': self.grand_total,
        }


# ============================================
# NIGHTLY PRICES
# ============================================

class RateCalendar:
    """Overrides and date range prices of one room type, indexed for lookup by date."""

    def __init__(self, room_type, weekend=None):
        self.room_type = room_type
        self.weekend = weekend if weekend is not None else weekend_days()
        self.overrides = {o.date: o for o in room_type.calendar_overrides}
        self.ranges = sorted(room_type.date_range_prices, key=lambda r: r.start_date)

    def override_for(self, day):
        return self.overrides.get(day)

    def range_for(self, day, include_inactive=False):
        for price_range in self.ranges:
            if price_range.contains(day) and (include_inactive or not price_range.is_inactive):
                return price_range
        return None

    def price_night(self, day):
        weekend = is_weekend_night(day, self.weekend)
        override = self.override_for(day)

        if override is not None and override.is_inactive:
            return NightPrice(day, 0, SOURCE_NONE, weekend, is_inactive=True)

        if override is not None and override.price is not None:
            return NightPrice(day, float(override.price), SOURCE_OVERRIDE, weekend)

        price_range = self.range_for(day)
        if price_range is not None:
            price = price_range.weekend_price if weekend else price_range.weekday_price
            return NightPrice(day, float(price or 0), SOURCE_DATE_RANGE, weekend)

        return NightPrice(day, 0, SOURCE_NONE, weekend)

    def price_nights(self, check_in, check_out):
        return [self.price_night(day) for day in stay_dates(check_in, check_out)]


def price_night(room_type, day, weekend=None):
    return RateCalendar(room_type, weekend).price_night(day)


# ============================================
# FEES
# ============================================

def fee_catalog(room_type):
    """Building fees first, then room type fees, each in display order."""
    building_fees = sorted(room_type.building.additional_prices, key=lambda p: (p.order, p.id))
    room_type_fees = sorted(room_type.additional_prices, key=lambda p: (p.order, p.id))
    return building_fees + room_type_fees


def charge_fee(fee, nights, guest_count, lang=None):
    return FeeLine(
        source_id=fee.id,
        origin=fee.origin,
        title=LocalizedText.parse(fee.title).get(lang),
        unit_price=float(fee.price_eur or 0),
        quantity=fee_quantity(fee.per_night, fee.per_guest, nights, guest_count),
        mandatory=fee.mandatory,
        per_night=fee.per_night,
        per_guest=fee.per_guest,
    )


# ============================================
# STAYS AND GROUPS
# ============================================

def price_stay(room_type, check_in, check_out, guest_count=1, selected_fee_ids=(),
               lang=None, weekend=None, room=None):
    """Nightly breakdown plus mandatory (and selected optional) fees for one room."""
    nights = nights_between(check_in, check_out)
    if guest_count is None or guest_count < 1:
        raise ValidationError('Guest count must be at least 1')

    nightly = RateCalendar(room_type, weekend).price_nights(check_in, check_out)

    selected = set(selected_fee_ids or ())
    mandatory, optional = [], []
    for fee in fee_catalog(room_type):
        if fee.mandatory:
            mandatory.append(charge_fee(fee, nights, guest_count, lang))
        elif fee.id in selected or (fee.origin, fee.id) in selected:
            optional.append(charge_fee(fee, nights, guest_count, lang))

    breakdown = StayBreakdown(
        room_type_id=room_type.id,
        check_in=check_in,
        check_out=check_out,
        guest_count=guest_count,
        nights=nights,
        nightly=nightly,
        mandatory_fees=mandatory,
        optional_fees=optional,
        room=room,
    )
    if breakdown.unpriced_dates:
        logger.info('Room type %s has no price for %s', room_type.id, ', '.join(breakdown.unpriced_dates))
    return breakdown


def get_room(room_id):
    try:
        room = db.session.get(Room, int(room_id))
    except (TypeError, ValueError):
        room = None
    if room is None:
        raise NotFoundError(f'Room {room_id} not found', room_id=room_id)
    return room


def price_room(room_id, check_in, check_out, guest_count=1, selected_fee_ids=(), lang=None):
    room = get_room(room_id)
    return price_stay(room.room_type, check_in, check_out, guest_count,
                      selected_fee_ids=selected_fee_ids, lang=lang, room=room)


def price_group(rooms, check_in, check_out, lang=None):
    """Price every requested room over the shared group range.

    `rooms` is a list of ``{'room_id': ..., 'guest_count': ...}``. All rooms are
    resolved before any is priced, so one unknown room fails the whole call.
    """
    nights = nights_between(check_in, check_out)
    if not rooms:
        raise ValidationError('At least one room is required')

    resolved = [
        (get_room(r.get('room_id')), parse_int(r.get('guest_count'), 'guest_count', default=1, minimum=1))
        for r in rooms
    ]
    breakdowns = [
        price_stay(room.room_type, check_in, check_out, guest_count, lang=lang, room=room)
        for room, guest_count in resolved
    ]
    return GroupBreakdown(check_in=check_in, check_out=check_out, nights=nights, rooms=breakdowns)


# ============================================
# STORED BOOKINGS
# ============================================

def accommodation_total(room_type, check_in, check_out):
    return sum(n.price for n in RateCalendar(room_type).price_nights(check_in, check_out))


def stored_lines_total(booking):
    return sum(line.total for line in booking.additional_prices)


def price_booking_details(booking, lang=None):
    """Engine-computed nights for a stored booking, with its frozen fee lines."""
    room_type = booking.room.room_type
    nightly = RateCalendar(room_type).price_nights(booking.check_in_date, booking.check_out_date)
    accommodation = sum(n.price for n in nightly)

    mandatory = [line for line in booking.additional_prices if line.mandatory]
    optional = [line for line in booking.additional_prices if not line.mandatory]
    mandatory_total = sum(line.total for line in mandatory)
    optional_total = sum(line.total for line in optional)
    computed = accommodation + mandatory_total + optional_total

    return {
        'nights': booking.nights,
        'nightly_breakdown': [n.to_dict() for n in nightly],
        'accommodation_total': accommodation,
        'mandatory_prices': [line.to_dict() for line in mandatory],
        'optional_prices': [line.to_dict() for line in optional],
        'mandatory_total': mandatory_total,
        'optional_total': optional_total,
        'additional_total': mandatory_total + optional_total,
        'computed_total': computed,
        'grand_total': booking.total_amount if booking.total_amount else computed,
    }


def price_stored_group(group):
    """Accommodation from the engine plus stored fee lines, per member room."""
    rooms = []
    for booking in group.bookings:
        accommodation = accommodation_total(booking.room.room_type, group.check_in_date, group.check_out_date)
        additional = stored_lines_total(booking)
        rooms.append({
            'booking_id': booking.id,
            'room_id': booking.room_id,
            'room_name': booking.room.name,
            'guest_count': booking.guest_count,
            'accommodation_total': accommodation,
            'additional_total': additional,
            'room_total': accommodation + additional,
        })
    return {
        'nights': group.nights,
        'rooms': rooms,
        'group_accommodation_total': sum(r['accommodation_total'] for r in rooms),
        'group_additional_total': sum(r['additional_total'] for r in rooms),
        'group_total': sum(r['room_total'] for r in rooms),
    }


# ============================================
# PRICING CALENDAR
# ============================================

def special_days_by_date(first_day, last_day):
    specials = SpecialDay.query.filter(
        SpecialDay.start_date <= last_day,
        SpecialDay.end_date >= first_day,
    ).order_by(SpecialDay.start_date).all()

    labels = {}
    for special in specials:
        start = max(special.start_date, first_day)
        end = min(special.end_date, last_day)
        for day in stay_dates(start, end + timedelta(days=1)):
            labels[day] = special.name
    return labels


def pricing_calendar(room_type, year, month):
    """Effective price, minimum stay and availability for every day of a month."""
    if not 1 <= month <= 12:
        raise ValidationError('Month must be between 1 and 12')
    first_day = date(year, month, 1)
    last_day = date(year, month, calendar.monthrange(year, month)[1])

    rates = RateCalendar(room_type)
    specials = special_days_by_date(first_day, last_day)

    days = []
    for day in stay_dates(first_day, last_day + timedelta(days=1)):
        override = rates.override_for(day)
        price_range = rates.range_for(day, include_inactive=True)
        night = rates.price_night(day)

        min_nights = None
        if override is not None and override.min_nights is not None:
            min_nights = override.min_nights
        elif price_range is not None:
            min_nights = price_range.min_nights

        inactive = night.is_inactive or (
            night.source != SOURCE_OVERRIDE and price_range is not None and price_range.is_inactive
        )
        days.append({
            'date': day.isoformat(),
            'price': night.price if night.source != SOURCE_NONE else None,
            'min_nights': min_nights,
            'is_inactive': inactive,
            'source': SOURCE_OVERRIDE if night.is_inactive else night.source,
            'is_weekend': night.is_weekend,
            'special_day': specials.get(day),
        })
    return days
