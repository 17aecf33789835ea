"""
Availability checks guarding booking creation and date/room changes.

Stays are half-open ``[check_in, check_out)``: a guest checking out on the
day another checks in does not overlap. Date range prices are inclusive
calendar spans, so two ranges sharing an end day do overlap.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from errors import ConflictError, ValidationError
from models import db, Booking, CalendarOverride, DateRangePrice, Room
from pricing import nights_between

logger = logging.getLogger(__name__)

CANCELLED = 'CANCELLED'


@dataclass
class AvailabilityResult:
    valid: bool
    required: Optional[int] = None
    actual: Optional[int] = None
    inactive_dates: List[str] = field(default_factory=list)

    def to_dict(self):
        data = {'valid': self.valid}
        if self.required is not None:
            data['required'] = self.required
            data['actual'] = self.actual
        if self.inactive_dates:
            data['inactive_dates'] = self.inactive_dates
        return data


def stays_overlap(a_check_in, a_check_out, b_check_in, b_check_out):
    return a_check_in < b_check_out and a_check_out > b_check_in


def ranges_overlap(a_start, a_end, b_start, b_end):
    return a_start <= b_end and a_end >= b_start


def check_inactive_days(room_type_id, check_in, check_out):
    overrides = CalendarOverride.query.filter(
        CalendarOverride.room_type_id == room_type_id,
        CalendarOverride.date >= check_in,
        CalendarOverride.date < check_out,
        CalendarOverride.is_inactive.is_(True),
    ).order_by(CalendarOverride.date).all()

    if overrides:
        return AvailabilityResult(False, inactive_dates=[o.date.isoformat() for o in overrides])
    return AvailabilityResult(True)


def check_minimum_nights(room_type_id, check_in, check_out):
    """The strictest minimum stay touched by any night of the stay wins."""
    nights = nights_between(check_in, check_out)
    required = 1

    override_minimum = db.session.query(db.func.max(CalendarOverride.min_nights)).filter(
        CalendarOverride.room_type_id == room_type_id,
        CalendarOverride.date >= check_in,
        CalendarOverride.date < check_out,
        CalendarOverride.min_nights.isnot(None),
    ).scalar()
    if override_minimum:
        required = max(required, override_minimum)

    range_minimum = db.session.query(db.func.max(DateRangePrice.min_nights)).filter(
        DateRangePrice.room_type_id == room_type_id,
        DateRangePrice.start_date < check_out,
        DateRangePrice.end_date >= check_in,
    ).scalar()
    if range_minimum:
        required = max(required, range_minimum)

    if nights < required:
        return AvailabilityResult(False, required=required, actual=nights)
    return AvailabilityResult(True)


def check_overlap(room_id, check_in, check_out, exclude_booking_ids=None):
    """First non-cancelled booking of the room intersecting the stay, or None."""
    query = Booking.query.filter(
        Booking.room_id == room_id,
        Booking.status != CANCELLED,
        Booking.check_in_date < check_out,
        Booking.check_out_date > check_in,
    )
    if exclude_booking_ids:
        query = query.filter(Booking.id.notin_(list(exclude_booking_ids)))
    return query.order_by(Booking.check_in_date).first()


def find_overlapping_price_range(room_type_id, start_date, end_date, exclude_id=None):
    query = DateRangePrice.query.filter(
        DateRangePrice.room_type_id == room_type_id,
        DateRangePrice.start_date <= end_date,
        DateRangePrice.end_date >= start_date,
    )
    if exclude_id is not None:
        query = query.filter(DateRangePrice.id != exclude_id)
    return query.order_by(DateRangePrice.start_date).first()


def lock_rooms(room_ids):
    """Row-lock rooms for the rest of the transaction (no-op on SQLite)."""
    ids = sorted(set(room_ids))
    if not ids:
        return []
    return Room.query.filter(Room.id.in_(ids)).order_by(Room.id).with_for_update().all()


# ============================================
# COMBINED VALIDATION
# ============================================

def validate_price_range(room_type_id, start_date, end_date, exclude_id=None):
    if end_date < start_date:
        raise ValidationError('End date must not be before start date')
    existing = find_overlapping_price_range(room_type_id, start_date, end_date, exclude_id)
    if existing is not None:
        logger.warning('Price range %s..%s overlaps range %s on room type %s',
                       start_date, end_date, existing.id, room_type_id)
        raise ConflictError(
            'Date range overlaps with an existing range',
            conflicting_range=existing.to_dict(),
        )


def validate_stay(room, check_in, check_out, source='MANUAL', exclude_booking_ids=None):
    """Date order, online availability, inactive days, minimum stay, overlap."""
    nights_between(check_in, check_out)

    if not room.is_active and source == 'WEBSITE':
        raise ValidationError('This room is not available for online booking', room_id=room.id)

    inactive = check_inactive_days(room.room_type_id, check_in, check_out)
    if not inactive.valid:
        logger.warning('Room %s rejected: inactive dates %s', room.id, inactive.inactive_dates)
        raise ConflictError(
            f"Some dates are not available: {', '.join(inactive.inactive_dates)}",
            room_id=room.id,
            inactive_dates=inactive.inactive_dates,
        )

    minimum = check_minimum_nights(room.room_type_id, check_in, check_out)
    if not minimum.valid:
        logger.warning('Room %s rejected: minimum stay %s, requested %s', room.id, minimum.required, minimum.actual)
        raise ConflictError(
            f'Minimum stay is {minimum.required} nights (selected: {minimum.actual})',
            room_id=room.id,
            required=minimum.required,
            actual=minimum.actual,
        )

    conflict = check_overlap(room.id, check_in, check_out, exclude_booking_ids)
    if conflict is not None:
        logger.warning('Room %s rejected: overlaps booking %s', room.id, conflict.id)
        raise ConflictError(
            f'Room {room.name} is already booked for these dates',
            room_id=room.id,
            conflicting_booking_id=conflict.id,
            conflicting_check_in_date=conflict.check_in_date.isoformat(),
            conflicting_check_out_date=conflict.check_out_date.isoformat(),
        )


def check_availability(room_type_id, check_in, check_out):
    """Inactive days and minimum stay for a room type, as one result."""
    nights_between(check_in, check_out)
    inactive = check_inactive_days(room_type_id, check_in, check_out)
    minimum = check_minimum_nights(room_type_id, check_in, check_out)
    return AvailabilityResult(
        valid=inactive.valid and minimum.valid,
        required=minimum.required,
        actual=minimum.actual,
        inactive_dates=inactive.inactive_dates,
    )
