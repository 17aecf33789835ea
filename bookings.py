"""
Booking aggregator.

Creates and edits standalone bookings and multi-room booking groups. Every
write that depends on a room being free runs as one transaction: the rooms
are row-locked, all checks run, and only then are rows added, so a failed
check never leaves part of a group behind.

Listing goes through Reservation, a tagged union over the two shapes a
reservation can take (a lone Booking, or a BookingGroup of two or more), so
nights, guest totals, sorting and pagination are computed one way.
"""

import logging
import math
from abc import ABC, abstractmethod
from datetime import date, datetime

from availability import check_overlap, lock_rooms, validate_stay
from errors import ConflictError, NotFoundError, ValidationError
from models import (
    atomic, db, Booking, BookingAdditionalPrice, BookingGroup, Building, Room, RoomType,
    BOOKING_SOURCES, BOOKING_STATUSES,
)
from payments import refresh_payment_status
from pricing import accommodation_total, get_room, price_stay, price_stored_group
from utils import (
    parse_amount, parse_bool, parse_choice, parse_date, parse_date_range, parse_float,
    parse_int, require_fields,
)

logger = logging.getLogger(__name__)

GUEST_FIELDS = ('guest_name', 'guest_email', 'guest_phone', 'arrival_time')


def get_booking(booking_id):
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError('Booking not found', booking_id=booking_id)
    return booking


def get_group(group_id):
    group = db.session.get(BookingGroup, group_id)
    if group is None:
        raise NotFoundError('Booking group not found', group_id=group_id)
    return group


# ============================================
# ADDITIONAL PRICE LINES
# ============================================

def build_lines(items):
    if not isinstance(items, list):
        raise ValidationError('additional_prices must be a list')
    lines = []
    for item in items:
        if not isinstance(item, dict) or not item.get('title'):
            raise ValidationError('Each additional price needs a title')
        lines.append(BookingAdditionalPrice(
            title=str(item['title']),
            price_eur=parse_float(item.get('price_eur'), 'price_eur', minimum=0),
            quantity=parse_int(item.get('quantity'), 'quantity', default=1, minimum=1),
            mandatory=parse_bool(item.get('mandatory', False)),
            origin_type=item.get('origin_type') or item.get('origin'),
            origin_id=item.get('origin_id'),
        ))
    return lines


def mandatory_lines(room, check_in, check_out, guest_count, lang=None):
    """Freeze the mandatory catalog fees of a stay as booking lines."""
    breakdown = price_stay(room.room_type, check_in, check_out, guest_count, lang=lang)
    return [
        BookingAdditionalPrice(
            title=fee.title,
            price_eur=fee.unit_price,
            quantity=fee.quantity,
            mandatory=True,
            origin_type=fee.origin,
            origin_id=fee.source_id,
        )
        for fee in breakdown.mandatory_fees
    ]


def replace_additional_prices(booking, items):
    with atomic():
        booking.additional_prices = build_lines(items)
    return booking


# ============================================
# STANDALONE BOOKINGS
# ============================================

def create_booking(data, lang=None):
    require_fields(data, 'room_id', 'guest_name', 'check_in_date', 'check_out_date', 'source')
    check_in, check_out = parse_date_range(data['check_in_date'], data['check_out_date'])
    source = parse_choice(data['source'], BOOKING_SOURCES, 'source')
    status = parse_choice(data.get('status') or 'INCOMING', BOOKING_STATUSES, 'status')
    guest_count = parse_int(data.get('guest_count'), 'guest_count', default=1, minimum=1)
    room = get_room(data['room_id'])

    with atomic():
        lock_rooms([room.id])
        validate_stay(room, check_in, check_out, source)

        if 'additional_prices' in data:
            lines = build_lines(data['additional_prices'])
        else:
            lines = mandatory_lines(room, check_in, check_out, guest_count, lang)

        booking = Booking(
            room=room,
            source=source,
            guest_name=data['guest_name'],
            guest_email=data.get('guest_email') or None,
            guest_phone=data.get('guest_phone') or None,
            guest_count=guest_count,
            check_in_date=check_in,
            check_out_date=check_out,
            arrival_time=data.get('arrival_time') or None,
            status=status,
            payment_status='PENDING',
            total_amount=parse_amount(data.get('total_amount')),
            has_custom_huf_price=parse_bool(data.get('has_custom_huf_price', False)),
            custom_huf_price=parse_amount(data.get('custom_huf_price'), 'custom_huf_price'),
            notes=data.get('notes') or None,
            additional_prices=lines,
        )
        db.session.add(booking)

    logger.info('Created booking %s for room %s (%s - %s)', booking.id, room.id, check_in, check_out)
    return booking


def update_booking(booking, data):
    if 'guest_name' in data:
        require_fields(data, 'guest_name')
    room_changed = 'room_id' in data and data['room_id'] not in (None, '') and \
        parse_int(data['room_id'], 'room_id') != booking.room_id
    check_in = parse_date(data['check_in_date'], 'check_in_date') if 'check_in_date' in data else booking.check_in_date
    check_out = parse_date(data['check_out_date'], 'check_out_date') if 'check_out_date' in data else booking.check_out_date
    if check_out <= check_in:
        raise ValidationError('Check-out must be after check-in')
    dates_changed = (check_in, check_out) != (booking.check_in_date, booking.check_out_date)

    if booking.group_id is not None and dates_changed:
        raise ValidationError('Dates of a grouped booking are changed on its booking group')

    room = get_room(data['room_id']) if room_changed else booking.room
    source = parse_choice(data['source'], BOOKING_SOURCES, 'source') if 'source' in data else booking.source
    status = parse_choice(data['status'], BOOKING_STATUSES, 'status') if 'status' in data else booking.status
    reactivated = booking.status == 'CANCELLED' and status != 'CANCELLED'

    with atomic():
        if room_changed or dates_changed or reactivated:
            lock_rooms([room.id])
            validate_stay(room, check_in, check_out, source, exclude_booking_ids=[booking.id])
            booking.room = room
            booking.check_in_date = check_in
            booking.check_out_date = check_out

        booking.source = source
        for key in GUEST_FIELDS + ('notes',):
            if key in data:
                setattr(booking, key, data[key] or None)
        if 'guest_count' in data:
            booking.guest_count = parse_int(data['guest_count'], 'guest_count', minimum=1)
        booking.status = status
        if 'has_custom_huf_price' in data:
            booking.has_custom_huf_price = parse_bool(data['has_custom_huf_price'])
        if 'custom_huf_price' in data:
            booking.custom_huf_price = parse_amount(data['custom_huf_price'], 'custom_huf_price')
        if 'additional_prices' in data:
            booking.additional_prices = build_lines(data['additional_prices'])
        if 'total_amount' in data:
            booking.total_amount = parse_amount(data['total_amount'])
            refresh_payment_status(booking)

    logger.info('Updated booking %s', booking.id)
    return booking


def delete_booking(booking):
    if booking.group_id is not None:
        return remove_room_from_group(booking.group, booking.id)
    booking_id = booking.id
    with atomic():
        db.session.delete(booking)
    logger.info('Deleted booking %s', booking_id)
    return {'success': True}


# ============================================
# BOOKING GROUPS
# ============================================

def _parse_group_rooms(rooms):
    if not isinstance(rooms, list) or len(rooms) < 2:
        raise ValidationError('A booking group requires at least 2 rooms')

    parsed = []
    seen = set()
    for entry in rooms:
        if not isinstance(entry, dict) or entry.get('room_id') in (None, ''):
            raise ValidationError('Each room must have a room_id')
        room = get_room(entry['room_id'])
        if room.id in seen:
            raise ValidationError(f'Room {room.name} is listed twice', room_id=room.id)
        seen.add(room.id)
        parsed.append((room, entry))
    return parsed


def create_group(data, lang=None):
    require_fields(data, 'guest_name', 'check_in_date', 'check_out_date')
    check_in, check_out = parse_date_range(data['check_in_date'], data['check_out_date'])
    source = parse_choice(data.get('source') or 'MANUAL', BOOKING_SOURCES, 'source')
    status = parse_choice(data.get('status') or 'INCOMING', BOOKING_STATUSES, 'status')
    rooms = _parse_group_rooms(data.get('rooms'))

    with atomic():
        lock_rooms([room.id for room, _ in rooms])

        # every room is checked before any row is created
        for room, _ in rooms:
            validate_stay(room, check_in, check_out, source)

        group = BookingGroup(
            guest_name=data['guest_name'],
            guest_email=data.get('guest_email') or None,
            guest_phone=data.get('guest_phone') or None,
            source=source,
            check_in_date=check_in,
            check_out_date=check_out,
            arrival_time=data.get('arrival_time') or None,
            status=status,
            payment_status='PENDING',
            has_custom_huf_price=parse_bool(data.get('has_custom_huf_price', False)),
            custom_huf_price=parse_amount(data.get('custom_huf_price'), 'custom_huf_price'),
            notes=data.get('notes') or None,
        )

        room_totals = 0
        for room, entry in rooms:
            guest_count = parse_int(entry.get('guest_count'), 'guest_count', default=1, minimum=1)
            if 'additional_prices' in entry:
                lines = build_lines(entry['additional_prices'])
            else:
                lines = mandatory_lines(room, check_in, check_out, guest_count, lang)
            room_total = parse_amount(entry.get('total_amount'))
            room_totals += room_total or 0
            group.bookings.append(Booking(
                room=room,
                guest_count=guest_count,
                guest_name=group.guest_name,
                guest_email=group.guest_email,
                guest_phone=group.guest_phone,
                source=source,
                check_in_date=check_in,
                check_out_date=check_out,
                arrival_time=group.arrival_time,
                status=status,
                payment_status='PENDING',
                total_amount=room_total,
                additional_prices=lines,
            ))

        if data.get('total_amount') not in (None, ''):
            group.total_amount = parse_amount(data['total_amount'])
        else:
            group.total_amount = room_totals or None
        db.session.add(group)

    logger.info('Created booking group %s with %d rooms (%s - %s)',
                group.id, len(group.bookings), check_in, check_out)
    return group


def update_group(group, data):
    if 'guest_name' in data:
        require_fields(data, 'guest_name')
    check_in = parse_date(data['check_in_date'], 'check_in_date') if 'check_in_date' in data else group.check_in_date
    check_out = parse_date(data['check_out_date'], 'check_out_date') if 'check_out_date' in data else group.check_out_date
    if check_out <= check_in:
        raise ValidationError('Check-out must be after check-in')
    dates_changed = (check_in, check_out) != (group.check_in_date, group.check_out_date)
    source = parse_choice(data['source'], BOOKING_SOURCES, 'source') if 'source' in data else group.source
    status = parse_choice(data['status'], BOOKING_STATUSES, 'status') if 'status' in data else group.status
    reactivated = group.status == 'CANCELLED' and status != 'CANCELLED'

    with atomic():
        if dates_changed or reactivated:
            member_ids = [b.id for b in group.bookings]
            lock_rooms([b.room_id for b in group.bookings])
            # all members are checked before anything is written
            for booking in group.bookings:
                if reactivated:
                    validate_stay(booking.room, check_in, check_out, source, exclude_booking_ids=member_ids)
                    continue
                conflict = check_overlap(booking.room_id, check_in, check_out, member_ids)
                if conflict is not None:
                    logger.warning('Group %s date change rejected: room %s overlaps booking %s',
                                   group.id, booking.room_id, conflict.id)
                    raise ConflictError(
                        'Date change conflicts with existing booking in one of the rooms',
                        room_id=booking.room_id,
                        conflicting_booking_id=conflict.id,
                    )
            group.check_in_date = check_in
            group.check_out_date = check_out

        group.source = source
        group.status = status
        for key in GUEST_FIELDS + ('notes',):
            if key in data:
                setattr(group, key, data[key] or None)
        if 'has_custom_huf_price' in data:
            group.has_custom_huf_price = parse_bool(data['has_custom_huf_price'])
        if 'custom_huf_price' in data:
            group.custom_huf_price = parse_amount(data['custom_huf_price'], 'custom_huf_price')

        # group identity is mirrored down to every member
        mirrored = [key for key in GUEST_FIELDS + ('source', 'status') if key in data]
        for booking in group.bookings:
            if dates_changed:
                booking.check_in_date = check_in
                booking.check_out_date = check_out
            for key in mirrored:
                setattr(booking, key, getattr(group, key))

        if 'total_amount' in data:
            group.total_amount = parse_amount(data['total_amount'])
            refresh_payment_status(group)

    logger.info('Updated booking group %s', group.id)
    return group


def delete_group(group):
    group_id = group.id
    with atomic():
        db.session.delete(group)
    logger.info('Deleted booking group %s', group_id)


def add_room_to_group(group, data, lang=None):
    require_fields(data, 'room_id')
    room = get_room(data['room_id'])
    if any(b.room_id == room.id for b in group.bookings):
        raise ValidationError('Room is already in this group', room_id=room.id)
    guest_count = parse_int(data.get('guest_count'), 'guest_count', default=1, minimum=1)
    room_total = parse_amount(data.get('total_amount'))

    with atomic():
        lock_rooms([room.id])
        validate_stay(room, group.check_in_date, group.check_out_date, group.source)

        if 'additional_prices' in data:
            lines = build_lines(data['additional_prices'])
        else:
            lines = mandatory_lines(room, group.check_in_date, group.check_out_date, guest_count, lang)

        booking = Booking(
            room=room,
            guest_count=guest_count,
            guest_name=group.guest_name,
            guest_email=group.guest_email,
            guest_phone=group.guest_phone,
            source=group.source,
            check_in_date=group.check_in_date,
            check_out_date=group.check_out_date,
            arrival_time=group.arrival_time,
            status=group.status,
            payment_status='PENDING',
            total_amount=room_total,
            additional_prices=lines,
        )
        group.bookings.append(booking)

        if room_total:
            group.total_amount = (group.total_amount or 0) + room_total
            refresh_payment_status(group)

    logger.info('Added room %s to booking group %s', room.id, group.id)
    return booking


def _group_member(group, booking_id):
    booking_id = parse_int(booking_id, 'booking_id')
    booking = next((b for b in group.bookings if b.id == booking_id), None)
    if booking is None:
        raise NotFoundError('Booking not found in this group', booking_id=booking_id)
    return booking


def update_room_in_group(group, data):
    require_fields(data, 'booking_id')
    booking = _group_member(group, data['booking_id'])

    with atomic():
        if data.get('room_id') not in (None, ''):
            room = get_room(data['room_id'])
            if room.id != booking.room_id:
                if any(b.room_id == room.id for b in group.bookings if b.id != booking.id):
                    raise ValidationError('Room is already in this group', room_id=room.id)
                lock_rooms([room.id])
                conflict = check_overlap(room.id, group.check_in_date, group.check_out_date, [booking.id])
                if conflict is not None:
                    raise ConflictError(
                        f'Room {room.name} is already booked for these dates',
                        room_id=room.id,
                        conflicting_booking_id=conflict.id,
                    )
                booking.room = room

        if 'guest_count' in data:
            booking.guest_count = parse_int(data['guest_count'], 'guest_count', minimum=1)
        if 'additional_prices' in data:
            booking.additional_prices = build_lines(data['additional_prices'] or [])

    logger.info('Updated booking %s in group %s', booking.id, group.id)
    return booking


def remove_room_from_group(group, booking_id):
    """Drop a member. A group left with one room dissolves into a standalone booking."""
    booking = _group_member(group, booking_id)
    booking_id, group_id = booking.id, group.id

    with atomic():
        if len(group.bookings) <= 2:
            remaining = next((b for b in group.bookings if b.id != booking.id), None)
            if remaining is not None:
                for payment in list(group.payments):
                    remaining.payments.append(payment)
                    payment.group = None
                remaining.group = None
                remaining.has_custom_huf_price = group.has_custom_huf_price
                remaining.custom_huf_price = group.custom_huf_price
            db.session.delete(booking)
            db.session.delete(group)
            db.session.flush()
            if remaining is not None:
                refresh_payment_status(remaining)
            result = {
                'success': True,
                'dissolved': True,
                'standalone_booking_id': remaining.id if remaining is not None else None,
            }
        else:
            removed_amount = booking.total_amount or 0
            group.bookings.remove(booking)
            db.session.delete(booking)
            new_total = (group.total_amount or 0) - removed_amount
            group.total_amount = new_total if new_total > 0 else None
            refresh_payment_status(group)
            result = {'success': True, 'dissolved': False}

    logger.info('Removed booking %s from group %s (dissolved=%s)', booking_id, group_id, result['dissolved'])
    return result


def recalculate_member_total(group, booking_id):
    """Re-price one member from the engine plus its stored lines, then the group total."""
    booking = _group_member(group, booking_id)

    with atomic():
        room_total = accommodation_total(booking.room.room_type, group.check_in_date, group.check_out_date) + \
            sum(line.total for line in booking.additional_prices)
        booking.total_amount = room_total if room_total > 0 else None

        group_total = price_stored_group(group)['group_total']
        group.total_amount = group_total if group_total > 0 else None
        refresh_payment_status(group)

    return {'room_total': room_total, 'group_total': group_total}


# ============================================
# TIMELINE
# ============================================

def booking_timeline(start, end, building_id=None, lang=None):
    """
    Occupancy view for a window: every room, nested under its building and
    room type, with the non-cancelled bookings that touch [start, end].
    """
    if end < start:
        raise ValidationError('End date must not be before start date')

    query = Building.query
    if building_id is not None:
        query = query.filter(Building.id == building_id)
    buildings = query.order_by(Building.name).all()

    tree = []
    room_ids = []
    for building in buildings:
        room_types = []
        for room_type in sorted(building.room_types, key=lambda rt: rt.localized_name(lang).lower()):
            rooms = sorted(room_type.rooms, key=lambda r: r.name.lower())
            room_ids.extend(r.id for r in rooms)
            room_types.append({
                'id': room_type.id,
                'name': room_type.localized_name(lang),
                'capacity': room_type.capacity,
                'rooms': [{'id': r.id, 'name': r.name, 'is_active': r.is_active} for r in rooms],
            })
        tree.append({'id': building.id, 'name': building.name, 'room_types': room_types})

    bookings = []
    if room_ids:
        bookings = Booking.query.filter(
            Booking.room_id.in_(room_ids),
            Booking.status != 'CANCELLED',
            Booking.check_in_date <= end,
            Booking.check_out_date >= start,
        ).order_by(Booking.check_in_date, Booking.id).all()

    by_room = {}
    for booking in bookings:
        by_room.setdefault(str(booking.room_id), []).append(booking.id)

    return {
        'buildings': tree,
        'bookings': [b.to_dict() for b in bookings],
        'bookings_by_room': by_room,
        'date_range': {'start': start.isoformat(), 'end': end.isoformat()},
    }


# ============================================
# UNIFIED RESERVATION LIST
# ============================================

class Reservation(ABC):
    """A standalone booking or a booking group, seen through one shape."""
    kind = None

    def __init__(self, record):
        self.record = record

    @property
    def id(self):
        return self.record.id

    @property
    def guest_name(self):
        return self.record.guest_name

    @property
    def check_in_date(self):
        return self.record.check_in_date

    @property
    def check_out_date(self):
        return self.record.check_out_date

    @property
    def nights(self):
        return (self.check_out_date - self.check_in_date).days

    @property
    def total_amount(self):
        return self.record.total_amount

    @property
    def created_at(self):
        return self.record.created_at

    @property
    @abstractmethod
    def total_guests(self):
        """Guests across every room of the reservation."""

    @property
    @abstractmethod
    def room_count(self):
        """Number of rooms held."""

    @abstractmethod
    def members(self):
        """The Booking rows behind the reservation."""

    def to_dict(self):
        record = self.record
        return {
            'kind': self.kind,
            'id': record.id,
            'guest_name': record.guest_name,
            'guest_email': record.guest_email,
            'guest_phone': record.guest_phone,
            'source': record.source,
            'status': record.status,
            'payment_status': record.payment_status,
            'check_in_date': record.check_in_date.isoformat(),
            'check_out_date': record.check_out_date.isoformat(),
            'nights': self.nights,
            'total_guests': self.total_guests,
            'room_count': self.room_count,
            'total_amount': record.total_amount,
            'rooms': [
                {'booking_id': b.id, 'room_id': b.room_id, 'room_name': b.room.name, 'guest_count': b.guest_count}
                for b in self.members()
            ],
            'created_at': record.created_at.isoformat() if record.created_at else None,
        }


class StandaloneReservation(Reservation):
    kind = 'booking'

    @property
    def total_guests(self):
        return self.record.guest_count

    @property
    def room_count(self):
        return 1

    def members(self):
        return [self.record]


class GroupReservation(Reservation):
    kind = 'group'

    @property
    def total_guests(self):
        return sum(b.guest_count for b in self.record.bookings)

    @property
    def room_count(self):
        return len(self.record.bookings)

    def members(self):
        return list(self.record.bookings)


def as_reservation(record):
    if isinstance(record, BookingGroup):
        return GroupReservation(record)
    if record.group_id is not None:
        return GroupReservation(record.group)
    return StandaloneReservation(record)


SORT_KEYS = {
    'check_in': lambda r: r.check_in_date,
    'guest_name': lambda r: (r.guest_name or '').lower(),
    'total_guests': lambda r: r.total_guests,
    'total_amount': lambda r: r.total_amount or 0,
    'created_at': lambda r: r.created_at or datetime.min,
}


def _apply_filters(query, model, tab, source, guest_name, start, end, today):
    if tab == 'upcoming':
        query = query.filter(model.check_in_date >= today, model.status != 'CANCELLED')
    elif tab == 'past':
        query = query.filter(model.check_out_date < today)
    if source:
        query = query.filter(model.source == source)
    if guest_name:
        query = query.filter(model.guest_name.ilike(f'%{guest_name}%'))
    if start and end:
        query = query.filter(model.check_in_date <= end, model.check_out_date >= start)
    elif start:
        query = query.filter(model.check_in_date >= start)
    elif end:
        query = query.filter(model.check_out_date <= end)
    return query


def list_reservations(tab='all', building_id=None, room_type_id=None, room_id=None, source=None,
                      guest_name=None, start=None, end=None, sort_by=None, sort_order=None,
                      page=1, limit=20, today=None):
    today = today or date.today()
    if tab not in ('all', 'upcoming', 'past'):
        raise ValidationError(f'Invalid tab: {tab}')
    if sort_by is not None and sort_by not in SORT_KEYS:
        raise ValidationError(f'Invalid sort_by: {sort_by}', allowed=sorted(SORT_KEYS))
    page = max(page, 1)
    limit = max(limit, 1)

    room_filter = None
    if room_id is not None:
        room_filter = Booking.room_id == room_id
    elif room_type_id is not None:
        room_filter = Booking.room.has(Room.room_type_id == room_type_id)
    elif building_id is not None:
        room_filter = Booking.room.has(Room.room_type.has(RoomType.building_id == building_id))

    bookings = _apply_filters(Booking.query.filter(Booking.group_id.is_(None)), Booking,
                              tab, source, guest_name, start, end, today)
    groups = _apply_filters(BookingGroup.query, BookingGroup, tab, source, guest_name, start, end, today)
    if room_filter is not None:
        bookings = bookings.filter(room_filter)
        groups = groups.filter(BookingGroup.bookings.any(room_filter))

    reservations = [as_reservation(record) for record in bookings.all() + groups.all()]

    if sort_by is None:
        sort_by = 'check_in'
        descending = tab == 'past'
    else:
        descending = sort_order == 'desc'
    key = SORT_KEYS[sort_by]
    reservations.sort(key=lambda r: (key(r), r.kind, r.id), reverse=descending)

    total = len(reservations)
    total_pages = math.ceil(total / limit) if total else 0
    window = reservations[(page - 1) * limit:page * limit]
    return {
        'reservations': [r.to_dict() for r in window],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'total_pages': total_pages,
            'has_more': page < total_pages,
        },
    }
