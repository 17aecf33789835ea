"""
Reservation routes: standalone bookings, booking groups, their payment
ledgers, price calculation and the unified reservation list.
"""

from flask import Blueprint, current_app, jsonify, request

import bookings as service
from errors import ValidationError
from models import BookingGroup, BOOKING_SOURCES
from payments import add_payment, delete_payment, ledger_summary
from pricing import price_booking_details, price_group, price_room, price_stored_group
from utils import (
    get_json, parse_choice, parse_date, parse_date_range, parse_int, parse_optional_date, request_lang,
    require_fields,
)

bp = Blueprint('bookings', __name__)


def parse_selected_fees(values):
    """Fee ids, or {"origin": ..., "id": ...} objects when ids may clash across catalogs."""
    if values in (None, ''):
        return []
    if not isinstance(values, list):
        raise ValidationError('selected_additional_prices must be a list')
    selected = []
    for value in values:
        if isinstance(value, dict):
            selected.append((value.get('origin'), parse_int(value.get('id'), 'id')))
        else:
            selected.append(parse_int(value, 'selected_additional_prices'))
    return selected


# ============================================
# RESERVATION LIST
# ============================================

@bp.route('/reservations')
def list_reservations():
    """Standalone bookings and booking groups, filtered, sorted and paginated together"""
    args = request.args
    source = args.get('source') or None
    if source:
        parse_choice(source, BOOKING_SOURCES, 'source')

    result = service.list_reservations(
        tab=args.get('tab', 'all'),
        building_id=parse_int(args['building_id'], 'building_id') if args.get('building_id') else None,
        room_type_id=parse_int(args['room_type_id'], 'room_type_id') if args.get('room_type_id') else None,
        room_id=parse_int(args['room_id'], 'room_id') if args.get('room_id') else None,
        source=source,
        guest_name=args.get('guest_name') or None,
        start=parse_optional_date(args.get('start_date'), 'start_date'),
        end=parse_optional_date(args.get('end_date'), 'end_date'),
        sort_by=args.get('sort_by') or None,
        sort_order=args.get('sort_order') or None,
        page=parse_int(args.get('page'), 'page', default=1, minimum=1),
        limit=parse_int(args.get('limit'), 'limit', default=current_app.config['PAGE_SIZE'], minimum=1),
    )
    return jsonify(result)


@bp.route('/bookings/timeline')
def get_booking_timeline():
    """Rooms by building and room type with the bookings inside a date window"""
    args = request.args
    require_fields(args, 'start_date', 'end_date')
    building_id = parse_int(args['building_id'], 'building_id') if args.get('building_id') else None
    return jsonify(service.booking_timeline(
        parse_date(args['start_date'], 'start_date'),
        parse_date(args['end_date'], 'end_date'),
        building_id=building_id,
        lang=request_lang(),
    ))


# ============================================
# STANDALONE BOOKINGS
# ============================================

@bp.route('/bookings/calculate-price', methods=['POST'])
def calculate_booking_price():
    """Price a single room stay without saving anything"""
    data = get_json()
    require_fields(data, 'room_id', 'check_in_date', 'check_out_date')
    check_in, check_out = parse_date_range(data['check_in_date'], data['check_out_date'])
    lang = request_lang()

    breakdown = price_room(
        data['room_id'], check_in, check_out,
        guest_count=parse_int(data.get('guest_count'), 'guest_count', default=1, minimum=1),
        selected_fee_ids=parse_selected_fees(data.get('selected_additional_prices')),
        lang=lang,
    )
    return jsonify(breakdown.to_dict(lang))


@bp.route('/bookings', methods=['POST'])
def create_booking():
    """Create a standalone booking after the stay validation passes"""
    booking = service.create_booking(get_json(), request_lang())
    return jsonify({'success': True, 'booking': booking.to_dict()}), 201


@bp.route('/bookings/<int:booking_id>')
def get_booking(booking_id):
    """Booking with its payments and ledger summary"""
    booking = service.get_booking(booking_id)
    data = booking.to_dict()
    data['payments'] = [p.to_dict() for p in booking.payments]
    data['ledger'] = ledger_summary(booking)
    return jsonify(data)


@bp.route('/bookings/<int:booking_id>/details')
def get_booking_details(booking_id):
    """Stored booking with nights re-priced by the engine and its fee lines"""
    booking = service.get_booking(booking_id)
    lang = request_lang()
    data = booking.to_dict()
    data['room_type_name'] = booking.room.room_type.localized_name(lang)
    data['building_name'] = booking.room.room_type.building.name
    data['pricing'] = price_booking_details(booking, lang)
    data['ledger'] = ledger_summary(booking)
    return jsonify(data)


@bp.route('/bookings/<int:booking_id>', methods=['PUT'])
def update_booking(booking_id):
    """Update a booking; room, date and reactivation changes are re-validated"""
    booking = service.update_booking(service.get_booking(booking_id), get_json())
    return jsonify({'success': True, 'booking': booking.to_dict()})


@bp.route('/bookings/<int:booking_id>', methods=['DELETE'])
def delete_booking(booking_id):
    """Delete a booking; a grouped booking leaves its group"""
    result = service.delete_booking(service.get_booking(booking_id))
    return jsonify(result)


@bp.route('/bookings/<int:booking_id>/additional-prices', methods=['PUT'])
def replace_additional_prices(booking_id):
    """Replace all fee lines of a booking"""
    data = get_json()
    if 'additional_prices' not in data:
        raise ValidationError('Missing field: additional_prices', field='additional_prices')
    booking = service.replace_additional_prices(service.get_booking(booking_id), data['additional_prices'])
    return jsonify({
        'success': True,
        'additional_prices': [line.to_dict() for line in booking.additional_prices],
    })


@bp.route('/bookings/<int:booking_id>/payments')
def list_booking_payments(booking_id):
    """Payments of a booking and the ledger summary"""
    booking = service.get_booking(booking_id)
    return jsonify({
        'payments': [p.to_dict() for p in booking.payments],
        'summary': ledger_summary(booking),
    })


@bp.route('/bookings/<int:booking_id>/payments', methods=['POST'])
def create_booking_payment(booking_id):
    """Record a payment and recompute the payment status"""
    booking = service.get_booking(booking_id)
    payment, status = add_payment(booking, get_json())
    return jsonify({'success': True, 'payment': payment.to_dict(), 'payment_status': status}), 201


@bp.route('/bookings/<int:booking_id>/payments/<int:payment_id>', methods=['DELETE'])
def delete_booking_payment(booking_id, payment_id):
    """Remove a payment and recompute the payment status"""
    status = delete_payment(service.get_booking(booking_id), payment_id)
    return jsonify({'success': True, 'payment_status': status})


# ============================================
# BOOKING GROUPS
# ============================================

@bp.route('/booking-groups/calculate-price', methods=['POST'])
def calculate_group_price():
    """Price several rooms for the same stay without saving anything"""
    data = get_json()
    require_fields(data, 'check_in_date', 'check_out_date')
    check_in, check_out = parse_date_range(data['check_in_date'], data['check_out_date'])
    rooms = data.get('rooms')
    if not isinstance(rooms, list) or not all(isinstance(r, dict) for r in rooms):
        raise ValidationError('rooms must be a list of {room_id, guest_count}')
    lang = request_lang()
    return jsonify(price_group(rooms, check_in, check_out, lang).to_dict(lang))


@bp.route('/booking-groups')
def list_groups():
    """All booking groups, latest check-in first"""
    groups = BookingGroup.query.order_by(BookingGroup.check_in_date.desc()).all()
    return jsonify([g.to_dict(include_bookings=False) for g in groups])


@bp.route('/booking-groups', methods=['POST'])
def create_group():
    """Create a booking group; every room must be free or nothing is saved"""
    group = service.create_group(get_json(), request_lang())
    return jsonify({'success': True, 'group': group.to_dict()}), 201


@bp.route('/booking-groups/<int:group_id>')
def get_group(group_id):
    """Booking group with payments, ledger and stored pricing"""
    group = service.get_group(group_id)
    data = group.to_dict()
    data['payments'] = [p.to_dict() for p in group.payments]
    data['ledger'] = ledger_summary(group)
    data['pricing'] = price_stored_group(group)
    return jsonify(data)


@bp.route('/booking-groups/<int:group_id>', methods=['PUT'])
def update_group(group_id):
    """Update a booking group and mirror its guest data to the members"""
    group = service.update_group(service.get_group(group_id), get_json())
    return jsonify({'success': True, 'group': group.to_dict()})


@bp.route('/booking-groups/<int:group_id>', methods=['DELETE'])
def delete_group(group_id):
    """Delete a booking group with all its bookings"""
    service.delete_group(service.get_group(group_id))
    return jsonify({'success': True})


@bp.route('/booking-groups/<int:group_id>/rooms', methods=['POST'])
def add_group_room(group_id):
    """Add a room to a booking group"""
    group = service.get_group(group_id)
    booking = service.add_room_to_group(group, get_json(), request_lang())
    return jsonify({'success': True, 'booking': booking.to_dict(), 'group': group.to_dict(include_bookings=False)}), 201


@bp.route('/booking-groups/<int:group_id>/rooms', methods=['PUT'])
def update_group_room(group_id):
    """Change the room, guest count or fee lines of a group member"""
    booking = service.update_room_in_group(service.get_group(group_id), get_json())
    return jsonify({'success': True, 'booking': booking.to_dict()})


@bp.route('/booking-groups/<int:group_id>/rooms/<int:booking_id>', methods=['DELETE'])
def remove_group_room(group_id, booking_id):
    """Remove a room from a group; two-room groups dissolve"""
    result = service.remove_room_from_group(service.get_group(group_id), booking_id)
    return jsonify(result)


@bp.route('/booking-groups/<int:group_id>/rooms/<int:booking_id>/recalculate', methods=['POST'])
def recalculate_group_room(group_id, booking_id):
    """Re-price one member and the group total"""
    group = service.get_group(group_id)
    totals = service.recalculate_member_total(group, booking_id)
    return jsonify({'success': True, **totals, 'payment_status': group.payment_status})


@bp.route('/booking-groups/<int:group_id>/payments')
def list_group_payments(group_id):
    """Payments of a booking group and the ledger summary"""
    group = service.get_group(group_id)
    return jsonify({
        'payments': [p.to_dict() for p in group.payments],
        'summary': ledger_summary(group),
    })


@bp.route('/booking-groups/<int:group_id>/payments', methods=['POST'])
def create_group_payment(group_id):
    """Record a group payment and recompute the payment status"""
    group = service.get_group(group_id)
    payment, status = add_payment(group, get_json())
    return jsonify({'success': True, 'payment': payment.to_dict(), 'payment_status': status}), 201


@bp.route('/booking-groups/<int:group_id>/payments/<int:payment_id>', methods=['DELETE'])
def delete_group_payment(group_id, payment_id):
    """Remove a group payment and recompute the payment status"""
    status = delete_payment(service.get_group(group_id), payment_id)
    return jsonify({'success': True, 'payment_status': status})
