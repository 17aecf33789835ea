"""
Catalog routes: buildings, room types, rooms and their rate configuration
(date range prices, calendar overrides, fee catalog), special days, the
monthly pricing calendar and availability checks.
"""

import logging
from datetime import date

from flask import Blueprint, jsonify, request

from availability import check_availability, check_overlap, validate_price_range
from errors import ConflictError, NotFoundError, ValidationError
from i18n import LocalizedText
from models import (
    atomic, db, AdditionalPrice, Booking, Building, CalendarOverride, DateRangePrice,
    Room, RoomType, SpecialDay,
)
from pricing import fee_catalog, pricing_calendar
from utils import (
    get_json, parse_bool, parse_date, parse_date_range, parse_float, parse_int,
    parse_localized, parse_optional_date, request_lang, require_fields,
)

logger = logging.getLogger(__name__)

bp = Blueprint('catalog', __name__)


def get_or_404(model, record_id, label):
    record = db.session.get(model, record_id)
    if record is None:
        raise NotFoundError(f'{label} not found', id=record_id)
    return record


def room_has_bookings(room_query):
    return db.session.query(Booking.query.filter(room_query).exists()).scalar()


# ============================================
# BUILDINGS
# ============================================

@bp.route('/buildings')
def list_buildings():
    buildings = Building.query.order_by(Building.name).all()
    return jsonify([b.to_dict() for b in buildings])


@bp.route('/buildings', methods=['POST'])
def create_building():
    data = get_json()
    require_fields(data, 'name')

    with atomic():
        building = Building(name=data['name'], address=data.get('address', ''))
        db.session.add(building)

    logger.info('Created building %s', building.id)
    return jsonify({'success': True, 'building': building.to_dict()}), 201


@bp.route('/buildings/<int:building_id>')
def get_building(building_id):
    building = get_or_404(Building, building_id, 'Building')
    data = building.to_dict()
    data['room_types'] = [rt.to_dict(request_lang()) for rt in building.room_types]
    return jsonify(data)


@bp.route('/buildings/<int:building_id>', methods=['PUT'])
def update_building(building_id):
    building = get_or_404(Building, building_id, 'Building')
    data = get_json()

    with atomic():
        if 'name' in data:
            require_fields(data, 'name')
            building.name = data['name']
        if 'address' in data:
            building.address = data['address'] or ''

    return jsonify({'success': True, 'building': building.to_dict()})


@bp.route('/buildings/<int:building_id>', methods=['DELETE'])
def delete_building(building_id):
    building = get_or_404(Building, building_id, 'Building')
    if room_has_bookings(Booking.room.has(Room.room_type.has(RoomType.building_id == building.id))):
        raise ConflictError('Building has rooms with bookings and cannot be deleted')

    with atomic():
        db.session.delete(building)

    logger.info('Deleted building %s', building_id)
    return jsonify({'success': True})


# ============================================
# ROOM TYPES
# ============================================

@bp.route('/room-types')
def list_room_types():
    query = RoomType.query
    if request.args.get('building_id'):
        query = query.filter_by(building_id=parse_int(request.args['building_id'], 'building_id'))
    lang = request_lang()
    return jsonify([rt.to_dict(lang) for rt in query.order_by(RoomType.id).all()])


@bp.route('/room-types', methods=['POST'])
def create_room_type():
    data = get_json()
    require_fields(data, 'building_id', 'name')
    building = get_or_404(Building, parse_int(data['building_id'], 'building_id'), 'Building')
    lang = request_lang()

    with atomic():
        room_type = RoomType(
            building=building,
            name=parse_localized(data['name'], 'name', lang),
            description=parse_localized(data['description'], 'description', lang)
            if data.get('description') else None,
            capacity=parse_int(data.get('capacity'), 'capacity', default=1, minimum=1),
        )
        db.session.add(room_type)

    logger.info('Created room type %s in building %s', room_type.id, building.id)
    return jsonify({'success': True, 'room_type': room_type.to_dict(lang)}), 201


@bp.route('/room-types/<int:room_type_id>')
def get_room_type(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    lang = request_lang()
    data = room_type.to_dict(lang)
    data['rooms'] = [r.to_dict(lang) for r in room_type.rooms]
    return jsonify(data)


@bp.route('/room-types/<int:room_type_id>', methods=['PUT'])
def update_room_type(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    data = get_json()
    lang = request_lang()

    with atomic():
        if 'name' in data:
            room_type.name = parse_localized(data['name'], 'name', lang)
        if 'description' in data:
            room_type.description = parse_localized(data['description'], 'description', lang) \
                if data['description'] else None
        if 'capacity' in data:
            room_type.capacity = parse_int(data['capacity'], 'capacity', minimum=1)
        if data.get('building_id') not in (None, ''):
            room_type.building = get_or_404(Building, parse_int(data['building_id'], 'building_id'), 'Building')

    return jsonify({'success': True, 'room_type': room_type.to_dict(lang)})


def copy_name(name):
    return f'{name} (Copy)'


@bp.route('/room-types/<int:room_type_id>/duplicate', methods=['POST'])
def duplicate_room_type(room_type_id):
    """Copy a room type with its fee catalog and rooms; rates and bookings stay behind"""
    original = get_or_404(RoomType, room_type_id, 'Room type')
    name = LocalizedText.parse(original.name).to_dict()

    with atomic():
        duplicate = RoomType(
            building_id=original.building_id,
            name={lang: copy_name(text) if text else '' for lang, text in name.items()},
            description=original.description,
            capacity=original.capacity,
            additional_prices=[
                AdditionalPrice(
                    title=fee.title,
                    price_eur=fee.price_eur,
                    mandatory=fee.mandatory,
                    per_night=fee.per_night,
                    per_guest=fee.per_guest,
                    order=i,
                )
                for i, fee in enumerate(original.additional_prices)
            ],
            rooms=[Room(name=copy_name(room.name), is_active=room.is_active) for room in original.rooms],
        )
        db.session.add(duplicate)

    logger.info('Duplicated room type %s as %s', original.id, duplicate.id)
    lang = request_lang()
    data = duplicate.to_dict(lang)
    data['rooms'] = [r.to_dict(lang) for r in duplicate.rooms]
    return jsonify({'success': True, 'room_type': data}), 201


@bp.route('/room-types/<int:room_type_id>', methods=['DELETE'])
def delete_room_type(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    if room_has_bookings(Booking.room.has(Room.room_type_id == room_type.id)):
        raise ConflictError('Room type has rooms with bookings and cannot be deleted')

    with atomic():
        db.session.delete(room_type)

    logger.info('Deleted room type %s', room_type_id)
    return jsonify({'success': True})


# ============================================
# ROOMS
# ============================================

@bp.route('/rooms')
def list_rooms():
    query = Room.query
    if request.args.get('room_type_id'):
        query = query.filter_by(room_type_id=parse_int(request.args['room_type_id'], 'room_type_id'))
    if request.args.get('building_id'):
        building_id = parse_int(request.args['building_id'], 'building_id')
        query = query.filter(Room.room_type.has(RoomType.building_id == building_id))
    if 'active' in request.args:
        query = query.filter_by(is_active=parse_bool(request.args['active']))
    lang = request_lang()
    return jsonify([r.to_dict(lang) for r in query.order_by(Room.name).all()])


@bp.route('/rooms', methods=['POST'])
def create_room():
    data = get_json()
    require_fields(data, 'room_type_id', 'name')
    room_type = get_or_404(RoomType, parse_int(data['room_type_id'], 'room_type_id'), 'Room type')

    with atomic():
        room = Room(
            room_type=room_type,
            name=data['name'],
            is_active=parse_bool(data.get('is_active', True)),
        )
        db.session.add(room)

    logger.info('Created room %s in room type %s', room.id, room_type.id)
    return jsonify({'success': True, 'room': room.to_dict(request_lang())}), 201


@bp.route('/rooms/<int:room_id>')
def get_room_details(room_id):
    room = get_or_404(Room, room_id, 'Room')
    return jsonify(room.to_dict(request_lang()))


@bp.route('/rooms/<int:room_id>', methods=['PUT'])
def update_room(room_id):
    room = get_or_404(Room, room_id, 'Room')
    data = get_json()

    with atomic():
        if 'name' in data:
            require_fields(data, 'name')
            room.name = data['name']
        if 'is_active' in data:
            room.is_active = parse_bool(data['is_active'])
        if data.get('room_type_id') not in (None, ''):
            room.room_type = get_or_404(RoomType, parse_int(data['room_type_id'], 'room_type_id'), 'Room type')

    return jsonify({'success': True, 'room': room.to_dict(request_lang())})


@bp.route('/rooms/<int:room_id>/duplicate', methods=['POST'])
def duplicate_room(room_id):
    original = get_or_404(Room, room_id, 'Room')

    with atomic():
        room = Room(room_type_id=original.room_type_id, name=copy_name(original.name), is_active=original.is_active)
        db.session.add(room)

    logger.info('Duplicated room %s as %s', original.id, room.id)
    return jsonify({'success': True, 'room': room.to_dict(request_lang())}), 201


@bp.route('/rooms/<int:room_id>', methods=['DELETE'])
def delete_room(room_id):
    room = get_or_404(Room, room_id, 'Room')
    if room.bookings:
        raise ConflictError('Room has bookings and cannot be deleted', booking_count=len(room.bookings))

    with atomic():
        db.session.delete(room)

    logger.info('Deleted room %s', room_id)
    return jsonify({'success': True})


# ============================================
# DATE RANGE PRICES
# ============================================

@bp.route('/room-types/<int:room_type_id>/date-range-prices')
def list_date_range_prices(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    return jsonify([p.to_dict() for p in room_type.date_range_prices])


@bp.route('/room-types/<int:room_type_id>/date-range-prices', methods=['POST'])
def create_date_range_price(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    data = get_json()
    require_fields(data, 'start_date', 'end_date', 'weekday_price', 'weekend_price')
    start = parse_date(data['start_date'], 'start_date')
    end = parse_date(data['end_date'], 'end_date')

    with atomic():
        validate_price_range(room_type.id, start, end)
        price_range = DateRangePrice(
            room_type=room_type,
            start_date=start,
            end_date=end,
            weekday_price=parse_float(data['weekday_price'], 'weekday_price', minimum=0),
            weekend_price=parse_float(data['weekend_price'], 'weekend_price', minimum=0),
            min_nights=parse_int(data.get('min_nights'), 'min_nights', default=1, minimum=1),
            is_inactive=parse_bool(data.get('is_inactive', False)),
        )
        db.session.add(price_range)

    logger.info('Created price range %s (%s - %s) for room type %s', price_range.id, start, end, room_type.id)
    return jsonify({'success': True, 'date_range_price': price_range.to_dict()}), 201


@bp.route('/date-range-prices/<int:price_id>', methods=['PUT'])
def update_date_range_price(price_id):
    price_range = get_or_404(DateRangePrice, price_id, 'Date range price')
    data = get_json()
    start = parse_date(data['start_date'], 'start_date') if 'start_date' in data else price_range.start_date
    end = parse_date(data['end_date'], 'end_date') if 'end_date' in data else price_range.end_date

    with atomic():
        validate_price_range(price_range.room_type_id, start, end, exclude_id=price_range.id)
        price_range.start_date = start
        price_range.end_date = end
        if 'weekday_price' in data:
            price_range.weekday_price = parse_float(data['weekday_price'], 'weekday_price', minimum=0)
        if 'weekend_price' in data:
            price_range.weekend_price = parse_float(data['weekend_price'], 'weekend_price', minimum=0)
        if 'min_nights' in data:
            price_range.min_nights = parse_int(data['min_nights'], 'min_nights', minimum=1)
        if 'is_inactive' in data:
            price_range.is_inactive = parse_bool(data['is_inactive'])

    return jsonify({'success': True, 'date_range_price': price_range.to_dict()})


@bp.route('/date-range-prices/<int:price_id>', methods=['DELETE'])
def delete_date_range_price(price_id):
    price_range = get_or_404(DateRangePrice, price_id, 'Date range price')
    with atomic():
        db.session.delete(price_range)
    return jsonify({'success': True})


# ============================================
# CALENDAR OVERRIDES
# ============================================

def apply_override_fields(override, data):
    """Copy only the supplied fields onto an override."""
    if 'price' in data:
        override.price = parse_float(data['price'], 'price', minimum=0) \
            if data['price'] not in (None, '') else None
    if 'min_nights' in data:
        override.min_nights = parse_int(data['min_nights'], 'min_nights', minimum=1) \
            if data['min_nights'] not in (None, '') else None
    if 'is_inactive' in data:
        override.is_inactive = parse_bool(data['is_inactive'])


def upsert_override(room_type, day, data):
    override = CalendarOverride.query.filter_by(room_type_id=room_type.id, date=day).first()
    if override is None:
        override = CalendarOverride(room_type=room_type, date=day, is_inactive=False)
        db.session.add(override)
    apply_override_fields(override, data)
    return override


@bp.route('/room-types/<int:room_type_id>/calendar-overrides')
def list_calendar_overrides(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    query = CalendarOverride.query.filter_by(room_type_id=room_type.id)
    start = parse_optional_date(request.args.get('start_date'), 'start_date')
    end = parse_optional_date(request.args.get('end_date'), 'end_date')
    if start:
        query = query.filter(CalendarOverride.date >= start)
    if end:
        query = query.filter(CalendarOverride.date <= end)
    return jsonify([o.to_dict() for o in query.order_by(CalendarOverride.date).all()])


@bp.route('/room-types/<int:room_type_id>/calendar-overrides', methods=['POST'])
def save_calendar_override(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    data = get_json()
    require_fields(data, 'date')
    day = parse_date(data['date'], 'date')

    with atomic():
        override = upsert_override(room_type, day, data)

    return jsonify({'success': True, 'override': override.to_dict()})


@bp.route('/room-types/<int:room_type_id>/calendar-overrides', methods=['PUT'])
def bulk_save_calendar_overrides(room_type_id):
    """Apply the same fields to a list of dates."""
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    data = get_json()
    dates = data.get('dates')
    if not isinstance(dates, list) or not dates:
        raise ValidationError('dates must be a non-empty list')
    days = sorted({parse_date(d, 'dates') for d in dates})

    with atomic():
        overrides = [upsert_override(room_type, day, data) for day in days]

    logger.info('Saved %d calendar overrides for room type %s', len(overrides), room_type.id)
    return jsonify({'success': True, 'overrides': [o.to_dict() for o in overrides]})


@bp.route('/room-types/<int:room_type_id>/calendar-overrides', methods=['DELETE'])
def delete_calendar_overrides(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    data = get_json()
    if request.args.get('date'):
        days = [parse_date(request.args['date'], 'date')]
    elif isinstance(data.get('dates'), list) and data['dates']:
        days = [parse_date(d, 'dates') for d in data['dates']]
    else:
        raise ValidationError('Provide a date or a list of dates')

    with atomic():
        deleted = CalendarOverride.query.filter(
            CalendarOverride.room_type_id == room_type.id,
            CalendarOverride.date.in_(days),
        ).delete(synchronize_session='fetch')

    return jsonify({'success': True, 'deleted': deleted})


# ============================================
# SPECIAL DAYS
# ============================================

@bp.route('/special-days')
def list_special_days():
    query = SpecialDay.query
    start = parse_optional_date(request.args.get('start_date'), 'start_date')
    end = parse_optional_date(request.args.get('end_date'), 'end_date')
    if start:
        query = query.filter(SpecialDay.end_date >= start)
    if end:
        query = query.filter(SpecialDay.start_date <= end)
    return jsonify([s.to_dict() for s in query.order_by(SpecialDay.start_date).all()])


def special_day_range(data, current=None):
    start = parse_date(data['start_date'], 'start_date') if 'start_date' in data else current.start_date
    if data.get('end_date'):
        end = parse_date(data['end_date'], 'end_date')
    elif current is not None and 'start_date' not in data:
        end = current.end_date
    else:
        end = start
    if end < start:
        raise ValidationError('End date must not be before start date')
    return start, end


@bp.route('/special-days', methods=['POST'])
def create_special_day():
    data = get_json()
    require_fields(data, 'name', 'start_date')
    start, end = special_day_range(data)

    with atomic():
        special = SpecialDay(name=data['name'], start_date=start, end_date=end)
        db.session.add(special)

    return jsonify({'success': True, 'special_day': special.to_dict()}), 201


@bp.route('/special-days/<int:special_day_id>', methods=['PUT'])
def update_special_day(special_day_id):
    special = get_or_404(SpecialDay, special_day_id, 'Special day')
    data = get_json()
    start, end = special_day_range(data, special)

    with atomic():
        if 'name' in data:
            require_fields(data, 'name')
            special.name = data['name']
        special.start_date = start
        special.end_date = end

    return jsonify({'success': True, 'special_day': special.to_dict()})


@bp.route('/special-days/<int:special_day_id>', methods=['DELETE'])
def delete_special_day(special_day_id):
    special = get_or_404(SpecialDay, special_day_id, 'Special day')
    with atomic():
        db.session.delete(special)
    return jsonify({'success': True})


# ============================================
# ADDITIONAL PRICE CATALOG
# ============================================

def new_additional_price(data, lang, **scope):
    require_fields(data, 'title')
    return AdditionalPrice(
        title=parse_localized(data['title'], 'title', lang),
        price_eur=parse_float(data.get('price_eur'), 'price_eur', minimum=0),
        mandatory=parse_bool(data.get('mandatory', False)),
        per_night=parse_bool(data.get('per_night', False)),
        per_guest=parse_bool(data.get('per_guest', False)),
        order=parse_int(data.get('order'), 'order', default=0),
        **scope
    )


@bp.route('/buildings/<int:building_id>/additional-prices')
def list_building_prices(building_id):
    building = get_or_404(Building, building_id, 'Building')
    lang = request_lang()
    return jsonify([p.to_dict(lang) for p in building.additional_prices])


@bp.route('/buildings/<int:building_id>/additional-prices', methods=['POST'])
def create_building_price(building_id):
    building = get_or_404(Building, building_id, 'Building')
    lang = request_lang()

    with atomic():
        price = new_additional_price(get_json(), lang, building=building)
        db.session.add(price)

    return jsonify({'success': True, 'additional_price': price.to_dict(lang)}), 201


@bp.route('/room-types/<int:room_type_id>/additional-prices')
def list_room_type_prices(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    lang = request_lang()
    return jsonify([p.to_dict(lang) for p in room_type.additional_prices])


@bp.route('/room-types/<int:room_type_id>/additional-prices', methods=['POST'])
def create_room_type_price(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    lang = request_lang()

    with atomic():
        price = new_additional_price(get_json(), lang, room_type=room_type)
        db.session.add(price)

    return jsonify({'success': True, 'additional_price': price.to_dict(lang)}), 201


@bp.route('/room-types/<int:room_type_id>/available-additional-prices')
def list_available_prices(room_type_id):
    """Building fees then room type fees, as offered when booking this room type."""
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    lang = request_lang()
    return jsonify([p.to_dict(lang) for p in fee_catalog(room_type)])


@bp.route('/additional-prices/<int:price_id>', methods=['PUT'])
def update_additional_price(price_id):
    price = get_or_404(AdditionalPrice, price_id, 'Additional price')
    data = get_json()
    lang = request_lang()

    with atomic():
        if 'title' in data:
            price.title = parse_localized(data['title'], 'title', lang)
        if 'price_eur' in data:
            price.price_eur = parse_float(data['price_eur'], 'price_eur', minimum=0)
        for flag in ('mandatory', 'per_night', 'per_guest'):
            if flag in data:
                setattr(price, flag, parse_bool(data[flag]))
        if 'order' in data:
            price.order = parse_int(data['order'], 'order', default=0)

    return jsonify({'success': True, 'additional_price': price.to_dict(lang)})


@bp.route('/additional-prices/<int:price_id>', methods=['DELETE'])
def delete_additional_price(price_id):
    price = get_or_404(AdditionalPrice, price_id, 'Additional price')
    with atomic():
        db.session.delete(price)
    return jsonify({'success': True})


# ============================================
# PRICING CALENDAR & AVAILABILITY
# ============================================

@bp.route('/room-types/<int:room_type_id>/pricing-calendar')
def get_pricing_calendar(room_type_id):
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    today = date.today()
    year = parse_int(request.args.get('year'), 'year', default=today.year, minimum=1)
    month = parse_int(request.args.get('month'), 'month', default=today.month)
    return jsonify({
        'room_type_id': room_type.id,
        'year': year,
        'month': month,
        'days': pricing_calendar(room_type, year, month),
    })


@bp.route('/room-types/<int:room_type_id>/availability')
def get_availability(room_type_id):
    """Inactive days and minimum stay; with room_id also booking overlap."""
    room_type = get_or_404(RoomType, room_type_id, 'Room type')
    check_in, check_out = parse_date_range(request.args.get('check_in_date'), request.args.get('check_out_date'))
    result = check_availability(room_type.id, check_in, check_out).to_dict()

    if request.args.get('room_id'):
        room = get_or_404(Room, parse_int(request.args['room_id'], 'room_id'), 'Room')
        if room.room_type_id != room_type.id:
            raise ValidationError('Room does not belong to this room type', room_id=room.id)
        exclude = request.args.get('exclude_booking_id')
        conflict = check_overlap(room.id, check_in, check_out,
                                 [parse_int(exclude, 'exclude_booking_id')] if exclude else None)
        if conflict is not None:
            result['valid'] = False
            result['conflicting_booking_id'] = conflict.id

    return jsonify(result)
