# Database Models for Guesthouse Management
from flask_sqlalchemy import SQLAlchemy
from contextlib import contextmanager
from datetime import datetime

from i18n import LocalizedText

db = SQLAlchemy()

# Allowed values for string enum columns
BOOKING_SOURCES = ('MANUAL', 'WEBSITE', 'BOOKING_COM', 'SZALLAS_HU', 'AIRBNB')
BOOKING_STATUSES = ('INCOMING', 'CONFIRMED', 'CHECKED_IN', 'CHECKED_OUT', 'CANCELLED')
PAYMENT_STATUSES = ('PENDING', 'PARTIALLY_PAID', 'FULLY_PAID')
PAYMENT_METHODS = ('CASH', 'TRANSFER', 'CREDIT_CARD')
CURRENCIES = ('EUR', 'HUF')

# Money columns come back as floats so pricing math never mixes Decimal and float
Money = db.Numeric(10, 2, asdecimal=False)


def _iso(value):
    return value.isoformat() if value else None


class Building(db.Model):
    """Building - owns room types and building-wide fees"""
    __tablename__ = 'buildings'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    address = db.Column(db.String(255), default='')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    room_types = db.relationship('RoomType', backref='building', lazy=True, cascade='all, delete-orphan')
    additional_prices = db.relationship(
        'AdditionalPrice', backref='building', lazy=True, cascade='all, delete-orphan',
        order_by='AdditionalPrice.order',
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'created_at': _iso(self.created_at)
        }


class RoomType(db.Model):
    """Room type - the unit of pricing configuration"""
    __tablename__ = 'room_types'

    id = db.Column(db.Integer, primary_key=True)
    building_id = db.Column(db.Integer, db.ForeignKey('buildings.id'), nullable=False)
    name = db.Column(db.JSON, nullable=False)  # {"en": ..., "hu": ..., "de": ...}
    description = db.Column(db.JSON, nullable=True)
    capacity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('capacity >= 1', name='room_type_capacity_positive'),
    )

    # Relationships
    rooms = db.relationship('Room', backref='room_type', lazy=True, cascade='all, delete-orphan')
    date_range_prices = db.relationship(
        'DateRangePrice', backref='room_type', lazy=True, cascade='all, delete-orphan',
        order_by='DateRangePrice.start_date',
    )
    calendar_overrides = db.relationship(
        'CalendarOverride', backref='room_type', lazy=True, cascade='all, delete-orphan',
        order_by='CalendarOverride.date',
    )
    additional_prices = db.relationship(
        'AdditionalPrice', backref='room_type', lazy=True, cascade='all, delete-orphan',
        order_by='AdditionalPrice.order',
    )

    def localized_name(self, lang=None):
        return LocalizedText.parse(self.name).get(lang)

    def to_dict(self, lang=None):
        return {
            'id': self.id,
            'building_id': self.building_id,
            'name': LocalizedText.parse(self.name).to_dict(),
            'display_name': self.localized_name(lang),
            'description': LocalizedText.parse(self.description).to_dict(),
            'capacity': self.capacity,
            'room_count': len(self.rooms),
            'created_at': _iso(self.created_at)
        }


class Room(db.Model):
    """Room - belongs to a room type"""
    __tablename__ = 'rooms'

    id = db.Column(db.Integer, primary_key=True)
    room_type_id = db.Column(db.Integer, db.ForeignKey('room_types.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    bookings = db.relationship('Booking', backref='room', lazy=True)

    def to_dict(self, lang=None):
        room_type = self.room_type
        return {
            'id': self.id,
            'name': self.name,
            'is_active': self.is_active,
            'room_type_id': self.room_type_id,
            'room_type_name': room_type.localized_name(lang) if room_type else None,
            'building_id': room_type.building_id if room_type else None,
            'building_name': room_type.building.name if room_type else None,
        }


class DateRangePrice(db.Model):
    """Weekday/weekend price and minimum stay for an inclusive date span"""
    __tablename__ = 'date_range_prices'

    id = db.Column(db.Integer, primary_key=True)
    room_type_id = db.Column(db.Integer, db.ForeignKey('room_types.id'), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)  # inclusive
    weekday_price = db.Column(Money, nullable=False, default=0)
    weekend_price = db.Column(Money, nullable=False, default=0)
    min_nights = db.Column(db.Integer, nullable=False, default=1)
    is_inactive = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.Index('ix_date_range_prices_room_type_dates', 'room_type_id', 'start_date', 'end_date'),
    )

    def contains(self, day):
        return self.start_date <= day <= self.end_date

    def to_dict(self):
        return {
            'id': self.id,
            'room_type_id': self.room_type_id,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'weekday_price': self.weekday_price,
            'weekend_price': self.weekend_price,
            'min_nights': self.min_nights,
            'is_inactive': self.is_inactive
        }


class CalendarOverride(db.Model):
    """Per-date exception to range pricing and availability"""
    __tablename__ = 'calendar_overrides'

    id = db.Column(db.Integer, primary_key=True)
    room_type_id = db.Column(db.Integer, db.ForeignKey('room_types.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    price = db.Column(Money, nullable=True)
    min_nights = db.Column(db.Integer, nullable=True)
    is_inactive = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.UniqueConstraint('room_type_id', 'date', name='unique_override_per_day'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'room_type_id': self.room_type_id,
            'date': _iso(self.date),
            'price': self.price,
            'min_nights': self.min_nights,
            'is_inactive': self.is_inactive
        }


class SpecialDay(db.Model):
    """Labeled calendar interval (holiday etc.) - annotation only"""
    __tablename__ = 'special_days'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date)
        }


class AdditionalPrice(db.Model):
    """Fee catalog entry, scoped to either a building or a room type"""
    __tablename__ = 'additional_prices'

    id = db.Column(db.Integer, primary_key=True)
    building_id = db.Column(db.Integer, db.ForeignKey('buildings.id'), nullable=True)
    room_type_id = db.Column(db.Integer, db.ForeignKey('room_types.id'), nullable=True)
    title = db.Column(db.JSON, nullable=False)
    price_eur = db.Column(Money, nullable=False, default=0)
    mandatory = db.Column(db.Boolean, nullable=False, default=False)
    per_night = db.Column(db.Boolean, nullable=False, default=False)
    per_guest = db.Column(db.Boolean, nullable=False, default=False)
    order = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.CheckConstraint(
            '(building_id IS NULL) != (room_type_id IS NULL)',
            name='additional_price_single_scope',
        ),
    )

    @property
    def origin(self):
        return 'building' if self.building_id is not None else 'roomType'

    def localized_title(self, lang=None):
        return LocalizedText.parse(self.title).get(lang)

    def to_dict(self, lang=None):
        return {
            'id': self.id,
            'origin': self.origin,
            'building_id': self.building_id,
            'room_type_id': self.room_type_id,
            'title': LocalizedText.parse(self.title).to_dict(),
            'display_title': self.localized_title(lang),
            'price_eur': self.price_eur,
            'mandatory': self.mandatory,
            'per_night': self.per_night,
            'per_guest': self.per_guest,
            'order': self.order
        }


class BookingGroup(db.Model):
    """Multi-room reservation - group total and payments are authoritative"""
    __tablename__ = 'booking_groups'

    id = db.Column(db.Integer, primary_key=True)

    # Guest info
    guest_name = db.Column(db.String(100), nullable=False)
    guest_email = db.Column(db.String(100), nullable=True)
    guest_phone = db.Column(db.String(30), nullable=True)

    # Stay
    source = db.Column(db.String(20), nullable=False, default='MANUAL')
    check_in_date = db.Column(db.Date, nullable=False)
    check_out_date = db.Column(db.Date, nullable=False)
    arrival_time = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='INCOMING')

    # Pricing
    payment_status = db.Column(db.String(20), nullable=False, default='PENDING')
    total_amount = db.Column(Money, nullable=True)  # null = not yet priced
    has_custom_huf_price = db.Column(db.Boolean, nullable=False, default=False)
    custom_huf_price = db.Column(Money, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    bookings = db.relationship('Booking', backref='group', lazy=True, cascade='all',
                               order_by='Booking.id')
    payments = db.relationship('Payment', backref='group', lazy=True, cascade='all, delete-orphan',
                               order_by='Payment.date.desc()')

    @property
    def nights(self):
        return (self.check_out_date - self.check_in_date).days

    @property
    def total_guests(self):
        return sum(b.guest_count for b in self.bookings)

    def to_dict(self, include_bookings=True):
        data = {
            'id': self.id,
            'guest_name': self.guest_name,
            'guest_email': self.guest_email,
            'guest_phone': self.guest_phone,
            'source': self.source,
            'check_in_date': _iso(self.check_in_date),
            'check_out_date': _iso(self.check_out_date),
            'arrival_time': self.arrival_time,
            'status': self.status,
            'payment_status': self.payment_status,
            'total_amount': self.total_amount,
            'has_custom_huf_price': self.has_custom_huf_price,
            'custom_huf_price': self.custom_huf_price,
            'notes': self.notes,
            'nights': self.nights,
            'room_count': len(self.bookings),
            'total_guests': self.total_guests,
            'created_at': _iso(self.created_at)
        }
        if include_bookings:
            data['bookings'] = [b.to_dict() for b in self.bookings]
        return data


class Booking(db.Model):
    """Single room reservation, [check_in, check_out) with check-out exclusive"""
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id'), nullable=False)
    group_id = db.Column(db.Integer, db.ForeignKey('booking_groups.id'), nullable=True)

    # Guest info
    guest_name = db.Column(db.String(100), nullable=False)
    guest_email = db.Column(db.String(100), nullable=True)
    guest_phone = db.Column(db.String(30), nullable=True)
    guest_count = db.Column(db.Integer, nullable=False, default=1)

    # Stay
    source = db.Column(db.String(20), nullable=False, default='MANUAL')
    check_in_date = db.Column(db.Date, nullable=False)
    check_out_date = db.Column(db.Date, nullable=False)
    arrival_time = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='INCOMING')

    # Pricing
    payment_status = db.Column(db.String(20), nullable=False, default='PENDING')
    total_amount = db.Column(Money, nullable=True)  # null = not yet priced
    has_custom_huf_price = db.Column(db.Boolean, nullable=False, default=False)
    custom_huf_price = db.Column(Money, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_bookings_room_dates', 'room_id', 'check_in_date', 'check_out_date'),
    )

    # Relationships
    additional_prices = db.relationship('BookingAdditionalPrice', backref='booking', lazy=True,
                                        cascade='all, delete-orphan', order_by='BookingAdditionalPrice.id')
    payments = db.relationship('Payment', backref='booking', lazy=True, cascade='all, delete-orphan',
                               order_by='Payment.date.desc()')

    @property
    def nights(self):
        return (self.check_out_date - self.check_in_date).days

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'room_name': self.room.name if self.room else None,
            'group_id': self.group_id,
            'guest_name': self.guest_name,
            'guest_email': self.guest_email,
            'guest_phone': self.guest_phone,
            'guest_count': self.guest_count,
            'source': self.source,
            'check_in_date': _iso(self.check_in_date),
            'check_out_date': _iso(self.check_out_date),
            'arrival_time': self.arrival_time,
            'nights': self.nights,
            'status': self.status,
            'payment_status': self.payment_status,
            'total_amount': self.total_amount,
            'has_custom_huf_price': self.has_custom_huf_price,
            'custom_huf_price': self.custom_huf_price,
            'notes': self.notes,
            'additional_prices': [p.to_dict() for p in self.additional_prices],
            'created_at': _iso(self.created_at)
        }


class BookingAdditionalPrice(db.Model):
    """Fee line charged on a booking, frozen at the time it was attached"""
    __tablename__ = 'booking_additional_prices'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    price_eur = db.Column(Money, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    mandatory = db.Column(db.Boolean, nullable=False, default=False)
    origin_type = db.Column(db.String(20), nullable=True)  # building, roomType
    origin_id = db.Column(db.Integer, nullable=True)

    @property
    def total(self):
        return (self.price_eur or 0) * (self.quantity or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'price_eur': self.price_eur,
            'quantity': self.quantity,
            'total': self.total,
            'mandatory': self.mandatory,
            'origin_type': self.origin_type,
            'origin_id': self.origin_id
        }


class Payment(db.Model):
    """Payment against exactly one booking or one booking group"""
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=True)
    group_id = db.Column(db.Integer, db.ForeignKey('booking_groups.id'), nullable=True)
    amount = db.Column(Money, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='EUR')
    method = db.Column(db.String(20), nullable=False)
    date = db.Column(db.Date, nullable=False)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint(
            '(booking_id IS NULL) != (group_id IS NULL)',
            name='payment_single_owner',
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'booking_id': self.booking_id,
            'group_id': self.group_id,
            'amount': self.amount,
            'currency': self.currency,
            'method': self.method,
            'date': _iso(self.date),
            'note': self.note,
            'created_at': _iso(self.created_at)
        }


@contextmanager
def atomic():
    """Commit everything done in the block once, or roll all of it back."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
