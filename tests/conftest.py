from datetime import date

import pytest

from app import create_app
from models import (
    db, AdditionalPrice, Booking, Building, CalendarOverride, DateRangePrice, Room, RoomType,
)


@pytest.fixture
def app():
    app = create_app({
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'TESTING': True,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def save(record):
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture
def building(app):
    return save(Building(name='Lakeside House', address='Balatonfüred'))


@pytest.fixture
def room_type(building):
    return save(RoomType(
        building=building,
        name={'en': 'Double room', 'hu': 'Kétágyas szoba', 'de': ''},
        capacity=2,
    ))


@pytest.fixture
def make_room(room_type):
    def make(name='Room 1', is_active=True, room_type=room_type):
        return save(Room(room_type=room_type, name=name, is_active=is_active))
    return make


@pytest.fixture
def room(make_room):
    return make_room()


@pytest.fixture
def june_prices(room_type):
    """Whole of June 2024: 100 on weekdays, 150 on weekend nights, two night minimum."""
    return save(DateRangePrice(
        room_type=room_type,
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 30),
        weekday_price=100,
        weekend_price=150,
        min_nights=2,
    ))


@pytest.fixture
def make_override(room_type):
    def make(day, **fields):
        return save(CalendarOverride(room_type=room_type, date=day, **fields))
    return make


@pytest.fixture
def make_fee(room_type):
    def make(title='Tourist tax', price_eur=5, scope=None, **flags):
        owner = {'building': room_type.building} if scope == 'building' else {'room_type': room_type}
        return save(AdditionalPrice(title={'en': title}, price_eur=price_eur, **owner, **flags))
    return make


@pytest.fixture
def make_booking():
    def make(room, check_in, check_out, status='CONFIRMED', **fields):
        fields.setdefault('guest_name', 'Anna Kovács')
        fields.setdefault('source', 'MANUAL')
        fields.setdefault('guest_count', 2)
        return save(Booking(
            room=room,
            check_in_date=check_in,
            check_out_date=check_out,
            status=status,
            payment_status='PENDING',
            **fields
        ))
    return make
