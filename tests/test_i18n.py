import pytest

from errors import ValidationError
from i18n import LocalizedText, is_localized_text, localize
from utils import parse_localized


def test_requested_language_wins():
    text = LocalizedText(en='Double room', hu='Kétágyas szoba')
    assert text.get('hu') == 'Kétágyas szoba'


def test_falls_back_to_default_then_first_non_empty():
    assert LocalizedText(en='Double room', hu='Kétágyas szoba').get('de') == 'Double room'
    assert LocalizedText(de='Doppelzimmer').get('hu') == 'Doppelzimmer'
    assert LocalizedText().get('en') == ''


def test_blank_values_are_skipped():
    assert localize({'en': '   ', 'hu': 'Szoba'}, 'en') == 'Szoba'


def test_parse_plain_string_and_garbage():
    assert LocalizedText.parse('Sauna', 'hu') == LocalizedText(hu='Sauna')
    assert LocalizedText.parse('Sauna', 'xx') == LocalizedText(en='Sauna')
    assert LocalizedText.parse(None) == LocalizedText()
    assert LocalizedText.parse({'en': 3, 'hu': 'Szauna'}) == LocalizedText(hu='Szauna')


def test_merge_and_missing():
    merged = LocalizedText(en='Room', hu='Szoba').merge({'de': 'Zimmer', 'en': ''})
    assert merged.to_dict() == {'en': 'Room', 'hu': 'Szoba', 'de': 'Zimmer'}
    assert LocalizedText(en='Room').missing() == ['hu', 'de']


def test_is_localized_text():
    assert is_localized_text({'en': 'Room', 'hu': None})
    assert not is_localized_text({'fr': 'Chambre'})
    assert not is_localized_text('Room')


def test_parse_localized_payloads():
    assert parse_localized('Sauna', 'title', 'de') == {'en': '', 'hu': '', 'de': 'Sauna'}
    with pytest.raises(ValidationError):
        parse_localized({'en': ''}, 'title')
    with pytest.raises(ValidationError):
        parse_localized({'it': 'Camera'}, 'title')
