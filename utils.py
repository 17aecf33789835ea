"""Request payload parsing helpers. All failures raise ValidationError."""

from datetime import date, datetime

from flask import current_app, request

from errors import ValidationError
from i18n import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES, LocalizedText, is_localized_text


def get_json():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def request_lang():
    return request.args.get('lang') or current_app.config.get('DEFAULT_LANGUAGE')


def require_fields(data, *fields):
    for field in fields:
        if data.get(field) in (None, ''):
            raise ValidationError(f'Missing field: {field}', field=field)


def parse_date(value, field='date'):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value:
        raise ValidationError(f'Missing field: {field}', field=field)
    try:
        return datetime.strptime(value[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'Invalid date for {field}: {value}', field=field)


def parse_optional_date(value, field='date'):
    if value in (None, ''):
        return None
    return parse_date(value, field)


def parse_int(value, field, default=None, minimum=None):
    if value in (None, ''):
        if default is None:
            raise ValidationError(f'Missing field: {field}', field=field)
        return default
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer', field=field)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', field=field)
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}', field=field)
    return number


def parse_float(value, field, minimum=None):
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number', field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number', field=field)
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}', field=field)
    return number


def parse_amount(value, field='total_amount'):
    """Nullable money field: empty / zero means "not yet priced"."""
    if value in (None, '', 0, '0'):
        return None
    amount = parse_float(value, field, minimum=0)
    return amount or None


def parse_choice(value, choices, field):
    if value not in choices:
        raise ValidationError(f'Invalid {field}: {value}', field=field, allowed=list(choices))
    return value


def parse_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def parse_date_range(check_in, check_out, start_field='check_in_date', end_field='check_out_date'):
    """Half-open stay range; check-out must be strictly after check-in."""
    start = parse_date(check_in, start_field)
    end = parse_date(check_out, end_field)
    if end <= start:
        raise ValidationError('Check-out must be after check-in')
    return start, end


def parse_localized(value, field, lang=None):
    """Multilingual text from a {"en": ..., "hu": ...} object or a plain string."""
    if isinstance(value, dict) and not is_localized_text(value):
        raise ValidationError(f'{field} has unsupported language keys', field=field,
                              allowed=list(SUPPORTED_LANGUAGES))
    text = LocalizedText.parse(value, lang or DEFAULT_LANGUAGE)
    if not text.has_content():
        raise ValidationError(f'Missing field: {field}', field=field)
    return text.to_dict()
