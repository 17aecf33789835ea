# Error types raised by the pricing, availability and ledger services.
# Route handlers let them propagate; app.py turns them into JSON responses.


class BookingError(Exception):
    """Base error - carries the HTTP status and extra response fields"""
    status_code = 400

    def __init__(self, message, status_code=None, **payload):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        data = {'success': False, 'message': self.message}
        data.update(self.payload)
        return data


class ValidationError(BookingError):
    """Bad input shape, invalid date order, missing field"""
    status_code = 400


class NotFoundError(BookingError):
    """Unknown room / room type / booking / group id"""
    status_code = 404


class ConflictError(BookingError):
    """Overlapping booking or price range, inactive days, minimum stay"""
    status_code = 409
