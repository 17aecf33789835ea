"""
Multilingual text helpers.

Names and titles are stored as JSON objects keyed by language code
({"en": "Double room", "hu": "Kétágyas szoba"}). LocalizedText wraps such a
value with a fixed shape and a pure fallback lookup:
requested language -> default language -> first non-empty language.
"""

from dataclasses import dataclass

SUPPORTED_LANGUAGES = ('en', 'hu', 'de')
DEFAULT_LANGUAGE = 'en'


def _clean(value):
    return value if isinstance(value, str) and value.strip() else ''


@dataclass(frozen=True)
class LocalizedText:
    en: str = ''
    hu: str = ''
    de: str = ''

    @classmethod
    def parse(cls, value, lang=DEFAULT_LANGUAGE):
        """Build from a stored JSON value; plain strings land in `lang`."""
        if isinstance(value, LocalizedText):
            return value
        if isinstance(value, dict):
            return cls(**{code: _clean(value.get(code)) for code in SUPPORTED_LANGUAGES})
        if isinstance(value, str) and value:
            if lang not in SUPPORTED_LANGUAGES:
                lang = DEFAULT_LANGUAGE
            return cls(**{lang: value})
        return cls()

    def get(self, lang=None, fallback=DEFAULT_LANGUAGE):
        values = self.to_dict()
        for code in (lang, fallback):
            if code in values and values[code].strip():
                return values[code]
        for code in SUPPORTED_LANGUAGES:
            if values[code].strip():
                return values[code]
        return ''

    def has_content(self):
        return any(v.strip() for v in self.to_dict().values())

    def missing(self, required=SUPPORTED_LANGUAGES):
        values = self.to_dict()
        return [code for code in required if not values.get(code, '').strip()]

    def merge(self, other):
        """Values from `other` win where present."""
        other = LocalizedText.parse(other)
        mine, theirs = self.to_dict(), other.to_dict()
        return LocalizedText(**{code: theirs[code] or mine[code] for code in SUPPORTED_LANGUAGES})

    def to_dict(self):
        return {'en': self.en, 'hu': self.hu, 'de': self.de}


def is_localized_text(value):
    """True for dicts whose keys are all supported language codes with string values."""
    if not isinstance(value, dict):
        return False
    return all(
        key in SUPPORTED_LANGUAGES and (isinstance(val, str) or val is None)
        for key, val in value.items()
    )


def localize(value, lang=None, fallback=DEFAULT_LANGUAGE):
    return LocalizedText.parse(value).get(lang, fallback)
