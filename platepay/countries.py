import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .errors import UnsupportedCountry


DEFAULT_COUNTRY = "UK"

# Characters the OCR engine should never emit for a plate.
CHAR_BLACKLIST = "!@#$%^&*()+=[]{}\\|;:\"',.<>?/~`"

_ALNUM = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


class Country(str, Enum):
    UK = "UK"
    US = "US"
    DE = "DE"
    FR = "FR"
    ES = "ES"
    IT = "IT"
    NL = "NL"
    AU = "AU"
    CA = "CA"
    JP = "JP"

    @classmethod
    def parse(cls, code) -> "Country":
        if isinstance(code, cls):
            return code
        try:
            return cls(str(code).strip().upper())
        except ValueError:
            raise UnsupportedCountry(code) from None


@dataclass(frozen=True)
class PlatePattern:
    regex: "re.Pattern"
    example: str
    priority: int

    def matches(self, text: str) -> bool:
        return self.regex.fullmatch(text) is not None


@dataclass(frozen=True)
class CountryProfile:
    code: str
    display_name: str
    patterns: Tuple[PlatePattern, ...]
    character_whitelist: str
    mistake_map: Mapping[str, str]
    formatter: Callable[[str], str]
    # Index of the space in the compact fixed-width format, if the country has one
    split_at: Optional[int] = None
    engine_mode: Optional[str] = None
    blacklist: str = field(default=CHAR_BLACKLIST)

    def format(self, plate: str) -> str:
        return self.formatter(plate)


def _pattern(source: str, example: str, priority: int) -> PlatePattern:
    if not (source.startswith("^") and source.endswith("$")):
        raise ValueError(f"Plate pattern must be anchored: {source}")
    return PlatePattern(re.compile(source), example, priority)


def _plain_format(plate: str) -> str:
    return plate.upper().strip()


_SEPARATORS = re.compile(r"[\s-]+")


def _layout_formatter(*layouts: Tuple[str, str]) -> Callable[[str], str]:
    """Render the bare plate characters in the first layout whose regex fits.

    Each layout is a regex over the plate with separators removed, and a
    template filled from its groups. The output depends only on the plate
    characters, so spaced and compact readings format the same way.
    """
    compiled = [(re.compile(source), template) for source, template in layouts]

    def format_plate(plate: str) -> str:
        bare = _SEPARATORS.sub("", plate.upper())
        for regex, template in compiled:
            m = regex.fullmatch(bare)
            if m:
                return template.format(*m.groups())
        return _plain_format(plate)

    return format_plate


_UK_LAYOUTS = (
    (re.compile(r"[A-Z]{2}[0-9]{2}[A-Z]{3}"), 4),  # current: AB12 CDE
    (re.compile(r"[A-Z][0-9]{3}[A-Z]{3}"), 4),  # prefix: A123 BCD
    (re.compile(r"[A-Z]{3}[0-9]{3}[A-Z]"), 3),  # suffix: ABC 123D
    (re.compile(r"[A-Z]{3}[0-9]{3,4}"), 3),  # dateless / Northern Ireland
)


def format_uk_plate(plate: str) -> str:
    compact = re.sub(r"\s+", "", plate.upper())
    for regex, split in _UK_LAYOUTS:
        if regex.fullmatch(compact):
            return f"{compact[:split]} {compact[split:]}"
    return compact


def _profile(code, name, patterns, whitelist, mistakes, formatter=_plain_format, **kw) -> CountryProfile:
    built = sorted((_pattern(*p) for p in patterns), key=lambda p: p.priority)
    if not built:
        raise ValueError(f"Country {code} needs at least one plate pattern")
    return CountryProfile(
        code=code,
        display_name=name,
        patterns=tuple(built),
        character_whitelist=whitelist,
        mistake_map=MappingProxyType(dict(mistakes)),
        formatter=formatter,
        **kw,
    )


_EU_MISTAKES = {"O": "0", "I": "1", "S": "5"}

# Display layouts, matched against the plate with separators removed
_US_FORMAT = _layout_formatter(
    (r"([A-Z0-9]{2})([A-Z0-9]{3})", "{}-{}"),
    (r"([A-Z0-9]{3})([A-Z0-9]{3,4})", "{}-{}"),
)
# The district code takes every letter except the last two: BMW1234 -> B-MW 1234
_DE_FORMAT = _layout_formatter((r"([A-Z]{1,3}?)([A-Z]{1,2})([0-9]{1,4})", "{}-{} {}"))
_FR_IT_FORMAT = _layout_formatter((r"([A-Z]{2})([0-9]{3})([A-Z]{2})", "{}-{}-{}"))
_ES_FORMAT = _layout_formatter((r"([0-9]{4})([A-Z]{3})", "{}-{}"))
_NL_FORMAT = _layout_formatter(
    (r"([0-9]{2})([A-Z]{2})([0-9]{2})", "{}-{}-{}"),
    (r"([A-Z]{2})([0-9]{2})([A-Z]{2})", "{}-{}-{}"),
)
_AU_FORMAT = _layout_formatter((r"([A-Z]{3})([0-9]{3})", "{}-{}"), (r"([0-9]{3})([A-Z]{3})", "{}-{}"))
_CA_FORMAT = _layout_formatter((r"([A-Z]{4})([0-9]{3})", "{}-{}"), (r"([A-Z]{3})([0-9]{4})", "{}-{}"))
_JP_FORMAT = _layout_formatter(
    (r"([0-9]{2,3})([0-9]{2})([0-9]{2})", "{}-{}-{}"),
    (r"([0-9]{4,5})", "{}"),
)

COUNTRY_PROFILES: Dict[Country, CountryProfile] = {
    Country.UK: _profile(
        "UK",
        "United Kingdom",
        [
            (r"^[A-Z]{2}[0-9]{2}\s[A-Z]{3}$", "AB12 CDE", 1),
            (r"^[A-Z]{2}[0-9]{2}[A-Z]{3}$", "AB12CDE", 1),
            (r"^[A-Z][0-9]{3}\s[A-Z]{3}$", "A123 BCD", 2),
            (r"^[A-Z][0-9]{3}[A-Z]{3}$", "A123BCD", 2),
            (r"^[A-Z]{3}\s[0-9]{3}[A-Z]$", "ABC 123D", 3),
            (r"^[A-Z]{3}[0-9]{3}[A-Z]$", "ABC123D", 3),
            (r"^[A-Z]{3}\s[0-9]{3}$", "ABC 123", 4),
            (r"^[A-Z]{3}[0-9]{3}$", "ABC123", 4),
            (r"^[A-Z]{3}\s[0-9]{4}$", "ABC 1234", 5),
            (r"^[A-Z]{3}[0-9]{4}$", "ABC1234", 5),
        ],
        _ALNUM + " ",
        # Only letters that never appear where the current format expects them
        {"O": "0", "Q": "0", "I": "1"},
        formatter=format_uk_plate,
        split_at=4,
        engine_mode="lstm",
    ),
    Country.US: _profile(
        "US",
        "United States",
        [
            (r"^[A-Z0-9]{2,3}[-\s][A-Z0-9]{3,4}$", "ABC-1234", 1),
            (r"^[A-Z0-9]{6,7}$", "ABC1234", 2),
            (r"^[0-9]{1,3}[-\s][A-Z]{3}$", "123-ABC", 3),
        ],
        _ALNUM + "- ",
        {"O": "0", "I": "1", "S": "5", "Z": "2", "B": "8"},
        formatter=_US_FORMAT,
    ),
    Country.DE: _profile(
        "DE",
        "Germany",
        [
            (r"^[A-Z]{1,3}[-\s][A-Z]{1,2}[-\s][0-9]{1,4}$", "B-MW 1234", 1),
            (r"^[A-Z]{1,3}[A-Z]{1,2}[0-9]{1,4}$", "BMW1234", 2),
        ],
        _ALNUM + "- ",
        _EU_MISTAKES,
        formatter=_DE_FORMAT,
    ),
    Country.FR: _profile(
        "FR",
        "France",
        [
            (r"^[A-Z]{2}[-\s][0-9]{3}[-\s][A-Z]{2}$", "AB-123-CD", 1),
            (r"^[A-Z]{2}[0-9]{3}[A-Z]{2}$", "AB123CD", 2),
        ],
        _ALNUM + "- ",
        _EU_MISTAKES,
        formatter=_FR_IT_FORMAT,
    ),
    Country.ES: _profile(
        "ES",
        "Spain",
        [
            (r"^[0-9]{4}[-\s][A-Z]{3}$", "1234-ABC", 1),
            (r"^[0-9]{4}[A-Z]{3}$", "1234ABC", 2),
        ],
        _ALNUM + "- ",
        _EU_MISTAKES,
        formatter=_ES_FORMAT,
    ),
    Country.IT: _profile(
        "IT",
        "Italy",
        [
            (r"^[A-Z]{2}[-\s][0-9]{3}[-\s][A-Z]{2}$", "AB-123-CD", 1),
            (r"^[A-Z]{2}[0-9]{3}[A-Z]{2}$", "AB123CD", 2),
        ],
        _ALNUM + "- ",
        _EU_MISTAKES,
        formatter=_FR_IT_FORMAT,
    ),
    Country.NL: _profile(
        "NL",
        "Netherlands",
        [
            (r"^[0-9]{2}[-\s][A-Z]{2}[-\s][0-9]{2}$", "12-AB-34", 1),
            (r"^[A-Z]{2}[-\s][0-9]{2}[-\s][A-Z]{2}$", "AB-12-CD", 2),
        ],
        _ALNUM + "- ",
        _EU_MISTAKES,
        formatter=_NL_FORMAT,
    ),
    Country.AU: _profile(
        "AU",
        "Australia",
        [
            (r"^[A-Z]{3}[-\s][0-9]{3}$", "ABC-123", 1),
            (r"^[A-Z]{3}[0-9]{3}$", "ABC123", 2),
            (r"^[0-9]{3}[-\s][A-Z]{3}$", "123-ABC", 3),
        ],
        _ALNUM + "- ",
        _EU_MISTAKES,
        formatter=_AU_FORMAT,
    ),
    Country.CA: _profile(
        "CA",
        "Canada",
        [
            (r"^[A-Z]{4}[-\s][0-9]{3}$", "ABCD-123", 1),
            (r"^[A-Z]{3}[-\s][0-9]{4}$", "ABC-1234", 2),
        ],
        _ALNUM + "- ",
        _EU_MISTAKES,
        formatter=_CA_FORMAT,
    ),
    Country.JP: _profile(
        "JP",
        "Japan",
        [
            (r"^[0-9]{2,3}[-\s][0-9]{2}[-\s][0-9]{2}$", "123-45-67", 1),
            (r"^[0-9]{4,6}$", "123456", 2),
        ],
        "0123456789- ",
        _EU_MISTAKES,
        formatter=_JP_FORMAT,
    ),
}


def get_profile(code=DEFAULT_COUNTRY) -> CountryProfile:
    if isinstance(code, CountryProfile):
        return code
    try:
        return COUNTRY_PROFILES[Country.parse(code)]
    except UnsupportedCountry:
        logging.warning("Country %r not supported, using %s patterns", code, DEFAULT_COUNTRY)
        return COUNTRY_PROFILES[Country(DEFAULT_COUNTRY)]


def example_formats(code=DEFAULT_COUNTRY) -> List[str]:
    profile = get_profile(code)
    return [p.example for p in profile.patterns]


def supported_countries() -> List[dict]:
    return [
        {"code": c.value, "name": p.display_name, "patterns": [pat.example for pat in p.patterns]}
        for c, p in COUNTRY_PROFILES.items()
    ]


def validate(plate: str, code=DEFAULT_COUNTRY) -> bool:
    """True if the cleaned plate, spaced or compact, fully matches one of the country's patterns."""
    from .extract import clean_text, matching_variant

    profile = get_profile(code)
    return matching_variant(clean_text(plate or "", profile), profile) is not None
