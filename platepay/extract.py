import logging
import re
from typing import Iterator, List, Optional

from .countries import DEFAULT_COUNTRY, CountryProfile, get_profile


_DISALLOWED = re.compile(r"[^A-Za-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_PLATE_CHAR = re.compile(r"[A-Z0-9]")
_DIGIT = re.compile(r"[0-9]")

MIN_PLATE_CHARS = 5
MAX_PLATE_CHARS = 8
# Plates embedded in label text ("REG NO: AB12 CDE") span at most this many tokens
MAX_WINDOW_TOKENS = 3
FIXED_WIDTH = 7


def clean_text(raw: str, profile: CountryProfile) -> str:
    """Strip symbols, uppercase and apply the country's OCR mistake map."""
    text = _DISALLOWED.sub("", raw or "").strip().upper()
    for wrong, right in profile.mistake_map.items():
        text = text.replace(wrong, right)
    return text


def _plausible_length(text: str) -> bool:
    n = len(_PLATE_CHAR.findall(text))
    return MIN_PLATE_CHARS <= n <= MAX_PLATE_CHARS


def _lines(raw: str) -> List[str]:
    return [line.strip() for line in (raw or "").splitlines() if line.strip()]


def _windows(line: str) -> List[str]:
    """Runs of up to MAX_WINDOW_TOKENS tokens, widest first, that contain a digit as read."""
    tokens = _DISALLOWED.sub("", line).split()
    out = []
    for width in range(min(MAX_WINDOW_TOKENS, len(tokens) - 1), 0, -1):
        for start in range(len(tokens) - width + 1):
            window = " ".join(tokens[start:start + width])
            # checked before the mistake map so words like "ONLY" stay words
            if _DIGIT.search(window) and window not in out:
                out.append(window)
    return out


def _spacing_variants(candidate: str, profile: CountryProfile) -> Iterator[str]:
    compact = _WHITESPACE.sub("", candidate)
    variants = [candidate, compact]
    if profile.split_at and len(compact) == FIXED_WIDTH:
        variants.append(f"{compact[:profile.split_at]} {compact[profile.split_at:]}")
    # compact readings of separated layouts, e.g. NL "AB12CD"
    variants.append(profile.format(candidate))
    seen = set()
    for variant in variants:
        if variant not in seen:
            seen.add(variant)
            yield variant


def _first_match(candidates: List[str], profile: CountryProfile) -> Optional[str]:
    for pattern in profile.patterns:
        for candidate in candidates:
            for variant in _spacing_variants(candidate, profile):
                if _plausible_length(variant) and pattern.matches(variant):
                    return variant
    return None


def matching_variant(text: str, profile: CountryProfile) -> Optional[str]:
    """The spacing variant of a cleaned plate that fits the highest-priority pattern, if any."""
    return _first_match([text], profile)


def extract_plate(raw_text: str, country=DEFAULT_COUNTRY) -> Optional[str]:
    """Return the first formatted plate found in multi-line OCR text.

    Lines are scanned in order. Within a line every pattern, in priority
    order, is tried against the whole cleaned line under its spacing
    variants. Only when none fits are shorter token windows tried, and only
    windows that contain a digit. ``country`` is a code or a resolved
    CountryProfile.
    """
    profile = get_profile(country)
    for line in _lines(raw_text):
        cleaned = clean_text(line, profile)
        if not cleaned:
            continue
        match = _first_match([cleaned], profile)
        if match is None:
            match = _first_match([clean_text(w, profile) for w in _windows(line)], profile)
        if match is not None:
            plate = profile.format(match)
            logging.debug("Extracted %s plate %s from line %r", profile.code, plate, line)
            return plate
    return None
