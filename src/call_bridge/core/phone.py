"""Phone number normalization and SIP addressing.

Numbers are compared in E.164 form with a single country-code convention:
ten-digit numbers are treated as North American and receive a ``+1`` prefix.
"""

from __future__ import annotations

import re
from typing import Callable, Iterator


_NON_DIGITS = re.compile(r"\D")

MIN_DIGITS = 10
MAX_DIGITS = 15


def digits_of(value: str | None) -> str:
    """Strip everything but digits."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


def normalize_phone(value: str | None) -> str | None:
    """Normalize a phone number to E.164.

    Args:
        value: Phone number in any common format

    Returns:
        E.164 string (``+18005551234``) or None if the input is malformed.
    """
    digits = digits_of(value)

    if len(digits) < MIN_DIGITS or len(digits) > MAX_DIGITS:
        return None

    if len(digits) == 10:
        return f"+1{digits}"

    if len(digits) == 11:
        # Eleven digits are only valid as a NANP number with its country code
        if digits.startswith("1"):
            return f"+{digits}"
        return None

    return f"+{digits}"


def national_number(e164: str) -> str:
    """National significant number for NANP numbers, digits otherwise."""
    digits = digits_of(e164)
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def comparison_variants(e164: str) -> list[str]:
    """Formats a stored phone field may use for the same number.

    Stored records are written by other flows and are not guaranteed
    to be normalized, so lookups match any of these.
    """
    variants = [e164, e164.lstrip("+")]
    national = national_number(e164)
    if national not in variants:
        variants.append(national)
    return variants


# =============================================================================
# SIP URI encoders
# =============================================================================


SipUriEncoder = Callable[[str, str], str]


def encode_digits_only(e164: str, domain: str) -> str:
    """``sip:8005551234@domain``"""
    return f"sip:{national_number(e164)}@{domain}"


def encode_e164_plus(e164: str, domain: str) -> str:
    """``sip:+18005551234@domain``"""
    return f"sip:{e164}@{domain}"


def encode_e164_no_plus(e164: str, domain: str) -> str:
    """``sip:18005551234@domain``"""
    return f"sip:{e164.lstrip('+')}@{domain}"


# Transfer attempts follow this order
SIP_URI_ENCODERS: tuple[SipUriEncoder, ...] = (
    encode_digits_only,
    encode_e164_plus,
    encode_e164_no_plus,
)


def iter_sip_uris(
    e164: str,
    domain: str,
    encoders: tuple[SipUriEncoder, ...] = SIP_URI_ENCODERS,
) -> Iterator[str]:
    """Lazily yield distinct SIP URIs for a number, in priority order."""
    seen: set[str] = set()
    for encoder in encoders:
        uri = encoder(e164, domain)
        if uri in seen:
            continue
        seen.add(uri)
        yield uri


def is_sip_uri(value: str | None) -> bool:
    """Whether a to/from field holds a SIP address rather than a number."""
    return bool(value) and value.lower().startswith("sip:")
