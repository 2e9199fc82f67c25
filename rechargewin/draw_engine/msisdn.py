"""Helpers for normalizing subscriber MSISDNs."""

from __future__ import annotations

from ..errors import InvalidInput

DEFAULT_COUNTRY_CODE = "234"

# E.164 allows at most 15 digits; shorter than 8 cannot be a routable mobile number.
_MIN_DIGITS = 8
_MAX_DIGITS = 15
_SEPARATORS = " -().\t"


def normalize_msisdn(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Return ``raw`` as international digits without a leading ``+``.

    Parameters
    ----------
    raw : str
        MSISDN as received, e.g. ``"+234 803 123 4562"``, ``"08031234562"``
        or ``"2348031234562"``.
    country_code : str, default: "234"
        Code prepended to nationally formatted numbers (leading ``0``).

    Returns
    -------
    str
        Normalized MSISDN such as ``"2348031234562"``.

    Raises
    ------
    InvalidInput
        If ``raw`` is not a string or does not look like a phone number.
    """

    if raw is None:
        raise InvalidInput("msisdn must not be None")
    if not isinstance(raw, str):
        raise InvalidInput("msisdn must be a string")

    digits = raw.strip()
    for sep in _SEPARATORS:
        digits = digits.replace(sep, "")
    if digits.startswith("+"):
        digits = digits[1:]
    elif digits.startswith("00"):
        digits = digits[2:]
    elif digits.startswith("0"):
        digits = country_code + digits[1:]

    if not digits.isdigit():
        raise InvalidInput(f"msisdn contains non-digit characters: {mask_msisdn(raw)}")
    if not _MIN_DIGITS <= len(digits) <= _MAX_DIGITS:
        raise InvalidInput(
            f"msisdn must have between {_MIN_DIGITS} and {_MAX_DIGITS} digits"
        )
    return digits


def last_digit(msisdn: str) -> int:
    return int(msisdn[-1])


def mask_msisdn(msisdn: str) -> str:
    """Mask an MSISDN for logging (e.g. ``"234803***4562"``)."""

    if not isinstance(msisdn, str):
        return "***"
    if len(msisdn) > 7:
        return msisdn[:6] + "***" + msisdn[-4:]
    return "***"


__all__ = ["DEFAULT_COUNTRY_CODE", "last_digit", "mask_msisdn", "normalize_msisdn"]
