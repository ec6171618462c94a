"""Client address normalization for CRM contact and billing fields."""

from __future__ import annotations

import json
import re

# Country names as they arrive from the storefront (English, native and
# Ukrainian/Russian spellings) mapped to ISO 3166-1 alpha-2.
COUNTRY_CODES: dict[str, str] = {
    "poland": "PL", "polska": "PL", "польща": "PL", "польша": "PL",
    "ukraine": "UA", "україна": "UA", "украина": "UA",
    "germany": "DE", "deutschland": "DE", "німеччина": "DE",
    "france": "FR", "italy": "IT", "italia": "IT", "spain": "ES", "españa": "ES",
    "portugal": "PT", "netherlands": "NL", "the netherlands": "NL", "belgium": "BE",
    "luxembourg": "LU", "austria": "AT", "österreich": "AT", "switzerland": "CH",
    "czech republic": "CZ", "czechia": "CZ", "slovakia": "SK", "hungary": "HU",
    "romania": "RO", "bulgaria": "BG", "moldova": "MD", "lithuania": "LT",
    "latvia": "LV", "estonia": "EE", "finland": "FI", "sweden": "SE",
    "norway": "NO", "denmark": "DK", "ireland": "IE", "united kingdom": "GB",
    "great britain": "GB", "slovenia": "SI", "croatia": "HR", "serbia": "RS",
    "greece": "GR", "cyprus": "CY", "malta": "MT", "georgia": "GE",
    "turkey": "TR", "türkiye": "TR", "israel": "IL", "canada": "CA",
    "united states": "US", "united states of america": "US", "usa": "US",
    "kazakhstan": "KZ", "azerbaijan": "AZ", "armenia": "AM",
}

_ZIP_PATTERN = re.compile(r"^\d{2}-\d{3}$")
_NON_DIGITS = re.compile(r"\D")


def country_code(country: str) -> str:
    """Return an ISO-2 code: 2-letter input passes through, names are looked up.

    Unresolved names yield "".
    """
    country = country.strip()
    if not country:
        return ""
    if len(country) == 2:
        return country
    return COUNTRY_CODES.get(country.lower(), "")


def normalize_zip(zip_code: str) -> str:
    """Normalize a postal code to ``NN-NNN``.

    Codes already in that shape are kept. Otherwise only digits are kept,
    left-padded with zeros or truncated to five, and a dash is inserted.
    """
    zip_code = zip_code.strip()
    if _ZIP_PATTERN.match(zip_code):
        return zip_code
    digits = _NON_DIGITS.sub("", zip_code)
    digits = digits[:5].rjust(5, "0")
    return f"{digits[:2]}-{digits[2:]}"


def parse_tax_id(field_id: str, raw: str) -> str:
    """Extract a tax id from the storefront's JSON custom-field blob.

    Example: ``parse_tax_id("2", '{"2": "DE362155758"}') == "DE362155758"``.

    Raises:
        ValueError: ``raw`` is not a JSON object.
    """
    if not field_id or not raw:
        return ""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("custom field payload is not an object")
    value = data.get(field_id, "")
    return str(value).strip() if value is not None else ""


def digits_only(phone: str) -> str:
    return _NON_DIGITS.sub("", phone)
