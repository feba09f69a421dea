"""Country name to ISO code mapping used to route PayPal payments."""
from typing import Optional

_ALIASES = {
    "usa": "US",
    "us": "US",
    "united states": "US",
    "united states of america": "US",
    "uk": "GB",
    "united kingdom": "GB",
    "england": "GB",
    "great britain": "GB",
}

COUNTRIES = {
    "Australia": "AU",
    "Austria": "AT",
    "Belgium": "BE",
    "Canada": "CA",
    "Croatia": "HR",
    "Czech Republic": "CZ",
    "Denmark": "DK",
    "Finland": "FI",
    "France": "FR",
    "Germany": "DE",
    "Greece": "GR",
    "Hungary": "HU",
    "Ireland": "IE",
    "Italy": "IT",
    "Liechtenstein": "LI",
    "Luxembourg": "LU",
    "Netherlands": "NL",
    "New Zealand": "NZ",
    "Norway": "NO",
    "Poland": "PL",
    "Portugal": "PT",
    "Romania": "RO",
    "Slovakia": "SK",
    "Slovenia": "SI",
    "Spain": "ES",
    "Sweden": "SE",
    "Switzerland": "CH",
    "United Kingdom": "GB",
    "United States": "US",
}

_BY_LOWER = {name.lower(): code for name, code in COUNTRIES.items()}


def get_country_code(country_name: Optional[str]) -> str:
    """ISO code for a country name; unknown or empty names fall back to US."""
    if not country_name:
        return "US"
    key = country_name.strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    return _BY_LOWER.get(key, "US")


def is_usa_country(country_name: Optional[str]) -> bool:
    return get_country_code(country_name) == "US"
