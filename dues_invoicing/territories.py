from __future__ import annotations

from collections.abc import Iterable

TERRITORY_DELIMITER = ";"

US_STATE_CODES: dict[str, str] = {
    "alabama": "AL",
    "alaska": "AK",
    "arizona": "AZ",
    "arkansas": "AR",
    "california": "CA",
    "colorado": "CO",
    "connecticut": "CT",
    "delaware": "DE",
    "florida": "FL",
    "georgia": "GA",
    "hawaii": "HI",
    "idaho": "ID",
    "illinois": "IL",
    "indiana": "IN",
    "iowa": "IA",
    "kansas": "KS",
    "kentucky": "KY",
    "louisiana": "LA",
    "maine": "ME",
    "maryland": "MD",
    "massachusetts": "MA",
    "michigan": "MI",
    "minnesota": "MN",
    "mississippi": "MS",
    "missouri": "MO",
    "montana": "MT",
    "nebraska": "NE",
    "nevada": "NV",
    "new hampshire": "NH",
    "new jersey": "NJ",
    "new mexico": "NM",
    "new york": "NY",
    "north carolina": "NC",
    "north dakota": "ND",
    "ohio": "OH",
    "oklahoma": "OK",
    "oregon": "OR",
    "pennsylvania": "PA",
    "rhode island": "RI",
    "south carolina": "SC",
    "south dakota": "SD",
    "tennessee": "TN",
    "texas": "TX",
    "utah": "UT",
    "vermont": "VT",
    "virginia": "VA",
    "washington": "WA",
    "west virginia": "WV",
    "wisconsin": "WI",
    "wyoming": "WY",
}

CANADIAN_PROVINCE_CODES: dict[str, str] = {
    "alberta": "AB",
    "british columbia": "BC",
    "manitoba": "MB",
    "new brunswick": "NB",
    "newfoundland and labrador": "NL",
    "northwest territories": "NT",
    "nova scotia": "NS",
    "nunavut": "NU",
    "ontario": "ON",
    "prince edward island": "PE",
    "quebec": "QC",
    "saskatchewan": "SK",
    "yukon": "YT",
}

TERRITORY_CODES: dict[str, str] = {**US_STATE_CODES, **CANADIAN_PROVINCE_CODES}
KNOWN_CODES: frozenset[str] = frozenset(TERRITORY_CODES.values())


def normalize(name: str | None) -> str:
    cleaned = " ".join((name or "").split())
    if not cleaned:
        return ""

    code = TERRITORY_CODES.get(cleaned.lower())
    if code:
        return code
    if len(cleaned) == 2 and cleaned.upper() in KNOWN_CODES:
        return cleaned.upper()
    return cleaned


def split_territories(raw: str | None) -> list[str]:
    return [part.strip() for part in (raw or "").split(TERRITORY_DELIMITER) if part.strip()]


def _same_territory(left: str, right: str) -> bool:
    return left.casefold() == right.casefold()


def billable_territories(raw_lists: Iterable[str | None], home_territory: str | None) -> list[str]:
    """Normalized claimed territories, minus every entry matching the home territory."""
    home = normalize(home_territory)
    billable: list[str] = []
    for raw in raw_lists:
        for entry in split_territories(raw):
            code = normalize(entry)
            if home and _same_territory(code, home):
                continue
            billable.append(code)
    return billable


def excluded_territories(raw_lists: Iterable[str | None], home_territory: str | None) -> list[str]:
    home = normalize(home_territory)
    if not home:
        return []
    return [
        normalize(entry)
        for raw in raw_lists
        for entry in split_territories(raw)
        if _same_territory(normalize(entry), home)
    ]


def count_billable(raw: str | None, home_territory: str | None) -> int:
    return len(billable_territories([raw], home_territory))
