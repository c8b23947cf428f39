"""Race signals for election markets.

A race is identified by country, office, year and, for state-level races,
the US state. Keywords are matched on whole words of the normalized title,
so "presidential" never yields a state and "in" is never Indiana.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from marketlink.aliases import POLITICIAN_ENTITIES
from marketlink.fingerprint import words
from marketlink.models import ScoredMarket

UNKNOWN = "UNKNOWN"

# Checked in order; the first country with a keyword in the title wins.
COUNTRY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "US": (
        "united states",
        "america",
        "usa",
        "u s",
        "american",
        "federal",
        "congress",
        "senate",
        "white house",
    ),
    "UK": (
        "united kingdom",
        "britain",
        "british",
        "uk",
        "u k",
        "england",
        "parliament",
        "westminster",
        "downing street",
    ),
    "FRANCE": ("france", "french", "elysee", "macron", "le pen"),
    "GERMANY": ("germany", "german", "bundestag", "chancellor"),
    "CANADA": ("canada", "canadian", "trudeau", "carney", "ottawa"),
    "AUSTRALIA": ("australia", "australian", "canberra"),
    "MEXICO": ("mexico", "mexican"),
    "BRAZIL": ("brazil", "brazilian", "bolsonaro", "lula"),
    "INDIA": ("india", "indian", "modi", "lok sabha"),
    "JAPAN": ("japan", "japanese"),
    "SOUTH_KOREA": ("south korea", "korean", "seoul"),
}
US_DEFAULT_TERMS = (
    "president",
    "presidential",
    "presidency",
    "congress",
    "congressional",
    "senate",
    "governor",
    "electoral",
)

OFFICE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "VICE_PRESIDENT": ("vice president", "vp", "veep", "running mate"),
    "PRESIDENT": ("president", "presidential", "potus", "white house", "oval office"),
    "SENATE": ("senate", "senator", "senatorial"),
    "GOVERNOR": ("governor", "governorship", "gubernatorial"),
    "HOUSE": ("house of representatives", "house", "congressional", "representative"),
    "PRIME_MINISTER": ("prime minister", "premier", "pm"),
    "MAYOR": ("mayor", "mayoral", "city hall"),
    "PARTY_CONTROL": ("control", "flip", "majority", "trifecta"),
}
# Chamber races and chamber control markets describe the same outcome.
RELATED_OFFICES = frozenset(
    {
        ("HOUSE", "PARTY_CONTROL"),
        ("PARTY_CONTROL", "HOUSE"),
        ("SENATE", "PARTY_CONTROL"),
        ("PARTY_CONTROL", "SENATE"),
    }
)

US_STATES: Dict[str, str] = {
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
    "washington dc": "DC",
    "district of columbia": "DC",
}

_ELECTION_YEAR_RE = re.compile(r"\b(20[2-3]\d)\b")


@dataclass(frozen=True)
class RaceSignals:
    country: str
    office: str
    year: Optional[int]
    state: Optional[str]
    candidates: Tuple[str, ...]

    @property
    def known(self) -> bool:
        return self.country != UNKNOWN or self.office != UNKNOWN

    @property
    def race_key(self) -> str:
        parts = [self.country, self.office, str(self.year) if self.year else "null"]
        if self.state:
            parts.append(self.state)
        return "|".join(parts)


def _has_phrase(text: str, phrase: str) -> bool:
    return f" {phrase} " in text


def extract_country(text: str) -> str:
    for country, keywords in COUNTRY_KEYWORDS.items():
        if any(_has_phrase(text, keyword) for keyword in keywords):
            return country
    if any(_has_phrase(text, term) for term in US_DEFAULT_TERMS):
        return "US"
    return UNKNOWN


def extract_office(text: str) -> str:
    for office, keywords in OFFICE_KEYWORDS.items():
        if any(_has_phrase(text, keyword) for keyword in keywords):
            return office
    return UNKNOWN


def extract_state(text: str) -> Optional[str]:
    # Longest names first so "west virginia" is not read as Virginia.
    for name in sorted(US_STATES, key=len, reverse=True):
        if _has_phrase(text, name):
            return US_STATES[name]
    return None


def race_signals(item: ScoredMarket) -> RaceSignals:
    title = item.market.title or ""
    text = f" {' '.join(words(title))} "
    match = _ELECTION_YEAR_RE.search(title)
    if match:
        year: Optional[int] = int(match.group(1))
    elif item.market.close_time is not None:
        year = item.market.close_time.year
    else:
        year = None
    candidates = tuple(e for e in item.fingerprint.entities if e in POLITICIAN_ENTITIES)
    return RaceSignals(
        country=extract_country(text),
        office=extract_office(text),
        year=year,
        state=extract_state(text),
        candidates=candidates,
    )


def offices_compatible(left: str, right: str) -> bool:
    if UNKNOWN in (left, right) or left == right:
        return True
    return (left, right) in RELATED_OFFICES

