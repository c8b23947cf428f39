"""Canonical entity tables used by the fingerprint extractor.

Surface forms are normalized the same way titles are (lowercase alphanumeric
words), so "S&P 500" is stored as "s p 500" and matched on word boundaries.
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Tuple

CRYPTO_ALIASES: Dict[str, str] = {
    "btc": "BITCOIN",
    "xbt": "BITCOIN",
    "bitcoin": "BITCOIN",
    "eth": "ETHEREUM",
    "ether": "ETHEREUM",
    "ethereum": "ETHEREUM",
    "sol": "SOLANA",
    "solana": "SOLANA",
    "xrp": "XRP",
    "ripple": "XRP",
    "doge": "DOGECOIN",
    "dogecoin": "DOGECOIN",
    "ada": "CARDANO",
    "cardano": "CARDANO",
    "bnb": "BNB",
    "binance coin": "BNB",
    "avax": "AVALANCHE",
    "avalanche": "AVALANCHE",
    "matic": "POLYGON",
    "polygon": "POLYGON",
    "polkadot": "POLKADOT",
    "chainlink": "CHAINLINK",
    "ltc": "LITECOIN",
    "litecoin": "LITECOIN",
}

POLITICIAN_ALIASES: Dict[str, str] = {
    "trump": "DONALD_TRUMP",
    "donald trump": "DONALD_TRUMP",
    "donald j trump": "DONALD_TRUMP",
    "biden": "JOE_BIDEN",
    "joe biden": "JOE_BIDEN",
    "harris": "KAMALA_HARRIS",
    "kamala": "KAMALA_HARRIS",
    "kamala harris": "KAMALA_HARRIS",
    "desantis": "RON_DESANTIS",
    "newsom": "GAVIN_NEWSOM",
    "gavin newsom": "GAVIN_NEWSOM",
    "haley": "NIKKI_HALEY",
    "vance": "JD_VANCE",
    "jd vance": "JD_VANCE",
    "hegseth": "PETE_HEGSETH",
    "pete hegseth": "PETE_HEGSETH",
    "rfk jr": "RFK_JR",
    "robert f kennedy": "RFK_JR",
    "obama": "BARACK_OBAMA",
    "putin": "VLADIMIR_PUTIN",
    "zelensky": "VOLODYMYR_ZELENSKY",
    "zelenskyy": "VOLODYMYR_ZELENSKY",
    "xi jinping": "XI_JINPING",
    "netanyahu": "BENJAMIN_NETANYAHU",
    "macron": "EMMANUEL_MACRON",
    "starmer": "KEIR_STARMER",
    "trudeau": "JUSTIN_TRUDEAU",
    "carney": "MARK_CARNEY",
    "modi": "NARENDRA_MODI",
    "milei": "JAVIER_MILEI",
    "powell": "JEROME_POWELL",
    "jerome powell": "JEROME_POWELL",
}

MACRO_ALIASES: Dict[str, str] = {
    "gdp": "GDP",
    "gross domestic product": "GDP",
    "cpi": "CPI",
    "consumer price index": "CPI",
    "ppi": "PPI",
    "producer price index": "PPI",
    "pce": "PCE",
    "nfp": "NFP",
    "payrolls": "NFP",
    "nonfarm payrolls": "NFP",
    "non farm payrolls": "NFP",
    "jobs report": "NFP",
    "unemployment": "UNEMPLOYMENT_RATE",
    "unemployment rate": "UNEMPLOYMENT_RATE",
    "jobless rate": "UNEMPLOYMENT_RATE",
    "jobless claims": "JOBLESS_CLAIMS",
    "initial claims": "JOBLESS_CLAIMS",
    "inflation": "INFLATION",
    "interest rate": "INTEREST_RATE",
    "interest rates": "INTEREST_RATE",
    "fed rate": "FED_RATE",
    "fed funds": "FED_RATE",
    "federal funds": "FED_RATE",
    "fed funds rate": "FED_RATE",
    "fomc": "FOMC",
}

MARKET_ALIASES: Dict[str, str] = {
    "apple": "AAPL",
    "aapl": "AAPL",
    "alphabet": "GOOGL",
    "google": "GOOGL",
    "googl": "GOOGL",
    "amazon": "AMZN",
    "amzn": "AMZN",
    "microsoft": "MSFT",
    "msft": "MSFT",
    "tesla": "TSLA",
    "tsla": "TSLA",
    "nvidia": "NVDA",
    "nvda": "NVDA",
    "netflix": "NFLX",
    "sp500": "SP500",
    "s p 500": "SP500",
    "s p500": "SP500",
    "spx": "SP500",
    "nasdaq": "NASDAQ",
    "nasdaq 100": "NASDAQ",
    "dow jones": "DOW_JONES",
    "djia": "DOW_JONES",
    "gold": "GOLD",
    "oil": "OIL",
    "wti": "OIL",
}

EVENT_ALIASES: Dict[str, str] = {
    "election": "ELECTION",
    "presidential election": "US_PRESIDENTIAL_ELECTION",
    "midterms": "US_MIDTERMS",
    "midterm": "US_MIDTERMS",
    "super bowl": "SUPER_BOWL",
    "world cup": "WORLD_CUP",
    "world series": "WORLD_SERIES",
    "nba finals": "NBA_FINALS",
    "stanley cup": "STANLEY_CUP",
    "olympics": "OLYMPICS",
    "oscars": "OSCARS",
    "oscar": "OSCARS",
    "grammys": "GRAMMYS",
    "hurricane": "HURRICANE",
    "recession": "RECESSION",
    "government shutdown": "GOVERNMENT_SHUTDOWN",
    "shutdown": "GOVERNMENT_SHUTDOWN",
}

ENTITY_ALIASES: Dict[str, str] = {
    **CRYPTO_ALIASES,
    **POLITICIAN_ALIASES,
    **MACRO_ALIASES,
    **MARKET_ALIASES,
    **EVENT_ALIASES,
}

CRYPTO_ENTITIES: FrozenSet[str] = frozenset(CRYPTO_ALIASES.values())
POLITICIAN_ENTITIES: FrozenSet[str] = frozenset(POLITICIAN_ALIASES.values())
ELECTION_ENTITIES: FrozenSet[str] = frozenset(
    {"ELECTION", "US_PRESIDENTIAL_ELECTION", "US_MIDTERMS"}
)
MACRO_ENTITIES: FrozenSet[str] = frozenset(
    {
        "CPI",
        "GDP",
        "NFP",
        "FOMC",
        "FED_RATE",
        "UNEMPLOYMENT_RATE",
        "JOBLESS_CLAIMS",
        "INFLATION",
        "INTEREST_RATE",
        "PPI",
        "PCE",
    }
)

# Kalshi series prefixes carry the asset even when the title abbreviates it.
CRYPTO_TICKER_PREFIXES: Dict[str, str] = {
    "KXBTC": "BITCOIN",
    "KXETH": "ETHEREUM",
    "KXSOL": "SOLANA",
    "KXXRP": "XRP",
    "KXDOGE": "DOGECOIN",
}

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "by",
        "for",
        "from",
        "has",
        "have",
        "if",
        "in",
        "is",
        "it",
        "of",
        "on",
        "or",
        "the",
        "this",
        "to",
        "was",
        "what",
        "when",
        "which",
        "who",
        "will",
        "with",
        "yes",
        "no",
    }
)


_SURFACE_RE = re.compile(r"[a-z0-9]+")


def normalize_surface(surface: str) -> str:
    return " ".join(_SURFACE_RE.findall(surface.lower()))


@dataclass(frozen=True)
class EntityTables:
    """Alias and macro tables for one topic, defaults plus configured extras."""

    aliases: Mapping[str, str]
    macro_entities: FrozenSet[str]
    max_words: int


def entity_tables(
    extra_aliases: Iterable[Tuple[str, str]] = (),
    extra_macro_entities: Iterable[str] = (),
) -> EntityTables:
    aliases = dict(ENTITY_ALIASES)
    for surface, tag in extra_aliases:
        key = normalize_surface(surface)
        if key:
            aliases[key] = tag.upper()
    macro = MACRO_ENTITIES | frozenset(tag.upper() for tag in extra_macro_entities)
    return EntityTables(
        aliases=aliases,
        macro_entities=macro,
        max_words=max(len(alias.split()) for alias in aliases),
    )


DEFAULT_TABLES = entity_tables()
