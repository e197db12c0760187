"""
Best-effort translation of free text into Scryfall syntax without any AI.

Used when the translation service times out or fails so the user still
gets a usable search. Matching is done on whole words against fixed
vocabularies, so the cost is linear in the number of words.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

from .query_validator import extract_search_keys, normalize_whitespace, repair_query, validate

logger = logging.getLogger(__name__)

# Returned when the input has no searchable words at all
DEFAULT_FALLBACK_QUERY = "mv>=0"

# Exact searches offered as guides and archetype shortcuts in the UI
PRETRANSLATED: Dict[str, str] = {
    "dragons": "t:dragon",
    "mono red creatures": "id=r t:creature",
    "budget board wipes under $5": "otag:boardwipe usd<5",
    "commander staples under $3": "f:commander usd<3",
    "creatures with flying and deathtouch": "t:creature kw:flying kw:deathtouch",
    "green ramp spells that search for lands": 'c:g otag:mana-ramp o:"search your library" o:"basic land"',
    "cards that double etb effects": 'o:"enters the battlefield" o:"triggers an additional time"',
    "utility lands for commander in esper under $5": "t:land -t:basic id<=wub f:commander usd<5",
    "landfall cards legal in commander": "otag:landfall f:commander",
    "treasure token cards legal in commander": 'o:"treasure" o:"token" f:commander',
    "chaos cards legal in commander": '(o:"coin" or o:"random" or o:"chaos") f:commander',
    "tribal lords legal in commander": "(otag:lord or otag:anthem) f:commander",
    "selesnya cards that create creature tokens for commander": 'id<=gw o:"create" o:"token" f:commander',
    "simic creatures with infect or proliferate for commander": 'id<=gu (kw:infect or o:"proliferate") f:commander',
    "azorius counterspells or board wipes or removal for commander":
        "id<=wu (otag:counter or otag:boardwipe or otag:removal) f:commander",
}

SLANG: Dict[str, str] = {
    "mana rocks": 't:artifact o:"add" o:"{"',
    "mana rock": 't:artifact o:"add" o:"{"',
    "mana dorks": 't:creature o:"add" o:"{"',
    "mana dork": 't:creature o:"add" o:"{"',
    "board wipes": "otag:boardwipe",
    "board wipe": "otag:boardwipe",
    "boardwipe": "otag:boardwipe",
    "boardwipes": "otag:boardwipe",
    "counterspells": "otag:counter",
    "counterspell": "otag:counter",
    "card draw": "otag:draw",
    "ramp": "otag:ramp",
    "removal": "otag:removal",
    "tutor": "otag:tutor",
    "tutors": "otag:tutor",
    "lifegain": "otag:lifegain",
    "mill": "otag:mill",
    "blink": "otag:blink",
    "flicker": "otag:flicker",
    "reanimation": "otag:reanimate",
    "reanimate": "otag:reanimate",
    "treasure tokens": 'o:"create" o:"treasure"',
    "treasure token": 'o:"create" o:"treasure"',
    "treasure": 'o:"treasure"',
    "aristocrats": 'o:"when" o:"dies"',
    "voltron": "(t:equipment or t:aura)",
    "spellslinger": "(t:instant or t:sorcery)",
    "tokens": 'o:"create" o:"token"',
    "sacrifice": 'o:"sacrifice"',
}

GUILDS: Dict[str, str] = {
    "azorius": "id<=wu",
    "dimir": "id<=ub",
    "rakdos": "id<=br",
    "gruul": "id<=rg",
    "selesnya": "id<=gw",
    "orzhov": "id<=wb",
    "izzet": "id<=ur",
    "golgari": "id<=bg",
    "boros": "id<=rw",
    "simic": "id<=gu",
}

COLORS: Dict[str, str] = {
    "white": "c:w",
    "blue": "c:u",
    "black": "c:b",
    "red": "c:r",
    "green": "c:g",
    "colorless": "c:c",
}

TYPES: Dict[str, str] = {
    "creature": "t:creature",
    "creatures": "t:creature",
    "artifact": "t:artifact",
    "artifacts": "t:artifact",
    "enchantment": "t:enchantment",
    "enchantments": "t:enchantment",
    "instant": "t:instant",
    "instants": "t:instant",
    "sorcery": "t:sorcery",
    "sorceries": "t:sorcery",
    "planeswalker": "t:planeswalker",
    "planeswalkers": "t:planeswalker",
    "land": "t:land",
    "lands": "t:land",
    "equipment": "t:equipment",
    "equipments": "t:equipment",
    "aura": "t:aura",
    "auras": "t:aura",
}

FORMATS: Dict[str, str] = {
    "commander": "f:commander",
    "edh": "f:commander",
    "standard": "f:standard",
    "modern": "f:modern",
    "pioneer": "f:pioneer",
    "legacy": "f:legacy",
    "vintage": "f:vintage",
    "pauper": "f:pauper",
    "brawl": "f:brawl",
    "historic": "f:historic",
}

KEYWORDS: Dict[str, str] = {
    "first strike": "kw:first-strike",
    "double strike": "kw:double-strike",
    "flying": "kw:flying",
    "trample": "kw:trample",
    "deathtouch": "kw:deathtouch",
    "lifelink": "kw:lifelink",
    "haste": "kw:haste",
    "vigilance": "kw:vigilance",
    "menace": "kw:menace",
    "reach": "kw:reach",
    "hexproof": "kw:hexproof",
    "indestructible": "kw:indestructible",
    "flash": "kw:flash",
    "defender": "kw:defender",
    "infect": "kw:infect",
    "prowess": "kw:prowess",
    "ward": "kw:ward",
    "cascade": "kw:cascade",
}

COSTS: Dict[str, str] = {
    "cheap": "mv<=3",
    "low": "mv<=2",
    "expensive": "mv>=6",
    "high": "mv>=5",
}

FILLER_WORDS = frozenset({
    "that", "the", "with", "for", "and", "or", "a", "an", "in", "of", "to",
    "make", "produce", "spell", "spells", "bonus", "bonuses", "reward", "casting",
    "give", "gives", "when", "die", "dies", "deal", "drain", "legal",
    "card", "cards", "piece", "pieces",
})

# Boolean operators carry no search meaning on their own
OPERATOR_WORDS = frozenset({"or", "and", "not"})

# Words keep inner apostrophes ("can't") but never a leading or trailing one
_WORD = re.compile(r"[\w+\-]+(?:'\w+)*")

_MULTI_WORD_KEYWORDS = {phrase: syntax for phrase, syntax in KEYWORDS.items() if " " in phrase}
_SINGLE_WORD_KEYWORDS = {phrase: syntax for phrase, syntax in KEYWORDS.items() if " " not in phrase}
_SLANG_LONGEST_FIRST = sorted(SLANG.items(), key=lambda item: len(item[0]), reverse=True)


def _consume(words: List[Optional[str]], phrase: str) -> bool:
    """Blank out every occurrence of a phrase in the remaining words"""
    target = phrase.split()
    size = len(target)
    found = False
    for start in range(len(words) - size + 1):
        if words[start:start + size] == target:
            words[start:start + size] = [None] * size
            found = True
    return found


def _extract(words: List[Optional[str]], table: Sequence, parts: List[str]):
    for phrase, syntax in table:
        if _consume(words, phrase) and syntax not in parts:
            parts.append(syntax)


def _is_operator(word: str) -> bool:
    return word.lower() in OPERATOR_WORDS or not word.strip("+-")


def _looks_like_search_syntax(text: str) -> bool:
    return bool(extract_search_keys(text)) and validate(text).valid


def build_client_fallback_query(free_text: str) -> str:
    """
    Build a Scryfall query from natural language using fixed vocabularies.

    Never raises and never returns an empty string for non-empty input.
    Returns an empty string only when the input is empty or whitespace.

    >>> build_client_fallback_query("cheap green creatures with trample")
    'c:g t:creature kw:trample mv<=3'
    """
    text = normalize_whitespace(free_text or "")
    if not text:
        return ""

    lower = text.lower()
    if lower in PRETRANSLATED:
        return PRETRANSLATED[lower]

    # Already written in search syntax; pass through untouched
    if _looks_like_search_syntax(text):
        return text

    original_words = [word for word in _WORD.findall(text) if not _is_operator(word)]
    words: List[Optional[str]] = [word.lower() for word in original_words]
    if not words:
        logger.debug("No searchable words in fallback input, using default query")
        return DEFAULT_FALLBACK_QUERY

    parts: List[str] = []
    _extract(words, _MULTI_WORD_KEYWORDS.items(), parts)
    _extract(words, _SLANG_LONGEST_FIRST, parts)
    _extract(words, GUILDS.items(), parts)
    _extract(words, COLORS.items(), parts)
    _extract(words, TYPES.items(), parts)
    _extract(words, FORMATS.items(), parts)
    _extract(words, _SINGLE_WORD_KEYWORDS.items(), parts)
    _extract(words, COSTS.items(), parts)

    residual = " ".join(word for word in words if word and word not in FILLER_WORDS)
    if len(residual) > 2:
        parts.append(f'o:"{residual}"')

    if parts:
        query = " ".join(parts)
    else:
        # Nothing recognized; search card names with the user's own words
        query = " ".join(original_words)

    repaired = repair_query(query).sanitized
    return repaired or DEFAULT_FALLBACK_QUERY
