"""
Structural validation and normalization of Scryfall search syntax.

Every routine here walks the query once, left to right, keeping a few
counters and flags. Nothing hands user input to a backtracking pattern,
so run time stays linear in the input length however hostile it is.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..config import MAX_QUERY_LENGTH
from ..models.search import FilterState, ValidationReport


# Search keys Scryfall understands (colors, types, costs, stats, sets,
# rarity, legality, predicates, prices, artist/flavor, frame details,
# dates, language, ordering directives and tag namespaces)
VALID_SEARCH_KEYS = frozenset({
    "c", "color", "id", "identity", "ci", "o", "oracle", "fo", "t", "type",
    "m", "mana", "cmc", "mv", "manavalue", "devotion", "produces",
    "power", "pow", "toughness", "tou", "pt", "powtou", "loyalty", "loy",
    "e", "set", "s", "edition", "cn", "number", "b", "block", "st", "cube",
    "r", "rarity", "f", "format", "legal", "banned", "restricted",
    "is", "not", "has", "kw", "keyword",
    "usd", "eur", "tix",
    "a", "artist", "ft", "flavor", "wm", "watermark",
    "border", "frame", "game", "stamp",
    "year", "date", "new", "prints", "lang", "language", "in",
    "order", "direction", "unique", "prefer", "include",
    "name",
    "otag", "oracletag", "function", "art", "atag", "arttag",
})

EMPTY_QUERY_ISSUE = "Query is empty"
UNBALANCED_PARENS_ISSUE = "Unbalanced parentheses"
UNBALANCED_DOUBLE_QUOTES_ISSUE = "Unbalanced double quotes"
UNBALANCED_SINGLE_QUOTES_ISSUE = "Unbalanced single quotes"
OR_GROUPS_NORMALIZED_ISSUE = "Normalized OR groups with parentheses"

# NUL, C0 control characters other than tab/newline/carriage return, DEL,
# and zero-width characters
_STRIP_TABLE = dict.fromkeys(
    [*range(0x00, 0x09), 0x0B, 0x0C, *range(0x0E, 0x20), 0x7F, 0x200B, 0x200C, 0x200D, 0xFEFF]
)

_YEAR_AS_SET = re.compile(r"\be:(\d{4})\b", re.IGNORECASE)

# UI sort field -> Scryfall order value
_SORT_FIELDS = {
    "name": "name",
    "cmc": "cmc",
    "price": "usd",
    "rarity": "rarity",
    "edhrec": "edhrec",
}


@dataclass
class _Scan:
    keys: List[str] = field(default_factory=list)
    depth: int = 0
    went_negative: bool = False
    double_quotes: int = 0
    single_quotes: int = 0
    open_regex: bool = False

    @property
    def parens_balanced(self) -> bool:
        return not self.went_negative and self.depth == 0


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _is_apostrophe(query: str, index: int) -> bool:
    """A single quote between word characters, or closing a word ("Thassa's", "Praetors'")"""
    if index == 0 or not _is_word_char(query[index - 1]):
        return False
    if index + 1 == len(query):
        return True
    after = query[index + 1]
    return _is_word_char(after) or after.isspace()


def _scan(query: str) -> _Scan:
    """Single pass collecting search keys and bracket/quote counts outside literals"""
    result = _Scan()
    word_start = -1
    in_quote = False
    in_regex = False
    prev = " "

    for index, ch in enumerate(query):
        if in_regex:
            if ch == "/" and prev != "\\":
                in_regex = False
        elif ch == '"':
            result.double_quotes += 1
            in_quote = not in_quote
        elif in_quote:
            pass
        elif _is_word_char(ch):
            if word_start < 0:
                word_start = index
            prev = ch
            continue
        elif ch in ":=<>" or (ch == "!" and query[index + 1:index + 2] == "="):
            if word_start >= 0:
                word = query[word_start:index]
                if word.isascii() and word.isalpha():
                    result.keys.append(word.lower())
        elif ch == "/" and prev in ":=":
            in_regex = True
        elif ch == "(":
            result.depth += 1
        elif ch == ")":
            result.depth -= 1
            if result.depth < 0:
                result.went_negative = True
        elif ch == "'":
            if not _is_apostrophe(query, index):
                result.single_quotes += 1

        word_start = -1
        prev = ch

    result.open_regex = in_regex
    return result


def normalize_whitespace(text: str) -> str:
    """Fold line breaks and whitespace runs into single spaces and trim"""
    return " ".join(text.split())


def sanitize_input(text: str) -> str:
    """
    Strip characters that never belong in a search box.

    Removes NUL bytes, control characters and zero-width characters, then
    collapses whitespace.
    """
    return normalize_whitespace(text.translate(_STRIP_TABLE))


def extract_search_keys(query: str) -> List[str]:
    """Lowercased search keys in the order they appear, ignoring quoted text and regexes"""
    return _scan(query).keys


def _unknown_keys(keys: List[str]) -> List[str]:
    unknown: List[str] = []
    seen = set()
    for key in keys:
        if key not in VALID_SEARCH_KEYS and key not in seen:
            seen.add(key)
            unknown.append(key)
    return unknown


def unknown_search_keys(query: str) -> List[str]:
    """Keys used in the query that Scryfall does not recognize, in order, without repeats"""
    return _unknown_keys(extract_search_keys(query))


def validate(raw: str) -> ValidationReport:
    """
    Check a search-syntax string for structural problems.

    An empty issue list means the query is structurally sound (balanced
    parentheses and quotes, recognized keys); it says nothing about
    whether the query means what the user wanted.
    """
    sanitized = normalize_whitespace(raw)
    if not sanitized:
        return ValidationReport(sanitized="", issues=[EMPTY_QUERY_ISSUE])

    scan = _scan(sanitized)
    issues: List[str] = []

    unknown = _unknown_keys(scan.keys)
    if unknown:
        issues.append(f"Unknown search key(s): {', '.join(unknown)}")

    if not scan.parens_balanced:
        issues.append(UNBALANCED_PARENS_ISSUE)
    if scan.double_quotes % 2:
        issues.append(UNBALANCED_DOUBLE_QUOTES_ISSUE)
    if scan.single_quotes % 2:
        issues.append(UNBALANCED_SINGLE_QUOTES_ISSUE)

    return ValidationReport(sanitized=sanitized, issues=issues)


def _strip_structural(query: str, strip_parens: bool, strip_single_quotes: bool) -> str:
    """Drop grouping parentheses and/or bare single quotes that sit outside literals"""
    kept = []
    in_quote = False
    in_regex = False
    prev = " "
    for index, ch in enumerate(query):
        drop = False
        if in_regex:
            if ch == "/" and prev != "\\":
                in_regex = False
        elif ch == '"':
            in_quote = not in_quote
        elif in_quote:
            pass
        elif ch == "/" and prev in ":=":
            in_regex = True
        elif ch in "()":
            drop = strip_parens
        elif ch == "'":
            drop = strip_single_quotes and not _is_apostrophe(query, index)
        if not drop:
            kept.append(ch)
        prev = ch
    return "".join(kept)


def repair_query(raw: str, max_length: int = MAX_QUERY_LENGTH) -> ValidationReport:
    """
    Produce a structurally balanced version of a query.

    Used on translated queries before they reach the caller. The issues
    list records each repair that was applied.
    """
    sanitized = normalize_whitespace(raw)
    if not sanitized:
        return ValidationReport(sanitized="", issues=[EMPTY_QUERY_ISSUE])

    issues: List[str] = []

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length].rstrip()
        issues.append(f"Query truncated to {max_length} characters")

    if _YEAR_AS_SET.search(sanitized):
        sanitized = _YEAR_AS_SET.sub(r"year=\1", sanitized)
        issues.append("Replaced invalid year set syntax with year=YYYY")

    scan = _scan(sanitized)
    if not scan.parens_balanced:
        sanitized = _strip_structural(sanitized, strip_parens=True, strip_single_quotes=False)
        issues.append("Removed unbalanced parentheses")

    if scan.open_regex:
        sanitized += "/"
        issues.append("Closed unterminated regular expression")

    if scan.double_quotes % 2:
        sanitized += '"'
        issues.append("Added missing closing quote")

    if scan.single_quotes % 2:
        sanitized = _strip_structural(sanitized, strip_parens=False, strip_single_quotes=True)
        issues.append("Removed unmatched single quote")

    sanitized = normalize_whitespace(sanitized)
    grouped = normalize_boolean_precedence(sanitized)
    if grouped != sanitized:
        sanitized = grouped
        issues.append(OR_GROUPS_NORMALIZED_ISSUE)

    return ValidationReport(sanitized=sanitized, issues=issues)


def _split_top_level(query: str) -> List[Tuple[str, bool]]:
    """
    Split on whitespace that sits outside quotes, regexes and parentheses.

    Each token comes back with a flag saying whether it closed every
    group it opened; a token that did not is never regrouped.
    """
    tokens: List[Tuple[str, bool]] = []
    current: List[str] = []
    depth = 0
    stray_close = False
    in_quote = False
    in_regex = False
    prev = " "

    for ch in query:
        if in_regex:
            if ch == "/" and prev != "\\":
                in_regex = False
        elif ch == '"':
            in_quote = not in_quote
        elif in_quote:
            pass
        elif ch == "/" and prev in ":=":
            in_regex = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            if depth:
                depth -= 1
            else:
                stray_close = True
        elif ch.isspace() and depth == 0:
            if current:
                tokens.append(("".join(current), not stray_close))
                current = []
                stray_close = False
            prev = ch
            continue
        current.append(ch)
        prev = ch

    if current:
        clean = not (stray_close or depth or in_quote or in_regex)
        tokens.append(("".join(current), clean))
    return tokens


def _is_or(token: str) -> bool:
    return token.upper() == "OR"


def normalize_boolean_precedence(query: str) -> str:
    """
    Wrap top-level ``a OR b OR c`` chains in parentheses.

    Scryfall binds implicit AND tighter than OR, so ``t:elf OR t:goblin c:g``
    would otherwise mean ``t:elf OR (t:goblin c:g)``. Applying this twice
    gives the same result as applying it once.
    """
    tokens = _split_top_level(query)
    output: List[str] = []
    i = 0

    while i < len(tokens):
        text, _ = tokens[i]
        if _is_or(text):
            output.append(text)
            i += 1
            continue

        end = i
        while end + 2 < len(tokens) and _is_or(tokens[end + 1][0]) and not _is_or(tokens[end + 2][0]):
            end += 2

        if end == i:
            output.append(text)
            i += 1
            continue

        chain = tokens[i:end + 1]
        members = chain[::2]
        if all(clean for _, clean in members):
            output.append("(" + " ".join(token for token, _ in chain) + ")")
        else:
            output.extend(token for token, _ in chain)
        i = end + 1

    return " ".join(output)


def build_filter_query(filters: Optional[FilterState]) -> str:
    """
    Translate UI filter selections into a Scryfall query fragment.

    >>> build_filter_query(FilterState(colors=["R", "G"], types=["Creature"], cmc_range=(2, 5), sort_by="cmc-desc"))
    '(c:r OR c:g) t:creature mv>=2 mv<=5 order:cmc direction:desc'
    """
    if not filters:
        return ""

    parts: List[str] = []

    colors = ["c=c" if color.upper() == "C" else f"c:{color.lower()}" for color in filters.colors]
    if len(colors) == 1:
        parts.append(colors[0])
    elif colors:
        parts.append(f"({' OR '.join(colors)})")

    types = [f"t:{card_type.lower()}" for card_type in filters.types]
    if len(types) == 1:
        parts.append(types[0])
    elif types:
        parts.append(f"({' OR '.join(types)})")

    min_cmc, max_cmc = filters.cmc_range
    if min_cmc > 0:
        parts.append(f"mv>={min_cmc}")
    if max_cmc < 16:
        parts.append(f"mv<={max_cmc}")

    if filters.sort_by and filters.sort_by != "name-asc":
        sort_field, _, direction = filters.sort_by.partition("-")
        order = _SORT_FIELDS.get(sort_field)
        if order:
            parts.append(f"order:{order}")
            if direction in ("asc", "desc"):
                parts.append(f"direction:{direction}")

    return " ".join(parts)
