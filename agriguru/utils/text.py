import re
from typing import Optional

from rapidfuzz.distance import Levenshtein

_WS = re.compile(r"\s+")


def normalize_name(s: Optional[str]) -> str:
    """Lowercase, trim, collapse inner whitespace."""
    if not s:
        return ""
    return _WS.sub(" ", s.strip().lower())


def title_case(s: Optional[str]) -> Optional[str]:
    """'andhra pradesh' -> 'Andhra Pradesh' (the price API matches values exactly)."""
    if not s:
        return s
    return " ".join(w[:1].upper() + w[1:].lower() for w in normalize_name(s).split(" "))


def capitalize_first(s: Optional[str]) -> Optional[str]:
    """'green chilli' -> 'Green chilli', the casing Agmarknet uses for commodities."""
    if not s:
        return s
    s = normalize_name(s)
    return s[:1].upper() + s[1:]


def ci_eq(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive string comparison."""
    if not a or not b:
        return False
    return normalize_name(a) == normalize_name(b)


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """Normalized edit-distance similarity in [0, 1]: 1 - levenshtein / longer length."""
    a, b = normalize_name(a), normalize_name(b)
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def trigrams(s: Optional[str]) -> set[str]:
    n = normalize_name(s).replace(" ", "")
    if len(n) < 3:
        return {n[:2]} if n else set()
    return {n[i:i + 3] for i in range(len(n) - 2)}


def trigram_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Jaccard overlap of trigram sets, the measure pg_trgm's similarity() approximates."""
    ta, tb = trigrams(a), trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def word_match(candidate: Optional[str], name: Optional[str]) -> bool:
    """True when `candidate` equals `name` or appears in it as a whole word ('Adoni' in 'Adoni APMC')."""
    c, n = normalize_name(candidate), normalize_name(name)
    if not c or not n:
        return False
    if c == n:
        return True
    return re.search(rf"(?<![a-z0-9]){re.escape(c)}(?![a-z0-9])", n) is not None


def cache_key(commodity: Optional[str] = None, state: Optional[str] = None,
              district: Optional[str] = None, market: Optional[str] = None) -> str:
    """Stable lookup key, e.g. 'c:cotton|s:andhra-pradesh|d:kurnool|m:adoni'."""
    parts = []
    for tag, value in (("c", commodity), ("s", state), ("d", district), ("m", market)):
        if value:
            parts.append(f"{tag}:{normalize_name(value).replace(' ', '-')}")
    return "|".join(parts) or "all"
