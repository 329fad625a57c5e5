"""
Intent Extractor: the LLM behind a fixed JSON contract.

The model is an opaque collaborator. Whatever it returns is parsed into a
QueryIntent with every malformed field treated as unknown. Without an API key
(or when the call fails) a keyword extractor produces a conservative intent.
"""
import asyncio
import datetime as dt
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from agriguru.config import settings
from agriguru.errors import IntentExtractionError
from agriguru.models import IntentLocation, QueryIntent, QueryType
from agriguru.tools.lang import detect_lang
from agriguru.utils.aliases import CROP_ALIASES
from agriguru.utils.dates import today_ist

log = logging.getLogger("agriguru.intent")

def t(): return time.perf_counter()

INTENT_SYSTEM = (
    "You extract structured market-price intents for Indian farmers. "
    "Reply with a single JSON object and nothing else."
)

INTENT_PROMPT = """Today (IST) is {today}. Detected language: {lang}.
{context}
User query: "{text}"

Return a JSON object with exactly these keys:
{{
  "commodity": string or null (as the user said it, null for market-wide questions),
  "location": {{"market": string or null, "district": string or null, "state": string or null}},
  "date": "YYYY-MM-DD", "YYYY-MM", "YYYY", "yesterday", or null for latest,
  "isHistoricalQuery": true if the user asks about a past date/month/year,
  "queryType": one of "price_inquiry", "market_overview", "trend", "nearby_markets",
  "confidence": 0.0-1.0, how sure you are about the location,
  "isRealLocation": true if the place exists in India,
  "hasMarket": true if the place has an agricultural market (mandi), false for villages without one
}}

Rules:
- Infer district and state from the town using Indian geography. Use the pre-2022
  Andhra Pradesh and pre-2016 Telangana district names (Amalapuram -> East Godavari,
  Narasaraopet -> Guntur, Mulugu -> Warangal), because the price database uses them.
- "near me" is not a market name.
- "market prices of X" and "X market prices" both mean market X with commodity null
  and queryType "market_overview".
- Words like rising, falling, trend, this week/month mean queryType "trend".
- A likely misspelling of a real market town (e.g. "Adomi" for Adoni) keeps the user's
  spelling in "market" and sets confidence below 0.8.
"""

NEARBY_PROMPT = """You are an expert on Indian geography and agricultural markets (mandis).
Place: {place}{district}{state}

List up to {n} real agricultural markets NEAR this place, ordered by proximity:
1. first, other markets in the SAME district (0-50 km)
2. then markets in immediately neighbouring districts (50-100 km)
3. then major markets in the SAME state (100-300 km)
Never list markets from distant states.

Return a JSON object: {{"markets": [{{"market": "...", "district": "...", "state": "...", "distance_km": number}}]}}
"""

PRICE_WORDS = {"price", "prices", "rate", "rates", "bhav", "bhaav", "daam", "dam", "mandi", "market", "cost"}
TREND_WORDS = {"trend", "trends", "rising", "falling", "increase", "increasing", "decrease", "decreasing",
               "badh", "ghat", "week", "month"}
NEARBY_WORDS = {"near", "nearby", "nearest", "paas", "around", "close"}
TIME_WORDS = {"today", "yesterday", "now", "latest", "current", "this", "last", "week", "month", "year"}

_JSON_OBJECT = re.compile(r"\{.*\}", re.S)
_JSON_ARRAY = re.compile(r"\[.*\]", re.S)
_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_YEAR = re.compile(r"\b(19\d{2}|20\d{2})\b")
PLACE_STOP_WORDS = {"market", "mandi", "apmc", "district", "for", "on", "me", "the", "and", "please"}


def _place_after_preposition(q: str) -> Optional[str]:
    """'cotton price in adoni today' -> 'Adoni' (last 'in'/'at' wins)."""
    words = re.findall(r"[a-z.]+", q)
    for i in range(len(words) - 1, -1, -1):
        if words[i] not in ("in", "at"):
            continue
        tail = []
        for w in words[i + 1:]:
            if w in TIME_WORDS or w in PRICE_WORDS or w in PLACE_STOP_WORDS or w in CROP_KEYWORDS:
                break
            tail.append(w)
        if tail:
            return " ".join(tail[:3]).title()
    return None


def _parse_json(text: str) -> Any:
    """First JSON object (or array) found in a model reply."""
    if not text:
        raise IntentExtractionError("empty LLM reply")
    for pattern in (_JSON_OBJECT, _JSON_ARRAY):
        m = pattern.search(text)
        if m:
            try:
                return json.loads(m.group(0))
            except json.JSONDecodeError:
                continue
    raise IntentExtractionError(f"LLM reply is not JSON: {text[:120]!r}")


def _crop_keywords() -> Dict[str, str]:
    """word -> canonical crop, longest phrases first so 'green gram' beats 'gram'."""
    words = {}
    for canonical, aliases in CROP_ALIASES.items():
        words[canonical] = canonical
        for a in aliases:
            words.setdefault(a, canonical)
    return dict(sorted(words.items(), key=lambda kv: -len(kv[0])))


CROP_KEYWORDS = _crop_keywords()


def keyword_intent(text: str, today: Optional[dt.date] = None) -> QueryIntent:
    """Best-effort intent without an LLM. Confidence stays below the strong-signal threshold."""
    q = (text or "").lower()
    tokens = set(re.findall(r"[a-z']+", q))

    commodity = None
    for word, canonical in CROP_KEYWORDS.items():
        if re.search(rf"\b{re.escape(word)}\b", q):
            commodity = canonical
            break

    date = None
    if "yesterday" in tokens:
        date = "yesterday"
    elif _ISO_DATE.search(q):
        date = _ISO_DATE.search(q).group(1)
    elif _YEAR.search(q):
        year = int(_YEAR.search(q).group(1))
        if year < (today or today_ist()).year:
            date = str(year)

    market = _place_after_preposition(q)

    if tokens & NEARBY_WORDS:
        query_type = QueryType.NEARBY_MARKETS
    elif tokens & TREND_WORDS:
        query_type = QueryType.TREND
    elif commodity is None:
        query_type = QueryType.MARKET_OVERVIEW
    else:
        query_type = QueryType.PRICE_INQUIRY

    return QueryIntent(
        commodity=commodity,
        location=IntentLocation(market=market),
        date=date,
        is_historical_query=date is not None,
        query_type=query_type,
        confidence=0.3 if market else 0.0,
    )


class IntentExtractor:
    def __init__(self, client: Optional[OpenAI] = None, model: str = None,
                 api_key: str = None, timeout: float = None):
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout or settings.LLM_TIMEOUT_SEC
        key = settings.OPENAI_API_KEY if api_key is None else api_key
        if client is None and key:
            client = OpenAI(api_key=key, timeout=self.timeout)
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None

    def _chat_json(self, system: str, user: str) -> Any:
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                temperature=0.0,
                response_format={"type": "json_object"},
                messages=[{"role": "system", "content": system},
                          {"role": "user", "content": user}],
            )
        except OpenAIError as e:
            raise IntentExtractionError(f"LLM call failed: {e}") from e
        content = resp.choices[0].message.content or ""
        return _parse_json(content.strip())

    async def extract(self, text: str, context: Optional[List[str]] = None,
                      lang: Optional[str] = None) -> QueryIntent:
        """User text (any language) -> QueryIntent. Never raises for bad model output."""
        if not self.available:
            log.info("🔑 OPENAI_API_KEY not set; using keyword intent extraction")
            return keyword_intent(text)

        start = t()
        prompt = INTENT_PROMPT.format(
            today=today_ist().isoformat(),
            lang=lang or detect_lang(text),
            context=("Recent conversation:\n" + "\n".join(context[-4:]) + "\n") if context else "",
            text=text.replace('"', "'"),
        )
        try:
            payload = await asyncio.to_thread(self._chat_json, INTENT_SYSTEM, prompt)
        except IntentExtractionError as e:
            log.warning("⚠️  intent extraction failed, falling back to keywords: %s", e)
            return keyword_intent(text)
        intent = QueryIntent.from_llm(payload)
        log.info("⏱️  Intent extraction: %dms -> %s", round((t() - start) * 1000),
                 intent.model_dump(exclude_defaults=True))
        return intent

    async def suggest_nearby_markets(self, place: str, district: Optional[str] = None,
                                     state: Optional[str] = None, max_results: int = 10) -> List[Dict[str, Any]]:
        """
        Names of real markets near `place`, nearest first, as the model believes them.
        Callers must verify every name against the catalog.
        """
        if not self.available or not place:
            return []
        prompt = NEARBY_PROMPT.format(
            place=place,
            district=f", district {district}" if district else "",
            state=f", {state}" if state else "",
            n=max_results,
        )
        payload = await asyncio.to_thread(self._chat_json, INTENT_SYSTEM, prompt)
        items = payload.get("markets", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            return []
        out = []
        for item in items[:max_results]:
            if isinstance(item, str) and item.strip():
                out.append({"market": item.strip()})
            elif isinstance(item, dict) and isinstance(item.get("market"), str):
                out.append(item)
        return out
