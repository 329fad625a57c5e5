"""
External Price Source: the data.gov.in daily mandi price API (Agmarknet feed).

fetch() raises SourceUnavailable on timeouts, transport errors, non-2xx
responses and garbage payloads; the pipeline treats that as an empty tier.
There is deliberately no retry: an empty or failed date just means "no data".
"""
import asyncio
import datetime as dt
import json
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from agriguru.config import settings
from agriguru.errors import ConfigurationError, SourceUnavailable
from agriguru.models import PriceRecord
from agriguru.utils.aliases import district_variants, same_district
from agriguru.utils.dates import format_api_date, parse_api_date
from agriguru.utils.text import capitalize_first, ci_eq, title_case, word_match

log = logging.getLogger("agriguru.mandi")

def t(): return time.perf_counter()

API_BASE = "https://api.data.gov.in/resource"
SOURCE_TAG = "data.gov.in"

# filter field -> name in the "title" style API version
TITLE_FIELDS = {
    "state": "State",
    "district": "District",
    "market": "Market",
    "commodity": "Commodity",
    "variety": "Variety",
    "grade": "Grade",
    "arrival_date": "Arrival_Date",
}


# -------------------------------
# Helper Functions
# -------------------------------
def _to_decimal(x: Any) -> Optional[Decimal]:
    """Safely convert a value to a non-negative Decimal."""
    if x is None or (isinstance(x, str) and not x.strip()):
        return None
    try:
        d = Decimal(str(x).replace(",", "").strip())
    except InvalidOperation:
        return None
    return d if d >= 0 else None


def _field(item: Dict[str, Any], name: str) -> Any:
    """Read a record field whatever casing this API version uses (state/State)."""
    if name in item:
        return item[name]
    lowered = name.lower()
    for k, v in item.items():
        if k.lower() == lowered:
            return v
    return None


def _arrivals(item: Dict[str, Any]) -> Optional[Decimal]:
    for k, v in item.items():
        kl = k.lower()
        if kl.startswith("arrival") and kl != "arrival_date":
            return _to_decimal(v)
    return None


def _clean(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = " ".join(str(v).split())
    return s or None


def normalize_record(item: Dict[str, Any]) -> Optional[PriceRecord]:
    """API record (all strings) -> PriceRecord, or None when key fields are missing."""
    date = parse_api_date(_clean(_field(item, "arrival_date")))
    state = _clean(_field(item, "state"))
    district = _clean(_field(item, "district"))
    market = _clean(_field(item, "market"))
    commodity = _clean(_field(item, "commodity"))
    if not (date and state and district and market and commodity):
        return None
    return PriceRecord(
        date=date,
        state=state,
        district=district,
        market=market,
        commodity=commodity,
        variety=_clean(_field(item, "variety")),
        grade=_clean(_field(item, "grade")),
        min_price=_to_decimal(_field(item, "min_price")),
        max_price=_to_decimal(_field(item, "max_price")),
        modal_price=_to_decimal(_field(item, "modal_price")),
        arrival_quantity=_arrivals(item),
        source=SOURCE_TAG,
    )


def _belongs(rec: PriceRecord, state: Optional[str], district: Optional[str],
             market: Optional[str]) -> bool:
    """Client-side location check applied to every strategy's rows."""
    if state and not ci_eq(rec.state, state):
        return False
    if district and not same_district(district, rec.district):
        return False
    if market and not word_match(market, rec.market):
        return False
    return True


def location_strategies(state: Optional[str], district: Optional[str],
                        market: Optional[str]) -> List[Tuple[Optional[str], Optional[str], Optional[str]]]:
    """
    Progressive API filters, most specific first:
    state+district+market, state+district, state. Renamed districts are tried
    under their parent name too.
    """
    districts = district_variants(district) or [None]
    combos = [(state, d, market) for d in districts]
    if market:
        combos += [(state, d, None) for d in districts if d]
    if state and (district or market):
        combos.append((state, None, None))
    out = []
    for c in combos:
        if c not in out:
            out.append(c)
    return out


class ExternalPriceSource:
    def __init__(self, client: httpx.AsyncClient, api_key: str = None, resource_id: str = None,
                 field_style: str = None, timeout: float = None,
                 page_size: int = None, max_pages: int = None):
        self.client = client
        self.api_key = settings.DATA_GOV_IN_API_KEY if api_key is None else api_key
        self.resource_id = resource_id or settings.DATA_GOV_RESOURCE_ID
        self.field_style = (field_style or settings.DATA_GOV_FIELD_STYLE).lower()
        self.timeout = timeout or settings.EXTERNAL_TIMEOUT_SEC
        self.page_size = page_size or settings.EXTERNAL_PAGE_SIZE
        self.max_pages = max_pages or settings.EXTERNAL_MAX_PAGES

    @property
    def url(self) -> str:
        return f"{API_BASE}/{self.resource_id}"

    def _ensure_api_key(self) -> None:
        """Raises an error if the API key is not configured."""
        if not self.api_key:
            raise ConfigurationError("DATA_GOV_IN_API_KEY not set in .env file")

    def _filter(self, field: str) -> str:
        name = TITLE_FIELDS[field] if self.field_style == "title" else field
        return f"filters[{name}]"

    def build_params(self, commodity: Optional[str] = None, state: Optional[str] = None,
                     district: Optional[str] = None, market: Optional[str] = None,
                     date: Optional[dt.date] = None, limit: int = None, offset: int = 0) -> Dict[str, str]:
        params = {
            "api-key": self.api_key,
            "format": "json",
            "limit": str(limit or self.page_size),
            "offset": str(offset),
        }
        if commodity:
            params[self._filter("commodity")] = capitalize_first(commodity)
        if state:
            params[self._filter("state")] = title_case(state)
        if district:
            params[self._filter("district")] = title_case(district)
        if market:
            params[self._filter("market")] = title_case(market)
        if date:
            params[self._filter("arrival_date")] = format_api_date(date)
        return params

    # -------------------------------
    # Core API Interaction
    # -------------------------------
    async def _fetch_page(self, params: Dict[str, str]) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        """One page of raw records plus the API's reported total."""
        try:
            r = await self.client.get(self.url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise SourceUnavailable(f"price API timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise SourceUnavailable(f"price API request failed: {e}") from e
        if not r.is_success:
            raise SourceUnavailable(f"price API returned HTTP {r.status_code}", status_code=r.status_code)
        try:
            payload = r.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise SourceUnavailable("price API returned a non-JSON body") from e
        if not isinstance(payload, dict):
            raise SourceUnavailable("price API returned an unexpected payload")
        records = payload.get("records")
        if records is None:
            if payload.get("error") or payload.get("message"):
                raise SourceUnavailable(f"price API error: {payload.get('error') or payload.get('message')}")
            records = []
        if not isinstance(records, list):
            raise SourceUnavailable("price API 'records' is not a list")
        total = payload.get("total")
        try:
            total = int(total) if total is not None else None
        except (TypeError, ValueError):
            total = None
        return [r for r in records if isinstance(r, dict)], total

    async def _fetch_pages(self, limit: Optional[int], **filters) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for page in range(self.max_pages):
            params = self.build_params(offset=page * self.page_size, limit=self.page_size, **filters)
            recs, total = await self._fetch_page(params)
            out.extend(recs)
            if len(recs) < self.page_size:
                break
            if limit and len(out) >= limit:
                break
            if total is not None and len(out) >= total:
                break
        else:
            if total is None or total > len(out):
                log.warning("⚠️  page limit reached: fetched %d of %s rows for %s",
                            len(out), total if total is not None else "?", filters)
        return out

    async def fetch(self, commodity: Optional[str] = None, state: Optional[str] = None,
                    district: Optional[str] = None, market: Optional[str] = None,
                    date: Optional[dt.date] = None, limit: Optional[int] = None) -> List[PriceRecord]:
        """
        Price records for the filter. Broader strategies are only tried when a
        narrower one came back empty, and their rows are re-checked against the
        requested location, so another town's prices are never returned.
        """
        self._ensure_api_key()
        start = t()
        for s, d, m in location_strategies(state, district, market):
            strategy_t = t()
            raw = await self._fetch_pages(limit, commodity=commodity, state=s, district=d, market=m, date=date)
            recs = []
            for item in raw:
                rec = normalize_record(item)
                if rec is None or not _belongs(rec, state, district, market):
                    continue
                if date and rec.date != date:
                    continue
                recs.append(rec)
            strategy_name = "+".join(k for k, v in (("state", s), ("district", d), ("market", m)) if v) or "commodity-only"
            log.info("   strategy %s: raw=%d kept=%d in %dms",
                     strategy_name, len(raw), len(recs), round((t() - strategy_t) * 1000))
            if recs:
                log.info("⏱️  price API fetch: %d records in %dms", len(recs), round((t() - start) * 1000))
                return recs[:limit] if limit else recs
        log.info("❌ price API: no records for commodity=%s state=%s district=%s market=%s date=%s",
                 commodity, state, district, market, date)
        return []

    async def _fetch_day(self, date: dt.date, **filters) -> List[PriceRecord]:
        try:
            return await self.fetch(date=date, **filters)
        except SourceUnavailable as e:
            log.info("   %s: no data (%s)", date.isoformat(), e)
            return []

    async def fetch_history(self, commodity: Optional[str] = None, state: Optional[str] = None,
                            district: Optional[str] = None, market: Optional[str] = None,
                            dates: Sequence[dt.date] = (), batch_size: int = None
                            ) -> Tuple[List[PriceRecord], Optional[dt.date]]:
        """
        Check candidate dates in concurrent batches, one batch at a time.
        Returns the rows of the first candidate (in the given order) that has data.
        """
        self._ensure_api_key()
        batch = max(1, batch_size or settings.HISTORY_BATCH_SIZE)
        start = t()
        filters = dict(commodity=commodity, state=state, district=district, market=market)
        for i in range(0, len(dates), batch):
            chunk = list(dates[i:i + batch])
            results = await asyncio.gather(*(self._fetch_day(d, **filters) for d in chunk))
            for d, recs in zip(chunk, results):
                if recs:
                    log.info("✅ history hit on %s after %d dates in %dms",
                             d.isoformat(), i + len(chunk), round((t() - start) * 1000))
                    return recs, d
        log.info("❌ history: nothing in %d candidate dates (%dms)", len(dates), round((t() - start) * 1000))
        return [], None


# -------------------------------
# Command-Line Interface for Testing
# -------------------------------
async def _cli(commodity: Optional[str], state: Optional[str], district: Optional[str],
               market: Optional[str], date: Optional[str], history_days: int):
    from agriguru.http import build_http_client, close_http_client
    from agriguru.utils.dates import today_ist

    client = build_http_client()
    source = ExternalPriceSource(client)
    try:
        if history_days:
            yesterday = today_ist() - dt.timedelta(days=1)
            dates = [yesterday - dt.timedelta(days=i) for i in range(history_days)]
            recs, found = await source.fetch_history(commodity, state, district, market, dates)
            out = {"date": found.isoformat() if found else None, "records": [r.model_dump(mode="json") for r in recs]}
        else:
            recs = await source.fetch(commodity, state, district, market, parse_api_date(date) if date else None)
            out = {"records": [r.model_dump(mode="json") for r in recs]}
        print(json.dumps(out, indent=2, ensure_ascii=False))
    except (SourceUnavailable, ConfigurationError) as e:
        print(json.dumps({"error": str(e)}, indent=2, ensure_ascii=False))
    finally:
        await close_http_client(client)

if __name__ == "__main__":
    import argparse
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Fetch mandi prices from Agmarknet via data.gov.in")
    parser.add_argument("--commodity", default=None, help="e.g., 'Cotton'")
    parser.add_argument("--state", default=None, help="e.g., 'Andhra Pradesh'")
    parser.add_argument("--district", default=None, help="e.g., 'Kurnool'")
    parser.add_argument("--market", default=None, help="e.g., 'Adoni'")
    parser.add_argument("--date", default=None, help="YYYY-MM-DD or DD/MM/YYYY")
    parser.add_argument("--history-days", type=int, default=0, help="search back N days from yesterday")
    args = parser.parse_args()

    asyncio.run(_cli(args.commodity, args.state, args.district, args.market, args.date, args.history_days))
