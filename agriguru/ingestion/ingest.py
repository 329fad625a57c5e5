# agriguru/ingestion/ingest.py
"""
Daily sync: pull one day's prices per state from data.gov.in into the store,
register new markets/commodities in the catalog, optionally purge old rows.

    python -m agriguru.ingestion.ingest --state "Andhra Pradesh" --date 2024-11-20
"""
import argparse
import asyncio
import datetime as dt
import logging
import time
from typing import Dict, List, Optional

from agriguru.config import settings
from agriguru.errors import SourceUnavailable
from agriguru.http import build_http_client, close_http_client
from agriguru.services.store import PriceStore
from agriguru.tools.mandi import ExternalPriceSource
from agriguru.utils.dates import today_ist

log = logging.getLogger("agriguru.ingest")

def t(): return time.perf_counter()


async def ingest(store: PriceStore, source: ExternalPriceSource, states: List[str],
                 date: dt.date, retain_days: int = 0) -> Dict[str, object]:
    """Returns per-state row counts, catalog sync counts and purged rows."""
    start = t()
    per_state: Dict[str, int] = {}
    for state in states:
        state_t = t()
        try:
            records = await source.fetch(state=state, date=date)
        except SourceUnavailable as e:
            log.warning("⚠️  %s: price API unavailable (%s)", state, e)
            per_state[state] = 0
            continue
        per_state[state] = await asyncio.to_thread(store.upsert, records) if records else 0
        log.info("💾 %s: %d rows for %s in %dms", state, per_state[state], date.isoformat(),
                 round((t() - state_t) * 1000))

    catalog = await asyncio.to_thread(store.sync_catalog_from_prices)
    purged = await asyncio.to_thread(store.purge_older_than, retain_days, date) if retain_days > 0 else 0
    log.info("✅ ingestion done: %d rows, %s, purged %d in %dms",
             sum(per_state.values()), catalog, purged, round((t() - start) * 1000))
    return {"rows": per_state, "catalog": catalog, "purged": purged}


async def main(states: List[str], date: Optional[dt.date], retain_days: int, create_schema: bool) -> None:
    settings.require("DATABASE_URL", "DATA_GOV_IN_API_KEY")
    store = PriceStore.from_url(settings.DATABASE_URL, echo=settings.DB_ECHO)
    client = build_http_client()
    try:
        if create_schema:
            store.create_schema()
        source = ExternalPriceSource(client)
        await ingest(store, source, states, date or (today_ist() - dt.timedelta(days=1)), retain_days)
    finally:
        await close_http_client(client)
        store.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Sync daily mandi prices into the price store")
    parser.add_argument("--state", action="append", default=None,
                        help="state to sync (repeatable); defaults to INGEST_STATES")
    parser.add_argument("--date", default=None, help="YYYY-MM-DD (default: yesterday IST)")
    parser.add_argument("--retain-days", type=int, default=settings.RETENTION_DAYS,
                        help="delete price rows older than N days (0 keeps everything)")
    parser.add_argument("--create-schema", action="store_true", help="create tables before syncing")
    args = parser.parse_args()

    asyncio.run(main(
        args.state or settings.INGEST_STATES,
        dt.date.fromisoformat(args.date) if args.date else None,
        args.retain_days,
        args.create_schema,
    ))
