"""
Shared fixtures: an in-memory SQLite price store, seed helpers, and fakes for
the price API and the OpenAI client.
"""
import datetime as dt
import json
from decimal import Decimal
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from agriguru.models import MarketEntry, PriceRecord
from agriguru.services.store import PriceStore

TODAY = dt.date(2024, 11, 20)


def make_record(commodity="Cotton", market="Adoni", district="Kurnool", state="Andhra Pradesh",
                date=None, modal=7000, variety=None, min_price=None, max_price=None) -> PriceRecord:
    modal = Decimal(str(modal))
    return PriceRecord(
        date=date or TODAY - dt.timedelta(days=1),
        state=state,
        district=district,
        market=market,
        commodity=commodity,
        variety=variety,
        min_price=Decimal(str(min_price)) if min_price is not None else modal - 200,
        max_price=Decimal(str(max_price)) if max_price is not None else modal + 200,
        modal_price=modal,
        source="data.gov.in",
    )


def market(name, district, state="Andhra Pradesh", lat=None, lon=None) -> MarketEntry:
    return MarketEntry(market=name, district=district, state=state, latitude=lat, longitude=lon)


CATALOG = [
    market("Adoni", "Kurnool", lat=15.6278, lon=77.2749),
    market("Kurnool", "Kurnool", lat=15.8281, lon=78.0373),
    market("Yemmiganur", "Kurnool", lat=15.7722, lon=77.4833),
    market("Kallur", "Raichur", state="Karnataka", lat=16.1400, lon=77.2100),
    market("Tiruvuru", "Krishna", lat=17.1000, lon=80.6100),
    market("Guntur", "Guntur", lat=16.3067, lon=80.4365),
    market("Ballari", "Ballari", state="Karnataka", lat=15.1394, lon=76.9214),
    market("Hubli", "Dharwad", state="Karnataka", lat=15.3647, lon=75.1240),
]


@pytest.fixture
def store():
    s = PriceStore.from_url("sqlite://")
    s.create_schema()
    yield s
    s.close()


@pytest.fixture
def catalog_store(store):
    store.upsert_markets(CATALOG)
    return store


class FakePriceSource:
    """Stands in for ExternalPriceSource; records every call."""

    def __init__(self, by_date: Optional[Dict[dt.date, List[PriceRecord]]] = None, error: Exception = None):
        self.by_date = by_date or {}
        self.error = error
        self.fetch_calls = []
        self.history_calls = []

    def _rows(self, commodity, state, district, market, date):
        rows = []
        for r in self.by_date.get(date, []):
            if commodity and commodity.lower() not in r.commodity.lower():
                continue
            if market and r.market.lower() != market.lower():
                continue
            if state and r.state.lower() != state.lower():
                continue
            rows.append(r)
        return rows

    async def fetch(self, commodity=None, state=None, district=None, market=None, date=None, limit=None):
        self.fetch_calls.append(dict(commodity=commodity, state=state, district=district, market=market, date=date))
        if self.error:
            raise self.error
        return self._rows(commodity, state, district, market, date)

    async def fetch_history(self, commodity=None, state=None, district=None, market=None, dates=(), batch_size=None):
        self.history_calls.append(dict(commodity=commodity, market=market, dates=list(dates)))
        if self.error:
            raise self.error
        for d in dates:
            rows = self._rows(commodity, state, district, market, d)
            if rows:
                return rows, d
        return [], None


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeOpenAI:
    """Minimal object with the `client.chat.completions.create` shape."""

    def __init__(self, *replies):
        self.completions = FakeCompletions(replies or ["{}"])
        self.chat = SimpleNamespace(completions=self.completions)
