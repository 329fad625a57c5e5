"""
Tests for the daily ingestion job
"""
import datetime as dt

import pytest

from agriguru.errors import SourceUnavailable
from agriguru.ingestion.ingest import ingest
from agriguru.models import PriceFilter

from conftest import TODAY, FakePriceSource, make_record

DAY = TODAY - dt.timedelta(days=1)


class FlakySource(FakePriceSource):
    async def fetch(self, commodity=None, state=None, district=None, market=None, date=None, limit=None):
        if state == "Telangana":
            raise SourceUnavailable("HTTP 502", status_code=502)
        return await super().fetch(commodity, state, district, market, date, limit)


class TestIngest:
    @pytest.mark.asyncio
    async def test_rows_and_catalog(self, store):
        source = FlakySource({DAY: [
            make_record("Cotton", "Adoni", date=DAY),
            make_record("Onion", "Kurnool", date=DAY),
            make_record("Ragi", "Hubli", "Dharwad", state="Karnataka", date=DAY),
        ]})
        summary = await ingest(store, source, ["Andhra Pradesh", "Telangana", "Karnataka"], DAY)

        assert summary["rows"] == {"Andhra Pradesh": 2, "Telangana": 0, "Karnataka": 1}
        assert summary["catalog"] == {"markets": 3, "commodities": 3}
        assert summary["purged"] == 0
        assert store.get_market("Hubli").state == "Karnataka"

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, store):
        source = FakePriceSource({DAY: [make_record("Cotton", "Adoni", date=DAY)]})
        await ingest(store, source, ["Andhra Pradesh"], DAY)
        await ingest(store, source, ["Andhra Pradesh"], DAY)
        assert len(store.get_on_date(PriceFilter(), DAY)) == 1

    @pytest.mark.asyncio
    async def test_retention(self, store):
        store.upsert([make_record("Cotton", "Adoni", date=DAY - dt.timedelta(days=400))])
        source = FakePriceSource({DAY: [make_record("Cotton", "Adoni", date=DAY)]})
        summary = await ingest(store, source, ["Andhra Pradesh"], DAY, retain_days=90)
        assert summary["purged"] == 1
