"""
Tests for the SQLAlchemy price store (in-memory SQLite)

Run with:
    pytest tests/test_store.py -v
"""
import datetime as dt
from decimal import Decimal

import pytest

from agriguru.errors import ConfigurationError
from agriguru.models import CommodityEntry, PriceFilter
from agriguru.services.store import PriceStore, create_store_engine, dedupe_latest

from conftest import TODAY, make_record


class TestUpsert:
    """Idempotent writes on the natural key"""

    def test_upsert_twice_keeps_one_row(self, store):
        rec = make_record()
        store.upsert([rec])
        store.upsert([rec])

        rows = store.get_on_date(PriceFilter(commodity="Cotton"), rec.date)
        assert len(rows) == 1

    def test_last_write_wins(self, store):
        store.upsert([make_record(modal=7000)])
        store.upsert([make_record(modal=7250)])

        rows = store.get_on_date(PriceFilter(commodity="Cotton", market="Adoni"), TODAY - dt.timedelta(days=1))
        assert rows[0].modal_price == Decimal("7250.00")

    def test_duplicates_inside_one_batch(self, store):
        assert store.upsert([make_record(modal=1), make_record(modal=2)]) == 1

    def test_missing_variety_round_trips_as_none(self, store):
        store.upsert([make_record()])
        rows = store.get_latest("Cotton")
        assert rows[0].variety is None

    def test_empty_upsert(self, store):
        assert store.upsert([]) == 0

    def test_engine_needs_url(self):
        with pytest.raises(ConfigurationError):
            create_store_engine("")


class TestQueries:
    """Location-correct price reads"""

    def setup_method(self):
        self.store = PriceStore.from_url("sqlite://")
        self.store.create_schema()
        d4 = TODAY - dt.timedelta(days=4)
        self.store.upsert([
            make_record("Tomato", "Adoni", "Kurnool", date=d4, modal=1200),
            make_record("Tomato", "Tiruvuru", "Krishna", date=TODAY - dt.timedelta(days=1), modal=1500),
            make_record("Banana", "Adoni", "Kurnool", date=d4, modal=2000),
            make_record("Banana", "Adoni", "Kurnool", date=d4 - dt.timedelta(days=1), modal=2100),
            make_record("Tomato", "Adoni", "Kurnool", date=d4 - dt.timedelta(days=2), modal=1000),
        ])

    def teardown_method(self):
        self.store.close()

    def test_last_available_skips_other_markets(self):
        rows, date = self.store.get_last_available(
            PriceFilter(commodity="Tomato", state="Andhra Pradesh", district="Kurnool", market="Adoni"),
            today=TODAY,
        )
        assert date == TODAY - dt.timedelta(days=4)
        assert {r.market for r in rows} == {"Adoni"}

    def test_last_available_respects_window(self):
        rows, date = self.store.get_last_available(
            PriceFilter(commodity="Tomato", market="Adoni"),
            on_or_before=TODAY - dt.timedelta(days=5),
            not_before=TODAY - dt.timedelta(days=7),
        )
        assert date == TODAY - dt.timedelta(days=6)
        assert rows[0].modal_price == Decimal("1000.00")

    def test_last_available_nothing(self):
        rows, date = self.store.get_last_available(PriceFilter(commodity="Onion", market="Adoni"), today=TODAY)
        assert rows == [] and date is None

    def test_latest_keeps_one_row_per_commodity_and_market(self):
        rows = self.store.get_latest(market="Adoni")
        assert sorted(r.commodity for r in rows) == ["Banana", "Tomato"]
        assert all(r.date == TODAY - dt.timedelta(days=4) for r in rows)

    def test_district_filter_uses_variants(self):
        self.store.upsert([make_record("Onion", "Nandyal", "Nandyal", modal=900)])
        rows = self.store.get_latest("Onion", district="Kurnool")
        assert [r.market for r in rows] == ["Nandyal"]

    def test_trend_single_commodity(self):
        series = self.store.get_trend("Tomato", market="Adoni", days=30, today=TODAY)
        assert len(series) == 1
        assert [p.avg_price for p in series[0].points] == [Decimal("1000.00"), Decimal("1200.00")]

    def test_trend_market_wide_is_per_commodity(self):
        series = self.store.get_trend(market="Adoni", days=30, today=TODAY)
        by_name = {s.commodity: s for s in series}
        assert set(by_name) == {"Banana", "Tomato"}
        # banana and tomato are never averaged together
        assert all(p.avg_price >= Decimal("2000") for p in by_name["Banana"].points)

    def test_search_fuzzy(self):
        rows = self.store.search_fuzzy("Adony", commodity="Tomato")
        assert rows
        assert {r.market for r in rows} == {"Adoni"}

    def test_purge(self):
        removed = self.store.purge_older_than(4, today=TODAY)
        assert removed == 2
        assert self.store.get_trend("Tomato", market="Adoni", today=TODAY)[0].points[0].avg_price == Decimal("1200.00")


class TestCatalog:
    """Market and commodity catalogs"""

    def test_sync_catalog_from_prices(self, store):
        store.upsert([
            make_record("Cotton", "Adoni"),
            make_record("Groundnut", "Adoni"),
            make_record("Cotton", "Guntur", "Guntur"),
        ])
        counts = store.sync_catalog_from_prices()

        assert counts == {"markets": 2, "commodities": 2}
        assert store.get_market("adoni").district == "Kurnool"
        assert store.get_market("Adoni").last_data_date == TODAY - dt.timedelta(days=1)

    def test_sync_keeps_coordinates(self, catalog_store):
        catalog_store.upsert([make_record("Cotton", "Adoni")])
        catalog_store.sync_catalog_from_prices()
        assert catalog_store.get_market("Adoni").latitude == pytest.approx(15.6278)

    def test_find_markets_by_state(self, catalog_store):
        names = [m.market for m in catalog_store.find_markets(state="Karnataka")]
        assert names == ["Ballari", "Hubli", "Kallur"]

    def test_markets_sharing_trigrams(self, catalog_store):
        names = {m.market for m in catalog_store.markets_sharing_trigrams("Bellary")}
        assert "Ballari" in names

    def test_commodity_aliases(self, store):
        store.upsert_commodities([CommodityEntry(name="Maize", aliases=["Corn", "Makka"])])
        assert store.commodity_aliases("corn") == ["maize", "makka"]
        assert store.commodity_aliases("Wheat") == []


class TestDedupe:
    def test_dedupe_latest(self):
        old = make_record(date=TODAY - dt.timedelta(days=3))
        new = make_record(date=TODAY - dt.timedelta(days=1))
        assert dedupe_latest([old, new]) == [new]
