"""
Tests for name normalisation, similarity, aliases and date planning

Run with:
    pytest tests/test_text_and_dates.py -v
"""
import datetime as dt

import pytest

from agriguru.utils.aliases import are_crop_aliases, district_variants, get_crop_aliases, same_district
from agriguru.utils.dates import format_api_date, parse_api_date, plan_dates
from agriguru.utils.text import cache_key, capitalize_first, similarity, title_case, word_match

TODAY = dt.date(2024, 11, 20)


class TestText:
    """String helpers used by the matcher and the price API"""

    def test_similarity_bellary_ballari(self):
        assert similarity("Bellary", "Ballari") == pytest.approx(5 / 7, abs=1e-3)

    def test_similarity_alur_kallur(self):
        assert similarity("Alur", "Kallur") == pytest.approx(4 / 6, abs=1e-3)

    def test_similarity_is_case_and_space_insensitive(self):
        assert similarity("  ADONI ", "adoni") == 1.0

    def test_similarity_empty(self):
        assert similarity("", "Adoni") == 0.0

    def test_word_match_whole_word(self):
        assert word_match("Adoni", "Adoni APMC")
        assert not word_match("Alur", "Kallur")

    def test_title_case_and_capitalize(self):
        assert title_case("andhra  PRADESH") == "Andhra Pradesh"
        assert capitalize_first("green CHILLI") == "Green chilli"

    def test_cache_key(self):
        assert cache_key("Cotton", "Andhra Pradesh", "Kurnool", "Adoni") == \
            "c:cotton|s:andhra-pradesh|d:kurnool|m:adoni"
        assert cache_key() == "all"


class TestAliases:
    """Commodity aliases and renamed districts"""

    def test_alias_expansion_is_ordered_and_deduped(self):
        names = get_crop_aliases("Corn")
        assert names[0] == "corn"
        assert names[1] == "maize"
        assert len(names) == len(set(names))

    def test_catalog_aliases_go_last(self):
        names = get_crop_aliases("maize", extra=["Makai Special"])
        assert names[0] == "maize"
        assert names[-1] == "makai special"

    def test_unknown_crop_is_kept(self):
        assert get_crop_aliases("Dragon Fruit") == ["dragon fruit"]

    def test_are_crop_aliases(self):
        assert are_crop_aliases("paddy", "rice")
        assert not are_crop_aliases("paddy", "cotton")

    def test_district_variants_include_parent(self):
        assert "East Godavari" in district_variants("Konaseema")

    def test_district_variants_include_children(self):
        assert "Konaseema" in district_variants("East Godavari")

    def test_same_district(self):
        assert same_district("Mulugu", "Warangal")
        assert not same_district("Kurnool", "Guntur")


class TestDates:
    """API date formats and the date plan"""

    def test_parse_api_formats(self):
        assert parse_api_date("20/11/2024") == TODAY
        assert parse_api_date("20-11-2024") == TODAY
        assert parse_api_date("2024-11-20") == TODAY
        assert parse_api_date("garbage") is None

    def test_format_api_date(self):
        assert format_api_date(dt.date(2024, 1, 5)) == "05/01/2024"

    def test_latest_plan(self):
        plan = plan_dates(None, TODAY, day_budget=14)
        assert plan.is_latest
        assert plan.cache_on_or_before == TODAY - dt.timedelta(days=1)
        assert plan.candidates[0] == TODAY - dt.timedelta(days=1)
        assert len(plan.candidates) == 14

    def test_specific_date_plan(self):
        d = TODAY - dt.timedelta(days=10)
        plan = plan_dates(d.isoformat(), TODAY)
        assert plan.kind == "date"
        assert plan.cache_on_or_before == d
        assert plan.cache_not_before == d - dt.timedelta(days=3)
        assert plan.candidates[:3] == [d, d - dt.timedelta(days=1), d + dt.timedelta(days=1)]

    def test_recent_date_drops_future_candidates(self):
        d = TODAY - dt.timedelta(days=1)
        plan = plan_dates(d.isoformat(), TODAY)
        assert all(c < TODAY for c in plan.candidates)

    def test_yesterday(self):
        plan = plan_dates("yesterday", TODAY)
        assert plan.kind == "date"
        assert plan.requested == TODAY - dt.timedelta(days=1)

    def test_out_of_range_year_means_latest(self):
        for text in ("0000", "0000-05", "9999-01"):
            assert plan_dates(text, TODAY).kind == "latest"

    def test_month_plan(self):
        plan = plan_dates("2024-06", TODAY)
        assert plan.kind == "month"
        assert plan.cache_not_before == dt.date(2024, 6, 1)
        assert plan.cache_on_or_before == dt.date(2024, 6, 30)
        assert plan.candidates == [dt.date(2024, 6, d) for d in range(1, 6)]

    def test_year_plan(self):
        plan = plan_dates("2023", TODAY)
        assert plan.kind == "year"
        assert plan.candidates == [dt.date(2023, 6, 15), dt.date(2023, 7, 1)]

    def test_future_and_garbage_fall_back_to_latest(self):
        assert plan_dates("2030-01-01", TODAY).is_latest
        assert plan_dates("sometime", TODAY).is_latest
