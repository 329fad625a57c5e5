"""
Price Store: persistence and retrieval over mandi price facts and the
market/commodity catalogs.

All methods are synchronous SQLAlchemy calls; async callers go through
asyncio.to_thread. Query methods never write. Writes (upsert, catalog sync,
purge) belong to ingestion and the pipeline's cache-fill.
"""
import datetime as dt
import logging
import time
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, create_engine, delete, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agriguru.db.models import Base, CommodityMaster, MarketMaster, MarketPrice
from agriguru.errors import ConfigurationError
from agriguru.models import (
    CommodityEntry,
    MarketEntry,
    PriceFilter,
    PriceRecord,
    TrendPoint,
    TrendSeries,
)
from agriguru.utils.aliases import district_variants
from agriguru.utils.dates import today_ist
from agriguru.utils.text import (
    capitalize_first,
    normalize_name,
    trigram_similarity,
    trigrams,
)

log = logging.getLogger("agriguru.store")

def t(): return time.perf_counter()

UPSERT_CHUNK = 200
MAX_SCAN_DATES = 60
_CENTS = Decimal("0.01")

_KEY_COLUMNS = ["arrival_date", "state", "district", "market", "commodity", "variety"]
_UPDATE_COLUMNS = [
    "grade", "min_price", "max_price", "modal_price",
    "arrival_quantity", "data_source", "synced_at",
]


def create_store_engine(url: str, echo: bool = False) -> Engine:
    """Engine for Postgres (psycopg2) in production, SQLite for local runs and tests."""
    if not url:
        raise ConfigurationError("DATABASE_URL not set in .env file")
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite://", "sqlite+pysqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True, pool_size=5, max_overflow=10)


def _like(value: str) -> str:
    v = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{v}%"


def _quantize(x) -> Optional[Decimal]:
    if x is None:
        return None
    return Decimal(str(x)).quantize(_CENTS)


def _to_record(row: MarketPrice) -> PriceRecord:
    return PriceRecord(
        date=row.arrival_date,
        state=row.state,
        district=row.district,
        market=row.market,
        commodity=row.commodity,
        variety=row.variety or None,
        grade=row.grade,
        min_price=row.min_price,
        max_price=row.max_price,
        modal_price=row.modal_price,
        arrival_quantity=row.arrival_quantity,
        source=row.data_source,
    )


def _to_row(rec: PriceRecord, synced_at: dt.datetime) -> dict:
    return {
        "arrival_date": rec.date,
        "state": " ".join(rec.state.split()),
        "district": " ".join(rec.district.split()),
        "market": " ".join(rec.market.split()),
        "commodity": " ".join(rec.commodity.split()),
        "variety": " ".join((rec.variety or "").split()),
        "grade": rec.grade,
        "min_price": rec.min_price,
        "max_price": rec.max_price,
        "modal_price": rec.modal_price,
        "arrival_quantity": rec.arrival_quantity,
        "data_source": rec.source,
        "synced_at": synced_at,
    }


def _to_market(row: MarketMaster) -> MarketEntry:
    return MarketEntry(
        market=row.market,
        district=row.district,
        state=row.state,
        latitude=row.latitude,
        longitude=row.longitude,
        is_active=row.is_active,
        last_data_date=row.last_data_date,
    )


def location_matches(rec: PriceRecord, f: PriceFilter) -> bool:
    """Row really belongs to the requested state/district/market."""
    if f.state and normalize_name(rec.state) != normalize_name(f.state):
        return False
    if f.district and normalize_name(rec.district) not in {normalize_name(d) for d in district_variants(f.district)}:
        return False
    if f.market and normalize_name(rec.market) != normalize_name(f.market):
        return False
    return True


def dedupe_latest(records: Iterable[PriceRecord],
                  key: Callable[[PriceRecord], tuple] = lambda r: (
                      normalize_name(r.commodity), normalize_name(r.market), normalize_name(r.variety))
                  ) -> List[PriceRecord]:
    """Keep only the most recent record per key; output sorted newest first."""
    best: Dict[tuple, PriceRecord] = {}
    for r in records:
        k = key(r)
        cur = best.get(k)
        if cur is None or r.date > cur.date:
            best[k] = r
    return sorted(best.values(), key=lambda r: (-r.date.toordinal(), r.commodity.lower(), r.market.lower()))


class PriceStore:
    """SQLAlchemy-backed store; one instance per process, passed in where needed."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session = sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "PriceStore":
        return cls(create_store_engine(url, echo=echo))

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # ---------- filters ----------

    @staticmethod
    def _conditions(f: PriceFilter) -> list:
        conds = []
        if f.commodity:
            conds.append(func.lower(MarketPrice.commodity).like(_like(normalize_name(f.commodity)), escape="\\"))
        if f.state:
            conds.append(func.lower(MarketPrice.state) == normalize_name(f.state))
        if f.district:
            variants = [normalize_name(d) for d in district_variants(f.district)]
            conds.append(func.lower(MarketPrice.district).in_(variants))
        if f.market:
            conds.append(func.lower(MarketPrice.market) == normalize_name(f.market))
        return conds

    # ---------- price reads ----------

    def get_latest(self, commodity: Optional[str] = None, state: Optional[str] = None,
                   district: Optional[str] = None, market: Optional[str] = None,
                   limit: int = 50, on_or_before: Optional[dt.date] = None,
                   not_before: Optional[dt.date] = None) -> List[PriceRecord]:
        """
        Most recent rows for the filter, at most one per (commodity, market, variety).
        When a key appears on several dates only the latest survives, so each
        commodity is reported at its own newest date inside the window.
        """
        f = PriceFilter(commodity=commodity, state=state, district=district, market=market)
        conds = self._conditions(f)
        if on_or_before:
            conds.append(MarketPrice.arrival_date <= on_or_before)
        if not_before:
            conds.append(MarketPrice.arrival_date >= not_before)
        group_cols = [
            MarketPrice.commodity, MarketPrice.state, MarketPrice.district,
            MarketPrice.market, MarketPrice.variety,
        ]
        latest = (
            select(*group_cols, func.max(MarketPrice.arrival_date).label("latest_date"))
            .where(*conds)
            .group_by(*group_cols)
            .subquery()
        )
        stmt = (
            select(MarketPrice)
            .join(latest, and_(
                MarketPrice.commodity == latest.c.commodity,
                MarketPrice.state == latest.c.state,
                MarketPrice.district == latest.c.district,
                MarketPrice.market == latest.c.market,
                MarketPrice.variety == latest.c.variety,
                MarketPrice.arrival_date == latest.c.latest_date,
            ))
            .order_by(MarketPrice.arrival_date.desc(), MarketPrice.commodity, MarketPrice.market)
            .limit(limit)
        )
        with self._session() as s:
            rows = [_to_record(r) for r in s.scalars(stmt)]
        return dedupe_latest(rows)

    def get_on_date(self, f: PriceFilter, date: dt.date) -> List[PriceRecord]:
        stmt = (
            select(MarketPrice)
            .where(*self._conditions(f), MarketPrice.arrival_date == date)
            .order_by(MarketPrice.commodity, MarketPrice.market, MarketPrice.variety)
        )
        with self._session() as s:
            return [_to_record(r) for r in s.scalars(stmt)]

    def get_last_available(self, f: PriceFilter, on_or_before: Optional[dt.date] = None,
                           not_before: Optional[dt.date] = None,
                           today: Optional[dt.date] = None) -> Tuple[List[PriceRecord], Optional[dt.date]]:
        """
        Walk back from yesterday (or `on_or_before`) to the newest date with rows
        for this filter. Rows are re-checked against the requested market/district,
        so a date that only has other towns' prices is skipped, not returned.
        """
        end = on_or_before or ((today or today_ist()) - dt.timedelta(days=1))
        conds = self._conditions(f) + [MarketPrice.arrival_date <= end]
        if not_before:
            conds.append(MarketPrice.arrival_date >= not_before)
        dates_stmt = (
            select(MarketPrice.arrival_date)
            .where(*conds)
            .group_by(MarketPrice.arrival_date)
            .order_by(MarketPrice.arrival_date.desc())
            .limit(MAX_SCAN_DATES)
        )
        with self._session() as s:
            dates = list(s.scalars(dates_stmt))

        for d in dates:
            rows = [r for r in self.get_on_date(f, d) if location_matches(r, f)]
            if rows:
                return rows, d
        return [], None

    def get_trend(self, commodity: Optional[str] = None, state: Optional[str] = None,
                  district: Optional[str] = None, market: Optional[str] = None,
                  days: int = 30, today: Optional[dt.date] = None) -> List[TrendSeries]:
        """
        Daily avg/min/max modal price and row count. Market-wide requests get one
        series per commodity; commodities are never averaged together.
        """
        start = (today or today_ist()) - dt.timedelta(days=days)
        f = PriceFilter(commodity=commodity, state=state, district=district, market=market)
        conds = self._conditions(f) + [
            MarketPrice.arrival_date >= start,
            MarketPrice.modal_price.is_not(None),
        ]
        aggs = [
            func.avg(MarketPrice.modal_price).label("avg_price"),
            func.min(MarketPrice.modal_price).label("min_price"),
            func.max(MarketPrice.modal_price).label("max_price"),
            func.count(MarketPrice.id).label("n"),
        ]
        if commodity:
            stmt = (
                select(MarketPrice.arrival_date, *aggs)
                .where(*conds)
                .group_by(MarketPrice.arrival_date)
                .order_by(MarketPrice.arrival_date)
            )
        else:
            stmt = (
                select(MarketPrice.commodity, MarketPrice.arrival_date, *aggs)
                .where(*conds)
                .group_by(MarketPrice.commodity, MarketPrice.arrival_date)
                .order_by(MarketPrice.commodity, MarketPrice.arrival_date)
            )

        series: Dict[str, TrendSeries] = {}
        with self._session() as s:
            for row in s.execute(stmt):
                name = capitalize_first(commodity) if commodity else row.commodity
                point = TrendPoint(
                    date=row.arrival_date,
                    avg_price=_quantize(row.avg_price),
                    min_price=_quantize(row.min_price),
                    max_price=_quantize(row.max_price),
                    count=row.n,
                )
                series.setdefault(name, TrendSeries(commodity=name)).points.append(point)
        return list(series.values())

    def search_fuzzy(self, market_approx: str, commodity: Optional[str] = None,
                     start: Optional[dt.date] = None, end: Optional[dt.date] = None,
                     threshold: float = 0.3, limit: int = 100) -> List[PriceRecord]:
        """
        Price rows whose market name is trigram-similar to `market_approx`,
        best-matching market first, newest first within a market.
        """
        grams = trigrams(market_approx)
        if not grams:
            return []
        conds = [or_(*(func.lower(MarketPrice.market).like(_like(g), escape="\\") for g in grams))]
        if commodity:
            conds.append(func.lower(MarketPrice.commodity).like(_like(normalize_name(commodity)), escape="\\"))
        if start:
            conds.append(MarketPrice.arrival_date >= start)
        if end:
            conds.append(MarketPrice.arrival_date <= end)

        with self._session() as s:
            names = set(s.scalars(select(MarketPrice.market).where(*conds).distinct()))
            scored = {n: trigram_similarity(market_approx, n) for n in names}
            keep = [n for n, sc in scored.items() if sc >= threshold]
            if not keep:
                return []
            stmt = (
                select(MarketPrice)
                .where(*conds, MarketPrice.market.in_(keep))
                .order_by(MarketPrice.arrival_date.desc())
            )
            rows = [_to_record(r) for r in s.scalars(stmt)]
        rows.sort(key=lambda r: -scored[r.market])
        return rows[:limit]

    # ---------- writes ----------

    def _insert(self, model):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise ConfigurationError(f"Unsupported database dialect for upsert: {dialect}")
        return insert(model)

    def upsert(self, records: Sequence[PriceRecord]) -> int:
        """Insert-or-replace on the natural key. Last write wins; never duplicates."""
        if not records:
            return 0
        start = t()
        now = dt.datetime.now(dt.timezone.utc)
        by_key: Dict[tuple, dict] = {}
        for rec in records:
            by_key[rec.natural_key()] = _to_row(rec, now)
        rows = list(by_key.values())

        with self._session.begin() as s:
            for i in range(0, len(rows), UPSERT_CHUNK):
                stmt = self._insert(MarketPrice).values(rows[i:i + UPSERT_CHUNK])
                stmt = stmt.on_conflict_do_update(
                    index_elements=_KEY_COLUMNS,
                    set_={c: stmt.excluded[c] for c in _UPDATE_COLUMNS},
                )
                s.execute(stmt)
        log.info("💾 upserted %d price rows in %dms", len(rows), round((t() - start) * 1000))
        return len(rows)

    def purge_older_than(self, days: int, today: Optional[dt.date] = None) -> int:
        cutoff = (today or today_ist()) - dt.timedelta(days=days)
        with self._session.begin() as s:
            res = s.execute(delete(MarketPrice).where(MarketPrice.arrival_date < cutoff))
        removed = res.rowcount or 0
        log.info("🧹 purged %d price rows older than %s", removed, cutoff.isoformat())
        return removed

    # ---------- catalog reads ----------

    def find_markets(self, name: Optional[str] = None, state: Optional[str] = None,
                     district: Optional[str] = None, active_only: bool = True,
                     limit: Optional[int] = None) -> List[MarketEntry]:
        """Catalog entries whose name contains `name` (case-insensitive), narrowed by location."""
        conds = []
        if name:
            conds.append(func.lower(MarketMaster.market).like(_like(normalize_name(name)), escape="\\"))
        if state:
            conds.append(func.lower(MarketMaster.state) == normalize_name(state))
        if district:
            conds.append(func.lower(MarketMaster.district).in_([normalize_name(d) for d in district_variants(district)]))
        if active_only:
            conds.append(MarketMaster.is_active.is_(True))
        stmt = select(MarketMaster).where(*conds).order_by(MarketMaster.state, MarketMaster.district, MarketMaster.market)
        if limit:
            stmt = stmt.limit(limit)
        with self._session() as s:
            return [_to_market(r) for r in s.scalars(stmt)]

    def get_market(self, name: str, state: Optional[str] = None,
                   district: Optional[str] = None) -> Optional[MarketEntry]:
        conds = [func.lower(MarketMaster.market) == normalize_name(name)]
        if state:
            conds.append(func.lower(MarketMaster.state) == normalize_name(state))
        if district:
            conds.append(func.lower(MarketMaster.district).in_([normalize_name(d) for d in district_variants(district)]))
        with self._session() as s:
            row = s.scalars(select(MarketMaster).where(*conds).order_by(MarketMaster.id).limit(1)).first()
        return _to_market(row) if row else None

    def markets_sharing_trigrams(self, name: str, state: Optional[str] = None,
                                 district: Optional[str] = None) -> List[MarketEntry]:
        """Comparison set for fuzzy matching: entries with at least one trigram in common."""
        grams = trigrams(name)
        if not grams:
            return []
        conds = [
            or_(*(func.lower(MarketMaster.market).like(_like(g), escape="\\") for g in grams)),
            MarketMaster.is_active.is_(True),
        ]
        if state:
            conds.append(func.lower(MarketMaster.state) == normalize_name(state))
        if district:
            conds.append(func.lower(MarketMaster.district).in_([normalize_name(d) for d in district_variants(district)]))
        with self._session() as s:
            return [_to_market(r) for r in s.scalars(select(MarketMaster).where(*conds))]

    def markets_with_coordinates(self, state: Optional[str] = None) -> List[MarketEntry]:
        conds = [
            MarketMaster.latitude.is_not(None),
            MarketMaster.longitude.is_not(None),
            MarketMaster.is_active.is_(True),
        ]
        if state:
            conds.append(func.lower(MarketMaster.state) == normalize_name(state))
        with self._session() as s:
            return [_to_market(r) for r in s.scalars(select(MarketMaster).where(*conds))]

    def commodity_aliases(self, name: Optional[str]) -> List[str]:
        """Catalog aliases for a commodity, looked up by its name or any of its aliases."""
        key = normalize_name(name)
        if not key:
            return []
        with self._session() as s:
            rows = list(s.scalars(select(CommodityMaster).where(CommodityMaster.aliases.is_not(None))))
        for row in rows:
            names = [normalize_name(row.commodity_name), *(normalize_name(a) for a in (row.aliases or []))]
            if key in names:
                return [n for n in names if n != key]
        return []

    def list_commodities(self, popular_only: bool = False) -> List[CommodityEntry]:
        stmt = select(CommodityMaster).order_by(CommodityMaster.commodity_name)
        if popular_only:
            stmt = stmt.where(CommodityMaster.is_popular.is_(True))
        with self._session() as s:
            return [
                CommodityEntry(name=r.commodity_name, category=r.category, aliases=r.aliases or [])
                for r in s.scalars(stmt)
            ]

    # ---------- catalog writes (ingestion only) ----------

    def upsert_markets(self, entries: Sequence[MarketEntry]) -> int:
        if not entries:
            return 0
        rows = {}
        for e in entries:
            key = (normalize_name(e.state), normalize_name(e.district), normalize_name(e.market))
            rows[key] = {
                "state": e.state, "district": e.district, "market": e.market,
                "latitude": e.latitude, "longitude": e.longitude,
                "is_active": e.is_active, "last_data_date": e.last_data_date,
                "created_at": dt.datetime.now(dt.timezone.utc),
            }
        values = list(rows.values())
        with self._session.begin() as s:
            for i in range(0, len(values), UPSERT_CHUNK):
                stmt = self._insert(MarketMaster).values(values[i:i + UPSERT_CHUNK])
                stmt = stmt.on_conflict_do_update(
                    index_elements=["state", "district", "market"],
                    set_={
                        "latitude": func.coalesce(stmt.excluded.latitude, MarketMaster.latitude),
                        "longitude": func.coalesce(stmt.excluded.longitude, MarketMaster.longitude),
                        "is_active": stmt.excluded.is_active,
                        "last_data_date": func.coalesce(stmt.excluded.last_data_date, MarketMaster.last_data_date),
                    },
                )
                s.execute(stmt)
        return len(values)

    def upsert_commodities(self, entries: Sequence[CommodityEntry]) -> int:
        if not entries:
            return 0
        values = list({
            normalize_name(e.name): {
                "commodity_name": e.name, "category": e.category,
                "aliases": e.aliases or None, "is_popular": False,
            }
            for e in entries
        }.values())
        with self._session.begin() as s:
            stmt = self._insert(CommodityMaster).values(values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["commodity_name"],
                set_={
                    "category": func.coalesce(stmt.excluded.category, CommodityMaster.category),
                    "aliases": func.coalesce(stmt.excluded.aliases, CommodityMaster.aliases),
                },
            )
            s.execute(stmt)
        return len(values)

    def sync_catalog_from_prices(self) -> Dict[str, int]:
        """Register every (state, district, market) and commodity seen in price rows."""
        start = t()
        with self._session() as s:
            market_rows = s.execute(
                select(MarketPrice.state, MarketPrice.district, MarketPrice.market,
                       func.max(MarketPrice.arrival_date).label("last_date"))
                .group_by(MarketPrice.state, MarketPrice.district, MarketPrice.market)
            ).all()
            commodity_names = list(s.scalars(select(MarketPrice.commodity).distinct()))

        markets = [
            MarketEntry(state=r.state, district=r.district, market=r.market, last_data_date=r.last_date)
            for r in market_rows
        ]
        n_markets = self.upsert_markets(markets)

        known = {normalize_name(c.name) for c in self.list_commodities()}
        fresh = [CommodityEntry(name=c) for c in commodity_names if normalize_name(c) not in known]
        n_commodities = self.upsert_commodities(fresh)
        log.info("✅ catalog sync: %d markets, %d new commodities in %dms",
                 n_markets, n_commodities, round((t() - start) * 1000))
        return {"markets": n_markets, "commodities": n_commodities}
