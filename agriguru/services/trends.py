"""
Trend summaries over the store's daily price series.
"""
import statistics
from decimal import Decimal
from typing import Optional

from agriguru.models import TrendSeries, TrendSummary

STABLE_PCT = 1.0
STRONG_PCT = 10.0
MODERATE_PCT = 5.0


def _strength(pct: float) -> str:
    a = abs(pct)
    if a > STRONG_PCT:
        return "strong"
    if a > MODERATE_PCT:
        return "moderate"
    return "slight"


def summarize_series(series: TrendSeries, days: Optional[int] = None) -> TrendSummary:
    """
    Direction, size and volatility of the move from the first to the last
    daily average. Needs at least two days of data.
    """
    points = sorted(series.points, key=lambda p: p.date)
    span = days if days is not None else len(points)
    if len(points) < 2:
        return TrendSummary(
            commodity=series.commodity,
            days=span,
            direction="insufficient_data",
            last_price=points[-1].avg_price if points else None,
            points=points,
        )

    first, last = points[0].avg_price, points[-1].avg_price
    change = (last - first).quantize(Decimal("0.01"))
    pct = float(change / first * 100) if first else 0.0

    if abs(pct) < STABLE_PCT:
        direction = "stable"
    elif pct > 0:
        direction = "increasing"
    else:
        direction = "decreasing"

    return TrendSummary(
        commodity=series.commodity,
        days=span,
        direction=direction,
        strength=_strength(pct),
        first_price=first,
        last_price=last,
        change=change,
        change_pct=round(pct, 2),
        volatility=round(statistics.pstdev(float(p.avg_price) for p in points), 2),
        peak=max(points, key=lambda p: p.avg_price),
        trough=min(points, key=lambda p: p.avg_price),
        points=points,
    )
