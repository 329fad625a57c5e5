"""
Farmer-facing English text for a ResolutionResult.
Translation to the user's language happens afterwards in the /ask route.
"""
from decimal import Decimal
from typing import List, Optional

from agriguru.models import (
    PriceRecord,
    QueryIntent,
    ResolutionResult,
    ResolutionStatus,
    SourceTier,
    TrendSummary,
)
from agriguru.utils.text import capitalize_first

MAX_LINES = 10


def _inr(x: Optional[Decimal]) -> str:
    return f"₹{x:,.0f}" if x is not None else "N/A"


def _record_line(r: PriceRecord, with_market: bool = False) -> str:
    name = r.commodity + (f" ({r.variety})" if r.variety else "")
    where = f" at {r.market}" if with_market else ""
    return (f"• {name}{where}: modal {_inr(r.modal_price)}/qtl "
            f"(min {_inr(r.min_price)}, max {_inr(r.max_price)})")


def _subject(intent: QueryIntent, result: ResolutionResult) -> str:
    crop = capitalize_first(intent.commodity) if intent.commodity else "prices"
    loc = intent.location
    place = (result.market.market if result.market else None) or loc.market or loc.district or loc.state
    return f"{crop} in {place}" if place else crop


def _freshness(result: ResolutionResult) -> str:
    d = result.resolved_date
    if d is None:
        return ""
    if result.source_tier in (SourceTier.CACHE, SourceTier.LIVE):
        return f"Today's prices ({d.strftime('%d %b %Y')})"
    return f"Latest available prices from {d.strftime('%d %b %Y')}"


def format_trend(s: TrendSummary) -> str:
    if s.direction == "insufficient_data":
        return f"• {s.commodity}: not enough data for a trend over {s.days} days."
    line = (f"• {s.commodity}: {s.direction} ({s.strength}) over {s.days} days, "
            f"{_inr(s.first_price)} → {_inr(s.last_price)} ({s.change_pct:+.1f}%)")
    if s.peak is not None and s.trough is not None:
        line += (f"; high {_inr(s.peak.avg_price)} on {s.peak.date.strftime('%d %b')}, "
                 f"low {_inr(s.trough.avg_price)} on {s.trough.date.strftime('%d %b')}")
    return line + "."


def format_result(intent: QueryIntent, result: ResolutionResult) -> str:
    """Render a resolution result as a short chat answer."""
    subject = _subject(intent, result)

    if result.status == ResolutionStatus.CANCELLED:
        return "Request cancelled."

    if result.status == ResolutionStatus.SUGGESTIONS:
        asked = result.notes.get("unvalidated_market") or intent.location.market
        lines = [f"I couldn't find a market named '{asked}'."]
        if result.suggestions:
            names = ", ".join(f"{s.market.market} ({s.market.district})" for s in result.suggestions)
            lines.append(f"Did you mean: {names}?")
        if result.nearby:
            lines.append("Markets near that place: " + ", ".join(n.market.market for n in result.nearby[:5]) + ".")
        return "\n".join(lines)

    if result.status == ResolutionStatus.EMPTY or not result.found:
        if result.notes.get("missing_location"):
            return "Please tell me which market, district or state you want prices for."
        if result.notes.get("deadline_exceeded"):
            return f"Price lookup for {subject} took too long. Please try again in a moment."
        alternatives = ", ".join(n.market.market for n in result.nearby[:5]) or "none"
        return f"No data available for {subject}; nearest alternatives: {alternatives}."

    lines: List[str] = []
    corrected = result.notes.get("auto_corrected")
    if corrected:
        lines.append(f"Showing results for {corrected['to']} (you asked for '{corrected['from']}').")

    if result.trends:
        lines.append(f"Price trend for {subject}:")
        lines.extend(format_trend(s) for s in result.trends[:MAX_LINES])
        return "\n".join(lines)

    if result.source_tier == SourceTier.NEARBY:
        requested = intent.location.market or intent.location.district or "your location"
        lines.append(f"No recent prices at {requested}. Prices from nearby markets: "
                     f"{', '.join(result.substituted_markets)}.")
    freshness = _freshness(result)
    if freshness:
        lines.append(f"{freshness} for {subject}:")

    many_markets = len({r.market for r in result.records}) > 1
    lines.extend(_record_line(r, with_market=many_markets) for r in result.records[:MAX_LINES])
    if len(result.records) > MAX_LINES:
        lines.append(f"…and {len(result.records) - MAX_LINES} more.")
    return "\n".join(lines)
