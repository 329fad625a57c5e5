"""
Fuzzy Market Matcher.

One scoring function, one pair of thresholds. A name is accepted as an
auto-correction only at >= 0.75 (location bonus included); anything >= 0.5
is offered back to the user as a suggestion.
"""
import logging
from typing import List, Optional, Tuple

from agriguru.config import settings
from agriguru.models import MarketEntry, MatchKind, MatchOutcome, PlaceSignal, ScoredMarket
from agriguru.utils.aliases import same_district
from agriguru.utils.text import ci_eq, normalize_name, similarity, word_match

log = logging.getLogger("agriguru.matcher")

STATE_BONUS = 0.1
DISTRICT_BONUS = 0.1


class FuzzyMarketMatcher:
    def __init__(self, store, auto_accept: float = None, suggest: float = None,
                 max_suggestions: int = 3, ambiguity_margin: float = 0.05):
        self.store = store
        self.auto_accept = settings.AUTO_ACCEPT_THRESHOLD if auto_accept is None else auto_accept
        self.suggest = settings.SUGGESTION_THRESHOLD if suggest is None else suggest
        self.max_suggestions = max_suggestions
        self.ambiguity_margin = ambiguity_margin

    @staticmethod
    def location_bonus(entry: MarketEntry, state: Optional[str], district: Optional[str]) -> float:
        bonus = 0.0
        if state and ci_eq(entry.state, state):
            bonus += STATE_BONUS
        if district and same_district(district, entry.district):
            bonus += DISTRICT_BONUS
        return bonus

    def score(self, name: str, entry: MarketEntry, state: Optional[str] = None,
              district: Optional[str] = None) -> Tuple[float, float]:
        """(raw similarity, similarity + location bonus)"""
        raw = similarity(name, entry.market)
        return raw, raw + self.location_bonus(entry, state, district)

    def _ranked(self, scored: List[Tuple[float, float, MarketEntry]]) -> List[ScoredMarket]:
        return [
            ScoredMarket(market=m, score=round(min(s, 1.0), 3))
            for s, _raw, m in scored
            if s >= self.suggest
        ][:self.max_suggestions]

    def validate(self, candidate_name: Optional[str], state: Optional[str] = None,
                 district: Optional[str] = None,
                 place_signal: Optional[PlaceSignal] = None) -> MatchOutcome:
        name = normalize_name(candidate_name)
        if not name:
            return MatchOutcome.not_found()

        # 1) exact / whole-word hit inside the requested area
        hits = [
            m for m in self.store.find_markets(name=name, state=state, district=district)
            if word_match(name, m.market)
        ]
        if hits:
            equal = [m for m in hits if normalize_name(m.market) == name]
            pool = equal or hits
            if len(pool) == 1:
                return MatchOutcome(kind=MatchKind.EXACT, market=pool[0], score=1.0)
            scored = sorted(
                ((1.0 + self.location_bonus(m, state, district), 1.0, m) for m in pool),
                key=lambda x: (-x[0], x[2].state, x[2].district, x[2].market),
            )
            if scored[0][0] > scored[1][0]:
                return MatchOutcome(kind=MatchKind.EXACT, market=scored[0][2], score=1.0)
            log.info("🔀 '%s' names %d catalog markets; returning them as suggestions", name, len(pool))
            return MatchOutcome(kind=MatchKind.SUGGESTIONS, candidates=self._ranked(scored))

        # 2) similarity over entries sharing a trigram, 3) location bonus
        scored = []
        for m in self.store.markets_sharing_trigrams(name):
            raw, total = self.score(name, m, state, district)
            if raw < self.suggest:
                continue
            scored.append((total, raw, m))
        if not scored:
            log.info("❌ no catalog market resembles '%s'", name)
            return MatchOutcome.not_found()
        scored.sort(key=lambda x: (-x[0], -x[1], x[2].market))
        suggestions = self._ranked(scored)

        # 4) auto-accept, 5) unless ambiguous and nothing vouches for the place
        best_total, best_raw, best = scored[0]
        if best_total >= self.auto_accept:
            runner = scored[1] if len(scored) > 1 else None
            ambiguous = (
                runner is not None
                and runner[0] >= self.auto_accept
                and best_total - runner[0] < self.ambiguity_margin
            )
            if not ambiguous or (place_signal is not None and place_signal.is_strong()):
                log.info("✅ '%s' auto-corrected to '%s' (%.2f)", name, best.market, best_total)
                return MatchOutcome(
                    kind=MatchKind.EXACT,
                    market=best,
                    score=round(min(best_total, 1.0), 3),
                    auto_corrected=True,
                    candidates=suggestions,
                )

        if not suggestions:
            return MatchOutcome.not_found()
        return MatchOutcome(kind=MatchKind.SUGGESTIONS, candidates=suggestions)
