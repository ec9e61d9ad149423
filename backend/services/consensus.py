"""
Consensus odds across sportsbooks.

Every event in ``betting_data`` carries one line per sportsbook.  The
consensus line is the plain arithmetic mean of each field across the books
that actually quote it:

  spread_home / spread_away:
      Averaged independently.  A book missing the away spread still
      contributes to the home average, and vice versa.

  total_points:
      Per book ``(total_over + total_under) / 2``, only for books quoting
      both legs; then averaged across books.

  moneyline_home / moneyline_away:
      Averaged independently, like spreads.  ``win_probability`` converts the
      consensus pair into vig-free probabilities.

A field with no contributing book is ``None``.

Batched lookups (:meth:`OddsConsensusService.consensus_for_events`) issue one
query for any number of events, so ATS aggregation never degenerates into a
per-game query loop.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from backend.core.odds_math import implied_win_probability, is_finite_number, mean_or_none
from backend.services.repository import BettingDocument, SportsDataRepository, sum_periods

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpreadConsensus:
    home: Optional[float] = None
    away: Optional[float] = None


@dataclass(frozen=True)
class MoneylineConsensus:
    home: Optional[float] = None
    away: Optional[float] = None


@dataclass(frozen=True)
class ConsensusLine:
    """Mean of each market field across the books quoting it."""

    spread_home: Optional[float] = None
    spread_away: Optional[float] = None
    total_points: Optional[float] = None
    moneyline_home: Optional[float] = None
    moneyline_away: Optional[float] = None
    books: int = 0

    @property
    def spread(self) -> SpreadConsensus:
        return SpreadConsensus(home=self.spread_home, away=self.spread_away)

    @property
    def moneyline(self) -> MoneylineConsensus:
        return MoneylineConsensus(home=self.moneyline_home, away=self.moneyline_away)

    @property
    def win_probability(self) -> Tuple[Optional[float], Optional[float]]:
        """Vig-free ``(p_home, p_away)`` from the consensus moneylines."""
        return implied_win_probability(self.moneyline_home, self.moneyline_away)


@dataclass(frozen=True)
class EventOdds:
    """Consensus line for one event plus its authoritative final score."""

    event_id: str
    consensus: ConsensusLine
    final_score: Optional[Tuple[int, int]] = None  # (home, away)

    def spread_for(self, is_home: bool) -> Optional[float]:
        return self.consensus.spread_home if is_home else self.consensus.spread_away


EMPTY_CONSENSUS = ConsensusLine()


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def _market(line: Mapping[str, Any], market: str) -> Mapping[str, Any]:
    value = line.get(market) if isinstance(line, Mapping) else None
    return value if isinstance(value, Mapping) else {}


def line_total_points(line: Mapping[str, Any]) -> Optional[float]:
    """Midpoint of the over/under for one book, or None unless both legs exist."""
    total = _market(line, "total")
    over = total.get("total_over")
    under = total.get("total_under")
    if not (is_finite_number(over) and is_finite_number(under)):
        return None
    return (float(over) + float(under)) / 2.0


def compute_consensus(lines: Iterable[Mapping[str, Any]]) -> ConsensusLine:
    """Average spread / total / moneyline across sportsbook lines."""
    books: List[Mapping[str, Any]] = [l for l in lines if isinstance(l, Mapping)]
    if not books:
        return EMPTY_CONSENSUS

    return ConsensusLine(
        spread_home=mean_or_none(_market(l, "spread").get("point_spread_home") for l in books),
        spread_away=mean_or_none(_market(l, "spread").get("point_spread_away") for l in books),
        total_points=mean_or_none(line_total_points(l) for l in books),
        moneyline_home=mean_or_none(_market(l, "moneyline").get("moneyline_home") for l in books),
        moneyline_away=mean_or_none(_market(l, "moneyline").get("moneyline_away") for l in books),
        books=len(books),
    )


def authoritative_score(score: Optional[Mapping[str, Any]]) -> Optional[Tuple[int, int]]:
    """Summed score-by-period ``(home, away)``; None unless both sides sum."""
    if not isinstance(score, Mapping):
        return None
    home = sum_periods(score.get("score_home_by_period"))
    away = sum_periods(score.get("score_away_by_period"))
    if home is None or away is None:
        return None
    return home, away


def event_odds_from_document(doc: BettingDocument) -> EventOdds:
    lines = doc.lines.values() if isinstance(doc.lines, Mapping) else []
    return EventOdds(
        event_id=doc.event_id,
        consensus=compute_consensus(lines),
        final_score=authoritative_score(doc.score),
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class OddsConsensusService:
    """Consensus lookups backed by the ``betting_data`` table."""

    def __init__(self, repository: SportsDataRepository):
        self.repository = repository

    def _fetch_events(self, event_ids: Sequence[str]) -> Dict[str, EventOdds]:
        docs = self.repository.find_betting_documents(list(event_ids))
        return {event_id: event_odds_from_document(doc) for event_id, doc in docs.items()}

    def lookup_events(self, event_ids: Sequence[str]) -> Tuple[Dict[str, EventOdds], bool]:
        """
        Batched consensus plus whether the betting store answered.

        ``({}, False)`` after a data-store failure, so callers can tell
        "no lines" apart from "lookup failed" and avoid caching the latter.
        """
        if not event_ids:
            return {}, True
        try:
            return self._fetch_events(event_ids), True
        except Exception as exc:
            logger.error("Consensus batch lookup failed (%d events): %s", len(event_ids), exc, exc_info=True)
            return {}, False

    def lookup_event(self, event_id: str) -> Tuple[Optional[EventOdds], bool]:
        odds, ok = self.lookup_events([str(event_id)])
        return odds.get(str(event_id)), ok

    def consensus_for_events(self, event_ids: Sequence[str]) -> Dict[str, EventOdds]:
        """
        Batched consensus for many events in a single repository call.

        Events without a betting document are absent from the result.
        Returns ``{}`` on any data-store failure.
        """
        return self.lookup_events(event_ids)[0]

    def consensus_for_event(self, event_id: str) -> Optional[EventOdds]:
        """Single-event lookup.  None when the event has no betting document."""
        return self.lookup_event(event_id)[0]

    def consensus_spread(self, event_id: str) -> SpreadConsensus:
        odds = self.consensus_for_event(event_id)
        return odds.consensus.spread if odds else SpreadConsensus()

    def consensus_total(self, event_id: str) -> Optional[float]:
        odds = self.consensus_for_event(event_id)
        return odds.consensus.total_points if odds else None

    def consensus_moneyline(self, event_id: str) -> MoneylineConsensus:
        odds = self.consensus_for_event(event_id)
        return odds.consensus.moneyline if odds else MoneylineConsensus()
