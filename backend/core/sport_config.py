"""Sport-level configuration - all sport-specific constants in one place.

This module is the **registry** for the sport code ↔ internal numeric id
mapping used by the games and betting tables, and for season-year
resolution.  Nowhere else in the codebase should sport ids be branched on by
string.

Architecture
------------
:class:`Sport` is a closed ``str`` enum of the public sport codes accepted by
the API (``?sport=NFL``).  :data:`SPORT_IDS` maps each to the ``sport_id``
stored in the data tables; :func:`sport_from_id` is its inverse.

Typical usage::

    from backend.core.sport_config import Sport, parse_sport, current_season_year

    sport = parse_sport("nfl")          # Sport.NFL
    sport.sport_id                      # 2
    current_season_year(sport)          # 2025 during the 2025-26 NFL season
"""

from __future__ import annotations

import os
from datetime import date
from enum import Enum
from typing import Dict, Final, Optional


class Sport(str, Enum):
    """Public sport codes."""

    CFB = "CFB"
    NFL = "NFL"
    NCAAB = "NCAAB"
    NBA = "NBA"

    @property
    def sport_id(self) -> int:
        return SPORT_IDS[self]

    @property
    def spans_calendar_years(self) -> bool:
        """Basketball seasons start in autumn and end the following spring."""
        return self in _CROSS_YEAR_SPORTS


#: Sport code → ``sport_id`` in the games / betting_data tables.
#: Matches the ids the ATS backfill job writes; NCAAB is 5, not 3.
SPORT_IDS: Final[Dict[Sport, int]] = {
    Sport.CFB: 1,
    Sport.NFL: 2,
    Sport.NBA: 4,
    Sport.NCAAB: 5,
}

_SPORTS_BY_ID: Final[Dict[int, Sport]] = {v: k for k, v in SPORT_IDS.items()}

_CROSS_YEAR_SPORTS: Final[frozenset] = frozenset({Sport.NBA, Sport.NCAAB})

#: Cross-year sports whose rows are labelled by the year the season ENDS.
#: The NCAAB 2025-26 season (Nov 2025 to Apr 2026) is stored as 2026.
_ENDING_YEAR_SPORTS: Final[frozenset] = frozenset({Sport.NCAAB})

#: First month (1-based) that belongs to the *new* season for cross-year sports.
#: Before July we are still in the season that began last autumn.
_SEASON_ROLLOVER_MONTH: Final[int] = 7

DEFAULT_SPORT: Final[Sport] = Sport.CFB


def parse_sport(code: Optional[str]) -> Optional[Sport]:
    """Case-insensitive lookup of a sport code.  Returns None if unknown."""
    if not code:
        return None
    try:
        return Sport(code.strip().upper())
    except ValueError:
        return None


def sport_from_id(sport_id: int) -> Optional[Sport]:
    """Inverse of :data:`SPORT_IDS`."""
    return _SPORTS_BY_ID.get(sport_id)


def season_year_override(sport: Sport) -> Optional[int]:
    """Read ``SEASON_YEAR_<SPORT>`` from the environment, if set and numeric."""
    raw = os.getenv(f"SEASON_YEAR_{sport.value}")
    if not raw:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def current_season_year(sport: Sport, today: Optional[date] = None) -> int:
    """
    Season year the data tables use for "this season".

    Environment overrides win.  Otherwise football seasons are labelled by the
    calendar year they start in.  Basketball seasons before July belong to
    the season that started the previous autumn; NBA labels it by that start
    year, NCAAB by the year it ends.
    """
    override = season_year_override(sport)
    if override is not None:
        return override

    today = today or date.today()
    if not sport.spans_calendar_years:
        return today.year

    start_year = today.year if today.month >= _SEASON_ROLLOVER_MONTH else today.year - 1
    if sport in _ENDING_YEAR_SPORTS:
        return start_year + 1
    return start_year
