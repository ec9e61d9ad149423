"""Fundamental odds mathematics - the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services or routes.

The pillars exposed are:

1. **Finite-number guard** - sportsbook documents carry ints, floats, strings
   and nulls side by side; only finite real numbers take part in any average.
2. **Odds conversion** - American odds → raw (vig-inclusive) implied
   probability.
3. **Vig removal** - proportional normalisation of a two-way moneyline so the
   pair sums to exactly 1.

Design decisions
----------------
* Missing or non-finite inputs produce ``None``.  A default is never
  substituted: a 50/50 fallback would be indistinguishable from a genuine
  pick'em line downstream.
* Proportional normalisation is used for the consensus win probability.  The
  inputs are already averaged across books, so the per-book favourite-longshot
  skew the Shin model corrects for is largely washed out.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import math
from typing import Any, Final, Iterable, Optional, Tuple

#: Stake basis of American odds.
_AMERICAN_BASE: Final[float] = 100.0


# ---------------------------------------------------------------------------
# Numeric guards
# ---------------------------------------------------------------------------


def is_finite_number(value: Any) -> bool:
    """True for ints/floats that are finite.  ``bool`` is rejected."""
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def finite_values(values: Iterable[Any]) -> list:
    """Filter an iterable down to its finite numeric members as floats."""
    return [float(v) for v in values if is_finite_number(v)]


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def american_to_implied(american: Any) -> Optional[float]:
    """Raw implied probability from American odds (vig-inclusive).

    Positive odds (underdog)::

        p = 100 / (odds + 100)          +150 → 0.4000

    Negative odds (favourite)::

        p = |odds| / (|odds| + 100)     -110 → 0.5238

    Zero is treated with the favourite formula and therefore yields 0.0; no
    book quotes it, but it must not raise.

    Returns:
        Probability in ``[0, 1)`` or ``None`` when ``american`` is missing or
        not a finite number.
    """
    if not is_finite_number(american):
        return None
    if american > 0:
        return _AMERICAN_BASE / (american + _AMERICAN_BASE)
    magnitude = abs(american)
    return magnitude / (magnitude + _AMERICAN_BASE)


# ---------------------------------------------------------------------------
# Vig removal
# ---------------------------------------------------------------------------


def implied_win_probability(
    moneyline_home: Any,
    moneyline_away: Any,
) -> Tuple[Optional[float], Optional[float]]:
    """Vig-free win probabilities for a two-way moneyline.

    Each side is converted with :func:`american_to_implied`; the raw pair sums
    to more than 1.0 by the bookmaker's over-round.  Dividing each by the sum
    removes that margin so the result sums to exactly 1 (within floating
    point).

    Examples::

        implied_win_probability(-110, -110) → (0.5, 0.5)
        implied_win_probability(-200, +170) → (0.6429, 0.3571)
        implied_win_probability(None, +170) → (None, None)

    Returns:
        ``(p_home, p_away)``, or ``(None, None)`` when either input is missing
        or non-finite, or when both raw probabilities are zero.
    """
    raw_home = american_to_implied(moneyline_home)
    raw_away = american_to_implied(moneyline_away)
    if raw_home is None or raw_away is None:
        return None, None

    overround = raw_home + raw_away
    if overround <= 0.0:
        return None, None
    return raw_home / overround, raw_away / overround


def mean_or_none(values: Iterable[Any]) -> Optional[float]:
    """Arithmetic mean of the finite members of ``values``; ``None`` if empty."""
    nums = finite_values(values)
    if not nums:
        return None
    return math.fsum(nums) / len(nums)
