"""In-memory pre-filter chain applied to collected job cards.

Filter order (cheap first, before any detail page is visited):
  1. RankFilter            — keep only the requested budget ranks
  2. CompanyCollapseFilter — one card per company, best rank wins
  3. KnownCompanyFilter    — drop companies already in the store
"""

import logging
from collections.abc import Callable, Iterable

from harvest.core.schemas import JobCardInfo

logger = logging.getLogger(__name__)

# A filter is a callable that takes cards and returns a subset.
CardFilter = Callable[[list[JobCardInfo]], list[JobCardInfo]]

# Lower is better; unranked cards lose to any ranked card.
RANK_ORDER: dict[str | None, int] = {"A": 0, "B": 1, "C": 2, None: 3}


class RankFilter:
    """Keep cards whose rank is in the inclusion list.

    An empty inclusion list is a no-op. Unranked cards never match a
    non-empty list.
    """

    def __init__(self, ranks: Iterable[str]) -> None:
        self._ranks = {r.upper() for r in ranks}

    def __call__(self, cards: list[JobCardInfo]) -> list[JobCardInfo]:
        if not self._ranks:
            return cards
        result = [c for c in cards if c.rank in self._ranks]
        removed = len(cards) - len(result)
        if removed:
            logger.debug("RankFilter: removed %d cards", removed)
        return result


class CompanyCollapseFilter:
    """Collapse several listings of one company into its best-ranked card.

    Ties keep the first-seen card. Output follows the order in which each
    company first appeared. Cards without a company name pass through.
    """

    def __call__(self, cards: list[JobCardInfo]) -> list[JobCardInfo]:
        best: dict[str, JobCardInfo] = {}
        order: list[str | JobCardInfo] = []
        for card in cards:
            name = card.company_name.strip()
            if not name:
                order.append(card)
                continue
            current = best.get(name)
            if current is None:
                best[name] = card
                order.append(name)
            elif RANK_ORDER[card.rank] < RANK_ORDER[current.rank]:
                best[name] = card

        result = [best[item] if isinstance(item, str) else item for item in order]
        collapsed = len(cards) - len(result)
        if collapsed:
            logger.debug("CompanyCollapseFilter: collapsed %d duplicate listings", collapsed)
        return result


class KnownCompanyFilter:
    """Drop cards for companies already persisted (set bulk-read once per run)."""

    def __init__(self, known_names: set[str]) -> None:
        self._known = known_names

    def __call__(self, cards: list[JobCardInfo]) -> list[JobCardInfo]:
        result = [c for c in cards if c.company_name.strip() not in self._known]
        removed = len(cards) - len(result)
        if removed:
            logger.debug("KnownCompanyFilter: removed %d known companies", removed)
        return result


def build_prefilters(rank_filter: Iterable[str], known_names: set[str]) -> list[CardFilter]:
    """Build the pre-filter chain in its fixed order."""
    return [
        RankFilter(rank_filter),
        CompanyCollapseFilter(),
        KnownCompanyFilter(known_names),
    ]


def run_prefilters(cards: list[JobCardInfo], filters: list[CardFilter]) -> list[JobCardInfo]:
    """Apply filters in order, returning the surviving cards."""
    result = cards
    for f in filters:
        result = f(result)
    return result
