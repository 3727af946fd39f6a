"""Partner selection for waiting sessions.

The matchmaker only decides; committing a pairing (state changes,
notifications) is the session coordinator's job.
"""

import logging
import random
from collections.abc import Callable, Iterable

from vocaline.session import SessionRecord

logger = logging.getLogger(__name__)


class Matchmaker:
    """Selects a partner uniformly at random among eligible waiting sessions.

    No weighting and no wait-time preference: random choice keeps pairing
    unpredictable and needs no ordering bookkeeping beyond the pool itself.
    """

    def __init__(self, rng: random.Random | None = None, seed: int | None = None) -> None:
        """Initialize matchmaker.

        Args:
            rng: Random source (takes precedence over seed)
            seed: Seed for a private random source, for reproducible pairing
        """
        self._rng = rng if rng is not None else random.Random(seed)

    @staticmethod
    def is_eligible(requester: SessionRecord, candidate: SessionRecord) -> bool:
        """Check whether two sessions may be paired right now.

        Only the requester's own exclusion counts. A candidate that still
        excludes the requester stays eligible for the requester's attempt,
        while its own attempts skip the requester.
        """
        return (
            candidate.id != requester.id
            and candidate.is_waiting
            and candidate.id != requester.excluded_partner
        )

    def eligible_partners(
        self,
        requester: SessionRecord,
        pool: Iterable[str],
        lookup: Callable[[str], SessionRecord | None],
    ) -> list[SessionRecord]:
        """Eligible partners for a requester, in pool order.

        Args:
            requester: Session looking for a partner
            pool: Waiting pool snapshot (session ids, front first)
            lookup: Resolves a session id to its record
        """
        eligible = []
        for session_id in pool:
            candidate = lookup(session_id)
            if candidate is not None and self.is_eligible(requester, candidate):
                eligible.append(candidate)
        return eligible

    def select_partner(
        self,
        requester: SessionRecord,
        pool: Iterable[str],
        lookup: Callable[[str], SessionRecord | None],
    ) -> SessionRecord | None:
        """Pick a partner for a waiting requester.

        Returns:
            Chosen partner, or None if the requester is not waiting or nobody
            is eligible
        """
        if not requester.is_waiting:
            return None

        eligible = self.eligible_partners(requester, pool, lookup)
        if not eligible:
            logger.debug(
                "No eligible partner",
                extra={"session_id": requester.id, "excluded": requester.excluded_partner},
            )
            return None

        return self._rng.choice(eligible)
