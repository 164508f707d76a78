"""Decides whether an area is already covered by a recent company-matching call."""

import logging
from datetime import datetime

from sourcing.core.geo import distance_km
from sourcing.models import Position, SourcingAttempt

logger = logging.getLogger(__name__)


class SourcingThrottle:
    """Skips API calls when a recent attempt for the same occupation is close enough.

    ``attempts`` is a sourcing-attempt store exposing ``add`` and ``list_since``.
    """

    def __init__(self, attempts):
        self.attempts = attempts

    def should_source(
        self, occupation_code: str, position: Position, requested_radius_km: float, since: datetime
    ) -> bool:
        previous = self.attempts.list_since(occupation_code, since)
        if not previous:
            return True

        # Equidistant attempts: the most recent one wins.
        closest_distance, _, closest = min(
            (
                (distance_km(attempt.position, position), -attempt.requested_at.timestamp(), attempt)
                for attempt in previous
            ),
            key=lambda entry: entry[:2],
        )
        if closest_distance > requested_radius_km:
            return True

        logger.info(
            "Skipping rome=%s at (%.4f, %.4f): attempt from %s is %.1f km away (radius %.1f km)",
            occupation_code,
            position.lat,
            position.lon,
            closest.requested_at.isoformat(),
            closest_distance,
            requested_radius_km,
        )
        return False

    def record_attempt(self, attempt: SourcingAttempt) -> None:
        self.attempts.add(attempt)
