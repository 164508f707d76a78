"""Append-only log of calls made to the company-matching API."""

import logging
import threading
from datetime import datetime
from typing import List

from psycopg2 import extras

from sourcing.core.db import get_connection, transaction
from sourcing.models import AttemptResult, Position, SourcingAttempt

logger = logging.getLogger(__name__)

_INSERT_ATTEMPT = """
INSERT INTO sourcing_attempts (requested_at, occupation_code, lat, lon, radius_km, result)
VALUES (%(requested_at)s, %(occupation_code)s, %(lat)s, %(lon)s, %(radius_km)s, %(result)s);
"""

_SELECT_SINCE = """
SELECT requested_at, occupation_code, lat, lon, radius_km, result
FROM sourcing_attempts
WHERE occupation_code = %(occupation_code)s AND requested_at >= %(since)s;
"""


def _result_to_json(result: AttemptResult) -> dict:
    return {
        "error": result.error,
        "totalFound": result.total_found,
        "relevantFound": result.relevant_found,
    }


def _result_from_json(raw) -> AttemptResult:
    raw = raw or {}
    return AttemptResult(
        error=raw.get("error"),
        total_found=raw.get("totalFound"),
        relevant_found=raw.get("relevantFound"),
    )


class PgSourcingAttemptRepository:
    def add(self, attempt: SourcingAttempt) -> None:
        params = {
            "requested_at": attempt.requested_at,
            "occupation_code": attempt.occupation_code,
            "lat": attempt.position.lat,
            "lon": attempt.position.lon,
            "radius_km": attempt.radius_km,
            "result": extras.Json(_result_to_json(attempt.result)),
        }
        with transaction() as cur:
            cur.execute(_INSERT_ATTEMPT, params)
        logger.debug("Recorded sourcing attempt rome=%s", attempt.occupation_code)

    def list_since(self, occupation_code: str, since: datetime) -> List[SourcingAttempt]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SELECT_SINCE, {"occupation_code": occupation_code, "since": since})
                rows = cur.fetchall()
            conn.commit()
        return [
            SourcingAttempt(
                occupation_code=row[1],
                position=Position(lat=float(row[2]), lon=float(row[3])),
                radius_km=float(row[4]),
                requested_at=row[0],
                result=_result_from_json(row[5]),
            )
            for row in rows
        ]


class InMemorySourcingAttemptRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.attempts: List[SourcingAttempt] = []

    def add(self, attempt: SourcingAttempt) -> None:
        with self._lock:
            self.attempts.append(attempt)

    def list_since(self, occupation_code: str, since: datetime) -> List[SourcingAttempt]:
        with self._lock:
            return [
                attempt
                for attempt in self.attempts
                if attempt.occupation_code == occupation_code and attempt.requested_at >= since
            ]
