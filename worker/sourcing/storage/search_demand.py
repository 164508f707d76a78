"""Storage for search demand (live searches that found no local company)."""

import logging
import threading
from dataclasses import replace
from typing import Dict, List

from sourcing.core.db import transaction
from sourcing.models import Position, SearchDemand

logger = logging.getLogger(__name__)

_INSERT_DEMAND = """
INSERT INTO search_demands (occupation_code, lat, lon, radius_km, pending_flag, updated_at)
VALUES (%(occupation_code)s, %(lat)s, %(lon)s, %(radius_km)s, TRUE, NOW())
RETURNING id;
"""

# A single statement both reads and marks the rows: a concurrent run blocks on
# the row locks, then re-checks ``pending_flag`` and sees nothing to claim.
_CLAIM_PENDING = """
UPDATE search_demands
SET pending_flag = FALSE, updated_at = NOW()
WHERE pending_flag
RETURNING id, occupation_code, lat, lon, radius_km;
"""


class PgSearchDemandRepository:
    def add(self, demand: SearchDemand) -> int:
        params = {
            "occupation_code": demand.occupation_code,
            "lat": demand.position.lat,
            "lon": demand.position.lon,
            "radius_km": demand.radius_km,
        }
        with transaction() as cur:
            cur.execute(_INSERT_DEMAND, params)
            (demand_id,) = cur.fetchone()
        return demand_id

    def claim_pending(self) -> List[SearchDemand]:
        with transaction() as cur:
            cur.execute(_CLAIM_PENDING)
            rows = cur.fetchall()
        logger.info("Claimed %d pending search demands", len(rows))
        demands = [
            SearchDemand(
                id=row[0],
                occupation_code=row[1],
                position=Position(lat=float(row[2]), lon=float(row[3])),
                radius_km=float(row[4]),
                pending=False,
            )
            for row in rows
        ]
        return sorted(demands, key=lambda demand: demand.id)


class InMemorySearchDemandRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_id = 1
        self.demands: Dict[int, SearchDemand] = {}

    def add(self, demand: SearchDemand) -> int:
        with self._lock:
            demand_id = demand.id if demand.id is not None else self._next_id
            self._next_id = max(self._next_id, demand_id) + 1
            self.demands[demand_id] = replace(demand, id=demand_id)
            return demand_id

    def claim_pending(self) -> List[SearchDemand]:
        with self._lock:
            claimed = [demand for demand in self.demands.values() if demand.pending]
            for demand in claimed:
                self.demands[demand.id] = replace(demand, pending=False)
        return sorted((replace(demand, pending=False) for demand in claimed), key=lambda demand: demand.id)
