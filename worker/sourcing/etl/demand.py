"""Turns outstanding search demand into one representative query per spatial cluster."""

import logging
import math
from collections import defaultdict
from typing import Dict, List, Sequence

from sourcing.models import ClusteredQuery, Position, SearchDemand

logger = logging.getLogger(__name__)

# ~30 km; planar degrees are acceptable within a single country's extent.
CLUSTER_RADIUS_DEGREES = 0.27


def _degree_distance(a: Position, b: Position) -> float:
    return math.hypot(a.lat - b.lat, a.lon - b.lon)


def _single_linkage(rows: Sequence[SearchDemand]) -> List[List[SearchDemand]]:
    """Group rows transitively connected by links shorter than the cluster radius."""
    parents = list(range(len(rows)))

    def find(i: int) -> int:
        while parents[i] != i:
            parents[i] = parents[parents[i]]
            i = parents[i]
        return i

    for i in range(len(rows)):
        for j in range(i + 1, len(rows)):
            if _degree_distance(rows[i].position, rows[j].position) <= CLUSTER_RADIUS_DEGREES:
                root_i, root_j = find(i), find(j)
                if root_i != root_j:
                    parents[max(root_i, root_j)] = min(root_i, root_j)

    clusters: Dict[int, List[SearchDemand]] = {}
    for i, row in enumerate(rows):
        clusters.setdefault(find(i), []).append(row)
    return [clusters[root] for root in sorted(clusters)]


def cluster_demand(rows: Sequence[SearchDemand]) -> List[ClusteredQuery]:
    by_occupation: Dict[str, List[SearchDemand]] = defaultdict(list)
    for row in rows:
        occupation_code = (row.occupation_code or "").strip()
        if not occupation_code:
            logger.warning("Skipping search demand id=%s without occupation code", row.id)
            continue
        by_occupation[occupation_code].append(row)

    queries: List[ClusteredQuery] = []
    for occupation_code in sorted(by_occupation):
        for cluster in _single_linkage(by_occupation[occupation_code]):
            centroid = Position(
                lat=sum(row.position.lat for row in cluster) / len(cluster),
                lon=sum(row.position.lon for row in cluster) / len(cluster),
            )
            queries.append(
                ClusteredQuery(
                    occupation_code=occupation_code,
                    position=centroid,
                    radius_km=max(row.radius_km for row in cluster),
                )
            )
    return queries


class SearchDemandAggregator:
    """``demands`` is a search-demand store exposing ``claim_pending``."""

    def __init__(self, demands):
        self.demands = demands

    def drain_clustered_demand(self) -> List[ClusteredQuery]:
        rows = self.demands.claim_pending()
        queries = cluster_demand(rows)
        logger.info("Drained %d search demands into %d clusters", len(rows), len(queries))
        return queries
