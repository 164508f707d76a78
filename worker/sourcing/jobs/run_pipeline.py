"""Scheduled job: drain search demand, source companies and reconcile them."""

import argparse
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sourcing.core.config import ConfigError, Settings, get_settings
from sourcing.core.db import init_pool
from sourcing.core.errors import FatalSourcingError, PipelineAbort
from sourcing.core.rate_limit import RateLimiter
from sourcing.core.stats import RunStats
from sourcing.etl.demand import SearchDemandAggregator
from sourcing.etl.reconcile import EstablishmentReconciler
from sourcing.etl.relevance import filter_relevant
from sourcing.etl.throttle import SourcingThrottle
from sourcing.models import AttemptResult, ClusteredQuery, ReconcileResult, SourcingAttempt
from sourcing.storage.establishments import PgEstablishmentRepository
from sourcing.storage.search_demand import PgSearchDemandRepository
from sourcing.storage.sourcing_attempts import PgSourcingAttemptRepository
from sourcing.vendors.company_client import RateLimitedRetryingClient
from sourcing.vendors.sirene import SireneGateway

logger = logging.getLogger(__name__)

DEFAULT_SOURCING_RADIUS_KM = 50.0
DEFAULT_LOOKBACK = timedelta(days=30)
DEFAULT_MAX_FAILURES = 10
DEFAULT_RECONCILE_ATTEMPTS = 3
DEFAULT_RECONCILE_RETRY_DELAY_SECONDS = 2.0


class PipelineOrchestrator:
    def __init__(
        self,
        aggregator: SearchDemandAggregator,
        throttle: SourcingThrottle,
        client: RateLimitedRetryingClient,
        reconciler: EstablishmentReconciler,
        stats: RunStats,
        *,
        sourcing_radius_km: float = DEFAULT_SOURCING_RADIUS_KM,
        lookback: timedelta = DEFAULT_LOOKBACK,
        max_failures: int = DEFAULT_MAX_FAILURES,
        reconcile_attempts: int = DEFAULT_RECONCILE_ATTEMPTS,
        reconcile_retry_delay: float = DEFAULT_RECONCILE_RETRY_DELAY_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.aggregator = aggregator
        self.throttle = throttle
        self.client = client
        self.reconciler = reconciler
        self.stats = stats
        self.sourcing_radius_km = sourcing_radius_km
        self.lookback = lookback
        self.max_failures = max_failures
        self.reconcile_attempts = max(1, reconcile_attempts)
        self.reconcile_retry_delay = reconcile_retry_delay
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self) -> None:
        self.stats.start_run()
        failures = 0
        try:
            queries = self.aggregator.drain_clustered_demand()
            self.stats.incr("clusters_drained", len(queries))
            for query in queries:
                try:
                    with self.stats.timer("cluster_seconds"):
                        self._process(query)
                    self.stats.incr("clusters_processed")
                except Exception as exc:
                    failures += 1
                    self.stats.incr("clusters_failed")
                    logger.exception(
                        "Cluster rome=%s at (%.4f, %.4f) failed (%d/%d)",
                        query.occupation_code,
                        query.position.lat,
                        query.position.lon,
                        failures,
                        self.max_failures,
                    )
                    if failures > self.max_failures:
                        raise PipelineAbort(
                            f"{failures} clusters failed in this run, aborting: {exc}"
                        ) from exc
        finally:
            self.stats.flush()

    def _process(self, query: ClusteredQuery) -> None:
        now = self.clock()
        if not self.throttle.should_source(
            query.occupation_code, query.position, query.radius_km, now - self.lookback
        ):
            self.stats.incr("clusters_throttled")
            return

        try:
            candidates = self.client.fetch_candidates(query.occupation_code, query.position, self.sourcing_radius_km)
        except FatalSourcingError as exc:
            self.throttle.record_attempt(self._attempt(query, now, AttemptResult(error=str(exc))))
            raise

        relevant = filter_relevant(candidates)
        self.stats.incr("candidates_fetched", len(candidates))
        self.stats.incr("candidates_relevant", len(relevant))

        # Recorded only once the batch is stored.
        result = self._reconcile(query, relevant)
        self.throttle.record_attempt(
            self._attempt(query, now, AttemptResult(total_found=len(candidates), relevant_found=len(relevant)))
        )
        self.stats.incr("establishments_inserted", result.inserted)
        self.stats.incr("offers_added", result.offers_added)

    def _reconcile(self, query: ClusteredQuery, candidates) -> ReconcileResult:
        """Retry the same candidate batch; the store upserts are idempotent."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.reconciler.reconcile(candidates)
            except Exception as exc:
                if attempt >= self.reconcile_attempts:
                    raise
                self.stats.incr("reconcile_retries")
                logger.warning(
                    "Reconcile rome=%s failed (attempt %d/%d): %s",
                    query.occupation_code,
                    attempt,
                    self.reconcile_attempts,
                    exc,
                )
                time.sleep(self.reconcile_retry_delay)

    def _attempt(self, query: ClusteredQuery, requested_at: datetime, result: AttemptResult) -> SourcingAttempt:
        return SourcingAttempt(
            occupation_code=query.occupation_code,
            position=query.position,
            radius_km=self.sourcing_radius_km,
            requested_at=requested_at,
            result=result,
        )


def build_pipeline(settings: Settings, *, max_failures: Optional[int] = None) -> PipelineOrchestrator:
    init_pool()
    registry = SireneGateway(
        settings.sirene_api_url,
        settings.sirene_access_token,
        RateLimiter(settings.sirene_calls_per_second),
        timeout=settings.http_timeout_seconds,
        max_retries=settings.http_max_retries,
    )
    return PipelineOrchestrator(
        SearchDemandAggregator(PgSearchDemandRepository()),
        SourcingThrottle(PgSourcingAttemptRepository()),
        RateLimitedRetryingClient.from_settings(settings),
        EstablishmentReconciler(registry, PgEstablishmentRepository()),
        RunStats(),
        sourcing_radius_km=settings.sourcing_radius_km,
        lookback=timedelta(days=settings.sourcing_lookback_days),
        max_failures=settings.pipeline_max_failures if max_failures is None else max_failures,
    )


def run_pipeline_job(max_failures: Optional[int] = None) -> None:
    settings = get_settings()
    if not settings.database_url:
        raise ConfigError("DATABASE_URL is required")
    if not settings.lbb_access_token:
        raise ConfigError("LBB_ACCESS_TOKEN is required")
    build_pipeline(settings, max_failures=max_failures).run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Source establishments for unmatched searches")
    parser.add_argument(
        "--max-failures",
        dest="max_failures",
        type=int,
        default=None,
        help="Abort the run once more clusters than this have failed",
    )
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args()
    try:
        run_pipeline_job(max_failures=args.max_failures)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except PipelineAbort as exc:
        logger.error("Sourcing pipeline aborted: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
