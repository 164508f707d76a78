"""Throttled, retrying and paginating access to the company-matching API."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List

from sourcing.core.config import Settings
from sourcing.core.errors import FatalSourcingError
from sourcing.core.rate_limit import RateLimiter
from sourcing.core.retry import call_with_retries
from sourcing.etl.transform import to_candidate
from sourcing.models import CandidateEstablishment, Position
from sourcing.vendors import labonneboite

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 20

SearchFn = Callable[..., Dict[str, Any]]


class RateLimitedRetryingClient:
    """Drains every page of a company search into deduplicated candidates.

    ``search`` has the signature of :func:`sourcing.vendors.labonneboite.search_companies`
    minus its keyword-only connection arguments.
    """

    def __init__(
        self,
        search: SearchFn,
        limiter: RateLimiter,
        *,
        max_retries: int = 2,
        page_size: int = PAGE_SIZE,
        max_pages: int = MAX_PAGES,
    ):
        self.search = search
        self.limiter = limiter
        self.max_retries = max_retries
        self.page_size = page_size
        self.max_pages = max_pages

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitedRetryingClient":
        search = functools.partial(
            labonneboite.search_companies,
            base_url=settings.lbb_api_url,
            access_token=settings.lbb_access_token,
            timeout=settings.http_timeout_seconds,
        )
        limiter = RateLimiter(settings.lbb_calls_per_second, settings.lbb_max_concurrent_calls)
        return cls(search, limiter, max_retries=settings.http_max_retries)

    def _fetch_page(self, occupation_code: str, position: Position, radius_km: float, page: int) -> Dict[str, Any]:
        def call() -> Dict[str, Any]:
            with self.limiter.permit():
                return self.search(occupation_code, position.lat, position.lon, radius_km, page, self.page_size)

        return call_with_retries(
            call,
            max_retries=self.max_retries,
            description=f"Company search rome={occupation_code} page={page}",
        )

    def fetch_candidates(
        self, occupation_code: str, position: Position, radius_km: float
    ) -> List[CandidateEstablishment]:
        items: List[Dict[str, Any]] = []
        total_count = 0
        page = 1
        while page <= self.max_pages:
            response = self._fetch_page(occupation_code, position, radius_km, page)
            page_items = response.get("items")
            if not isinstance(page_items, list):
                raise FatalSourcingError(f"Company search page {page} returned no item list")
            items.extend(page_items)
            total_count = response.get("total_count") or 0
            logger.debug("Fetched %d items on page %d (total_count=%s)", len(page_items), page, total_count)
            if len(items) >= total_count or not page_items:
                break
            page += 1
        else:
            logger.warning(
                "Stopped paginating rome=%s after %d pages (%d/%d items)",
                occupation_code,
                self.max_pages,
                len(items),
                total_count,
            )

        return self._dedupe(items, occupation_code)

    @staticmethod
    def _dedupe(items: List[Dict[str, Any]], occupation_code: str) -> List[CandidateEstablishment]:
        candidates: List[CandidateEstablishment] = []
        seen = set()
        for item in items:
            if not isinstance(item, dict):
                continue
            candidate = to_candidate(item, fallback_occupation_code=occupation_code)
            if candidate is None or candidate.siret in seen:
                continue
            seen.add(candidate.siret)
            candidates.append(candidate)
        return candidates
