"""Merges freshly sourced candidates into the establishment store."""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from sourcing.core.errors import RegistryMissError
from sourcing.models import (
    CandidateEstablishment,
    Establishment,
    Offer,
    ReconcileResult,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EstablishmentReconciler:
    """Enriches, deduplicates and upserts candidates.

    ``registry`` exposes ``get_by_siret(siret) -> RegistryRecord | None`` and
    ``store`` exposes ``save_batch(establishments, offers) -> (inserted, offers_added)``.
    Precedence between form and sourced data is enforced by the store itself.
    """

    def __init__(self, registry, store, clock: Optional[Callable[[], datetime]] = None):
        self.registry = registry
        self.store = store
        self.clock = clock or _utcnow

    def _enrich(self, candidate: CandidateEstablishment) -> CandidateEstablishment:
        if candidate.industry_code and candidate.employee_range:
            return candidate
        record = self.registry.get_by_siret(candidate.siret)
        if record is None:
            raise RegistryMissError(candidate.siret)
        return replace(
            candidate,
            industry_code=record.industry_code or candidate.industry_code,
            employee_range=record.employee_range or candidate.employee_range,
        )

    def _enrich_all(self, candidates: Sequence[CandidateEstablishment]) -> List[CandidateEstablishment]:
        enriched: List[CandidateEstablishment] = []
        for candidate in candidates:
            try:
                enriched.append(self._enrich(candidate))
            except RegistryMissError as exc:
                logger.warning("Dropping candidate %s (%s): %s", candidate.siret, candidate.name, exc)
        return enriched

    @staticmethod
    def _dedupe(candidates: Sequence[CandidateEstablishment]) -> List[CandidateEstablishment]:
        first_by_siret: Dict[str, CandidateEstablishment] = {}
        for candidate in candidates:
            if candidate.siret in first_by_siret:
                logger.info("Discarding duplicate candidate in batch: %s", candidate)
                continue
            first_by_siret[candidate.siret] = candidate
        return list(first_by_siret.values())

    def reconcile(self, candidates: Sequence[CandidateEstablishment]) -> ReconcileResult:
        if not candidates:
            return ReconcileResult()

        survivors = self._dedupe(self._enrich_all(candidates))
        now = self.clock()

        establishments = [
            Establishment(
                siret=candidate.siret,
                name=candidate.name,
                address=candidate.address,
                position=candidate.position,
                industry_code=candidate.industry_code,
                employee_range=candidate.employee_range,
                is_active=True,
                data_source=candidate.data_source,
                updated_at=now,
            )
            for candidate in survivors
        ]

        offers_by_key: Dict[tuple, Offer] = {}
        for candidate in survivors:
            for occupation_code in candidate.occupation_codes:
                offers_by_key.setdefault(
                    (candidate.siret, occupation_code),
                    Offer(
                        siret=candidate.siret,
                        occupation_code=occupation_code,
                        score=candidate.relevance_score,
                        data_source=candidate.data_source,
                    ),
                )

        inserted, offers_added = self.store.save_batch(establishments, list(offers_by_key.values()))
        logger.info(
            "Reconciled %d candidates: %d establishments inserted, %d offers added",
            len(survivors),
            inserted,
            offers_added,
        )
        return ReconcileResult(inserted=inserted, offers_added=offers_added)
