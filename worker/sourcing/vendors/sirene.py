"""Client utilities for the INSEE Sirene registry (company legal attributes)."""

import logging
from datetime import date
from typing import Optional

import requests

from sourcing.core.rate_limit import RateLimiter
from sourcing.core.retry import call_with_retries
from sourcing.etl.transform import normalize_naf
from sourcing.models import RegistryRecord

logger = logging.getLogger(__name__)
_SESSION = requests.Session()

# INSEE "tranche d'effectif" codes.
EMPLOYEE_RANGE_BY_TRANCHE = {
    "NN": None,
    "00": "0",
    "01": "1-2",
    "02": "3-5",
    "03": "6-9",
    "11": "10-19",
    "12": "20-49",
    "21": "50-99",
    "22": "100-199",
    "31": "200-249",
    "32": "250-499",
    "41": "500-999",
    "42": "1000-1999",
    "51": "2000-4999",
    "52": "5000-9999",
    "53": "+10000",
}


class SireneGateway:
    """Looks up active establishments by siret, rate limited and retried."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        limiter: RateLimiter,
        *,
        timeout: float = 10,
        max_retries: int = 2,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.limiter = limiter
        self.timeout = timeout
        self.max_retries = max_retries

    def get_by_siret(self, siret: str) -> Optional[RegistryRecord]:
        return call_with_retries(
            lambda: self._get_once(siret),
            max_retries=self.max_retries,
            description=f"Sirene lookup siret={siret}",
        )

    def _get_once(self, siret: str) -> Optional[RegistryRecord]:
        params = {
            "q": f"siret:{siret} AND periode(etatAdministratifEtablissement:A)",
            "date": date.today().isoformat(),
        }
        headers = {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}
        with self.limiter.permit():
            response = _SESSION.get(f"{self.base_url}/siret", params=params, headers=headers, timeout=self.timeout)
        if response.status_code == 404:
            logger.debug("Sirene has no active establishment for siret=%s", siret)
            return None
        response.raise_for_status()
        establishments = (response.json() or {}).get("etablissements") or []
        if not establishments:
            return None
        return to_registry_record(establishments[0])


def to_registry_record(raw: dict) -> RegistryRecord:
    legal_unit = raw.get("uniteLegale") or {}
    tranche = legal_unit.get("trancheEffectifsUniteLegale")
    return RegistryRecord(
        siret=str(raw.get("siret")),
        industry_code=normalize_naf(legal_unit.get("activitePrincipaleUniteLegale")),
        employee_range=EMPLOYEE_RANGE_BY_TRANCHE.get(tranche) if tranche else None,
    )
