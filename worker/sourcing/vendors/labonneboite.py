"""Client utilities for the La Bonne Boite company-matching API."""

import logging
from typing import Any, Dict

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()


class LaBonneBoiteError(RuntimeError):
    """Raised when La Bonne Boite answers with a payload we cannot use."""


def search_companies(
    occupation_code: str,
    lat: float,
    lon: float,
    radius_km: float,
    page: int,
    page_size: int,
    *,
    base_url: str,
    access_token: str,
    timeout: float = 10,
) -> Dict[str, Any]:
    """Fetch one page of companies matching an occupation code around a point.

    Returns ``{"items": [...], "total_count": int}``.
    """
    params = {
        "rome_codes": occupation_code,
        "latitude": lat,
        "longitude": lon,
        "distance": int(round(radius_km)),
        "page": page,
        "page_size": page_size,
        "sort": "distance",
    }
    headers = {"Authorization": f"Bearer {access_token}"}
    response = _SESSION.get(f"{base_url.rstrip('/')}/company/", params=params, headers=headers, timeout=timeout)
    response.raise_for_status()
    payload = response.json()

    if not isinstance(payload, dict):
        raise LaBonneBoiteError(f"unexpected payload type {type(payload).__name__}")
    companies = payload.get("companies")
    if companies is None and payload.get("companies_count") == 0:
        companies = []
    if not isinstance(companies, list):
        logger.error("search_companies got malformed payload keys=%s", list(payload.keys())[:10])
        raise LaBonneBoiteError("companies list missing from response")

    try:
        total_count = int(payload.get("companies_count", len(companies)))
    except (TypeError, ValueError) as exc:
        raise LaBonneBoiteError(f"invalid companies_count {payload.get('companies_count')!r}") from exc

    return {"items": companies, "total_count": total_count}
