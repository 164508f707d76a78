"""Utilities for transforming La Bonne Boite companies into pipeline candidates."""

import logging
from typing import Any, Dict, Optional

from sourcing.models import LBB_DATA_SOURCE, CandidateEstablishment, Position

logger = logging.getLogger(__name__)


def normalize_naf(value: Any) -> Optional[str]:
    """``"85.59A"`` and ``"8559a"`` both become ``"8559A"``."""
    if value is None:
        return None
    naf = str(value).replace(".", "").strip().upper()
    return naf or None


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def to_candidate(
    record: Dict[str, Any], fallback_occupation_code: Optional[str] = None
) -> Optional[CandidateEstablishment]:
    """Map a raw company record to a candidate, or ``None`` when it cannot be used."""
    siret = _strip_or_none(record.get("siret"))
    if not siret:
        logger.debug("Skipping company without siret: %s", record)
        return None

    lat = _safe_float(record.get("lat"))
    lon = _safe_float(record.get("lon"))
    if lat is None or lon is None:
        logger.debug("Skipping company %s without coordinates", siret)
        return None

    occupation_code = _strip_or_none(record.get("matched_rome_code")) or fallback_occupation_code
    return CandidateEstablishment(
        siret=siret,
        name=_strip_or_none(record.get("name")) or siret,
        address=_strip_or_none(record.get("address")),
        position=Position(lat=lat, lon=lon),
        industry_code=normalize_naf(record.get("naf")),
        relevance_score=_safe_float(record.get("stars")) or 0.0,
        occupation_codes=(occupation_code,) if occupation_code else (),
        data_source=LBB_DATA_SOURCE,
    )
