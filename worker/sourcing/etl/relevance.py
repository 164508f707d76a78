"""Business rules discarding known false-positive matches from the company-matching API."""

import logging
from typing import Iterable, List, Optional, Tuple

from sourcing.models import CandidateEstablishment

logger = logging.getLogger(__name__)

# (industry code prefix, occupation code); ``None`` matches every occupation.
EXCLUSION_RULES: Tuple[Tuple[str, Optional[str]], ...] = (
    ("7820", None),  # temp-staffing agencies
    ("8411", "D1202"),  # public administration matched to hairdressing
)


def _matches(industry_code: str, occupation_code: str, rule: Tuple[str, Optional[str]]) -> bool:
    prefix, excluded_occupation = rule
    if not industry_code.startswith(prefix):
        return False
    return excluded_occupation is None or excluded_occupation == occupation_code


def is_relevant(candidate: CandidateEstablishment, rules=EXCLUSION_RULES) -> bool:
    industry_code = candidate.industry_code or ""
    occupation_codes = candidate.occupation_codes or ("",)
    return not any(
        _matches(industry_code, occupation_code, rule)
        for occupation_code in occupation_codes
        for rule in rules
    )


def filter_relevant(candidates: Iterable[CandidateEstablishment]) -> List[CandidateEstablishment]:
    kept: List[CandidateEstablishment] = []
    for candidate in candidates:
        if is_relevant(candidate):
            kept.append(candidate)
        else:
            logger.info("Discarding irrelevant candidate: %s", candidate)
    return kept
