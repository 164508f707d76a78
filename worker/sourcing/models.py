"""Core data models shared by the sourcing and reconciliation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

FORM_DATA_SOURCE = "form"
LBB_DATA_SOURCE = "api_labonneboite"


@dataclass(frozen=True, slots=True)
class Position:
    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
class SearchDemand:
    """A live search that found no local company for an occupation code."""

    id: Optional[int]
    occupation_code: str
    position: Position
    radius_km: float
    pending: bool = True


@dataclass(frozen=True, slots=True)
class AttemptResult:
    error: Optional[str] = None
    total_found: Optional[int] = None
    relevant_found: Optional[int] = None


@dataclass(frozen=True, slots=True)
class SourcingAttempt:
    """One call (or failed call) to the company-matching API."""

    occupation_code: str
    position: Position
    radius_km: float
    requested_at: datetime
    result: AttemptResult = field(default_factory=AttemptResult)


@dataclass(frozen=True, slots=True)
class CandidateEstablishment:
    """Normalized company returned by the company-matching API, before reconciliation."""

    siret: str
    name: str
    address: Optional[str]
    position: Position
    industry_code: Optional[str]
    relevance_score: float
    occupation_codes: Tuple[str, ...]
    data_source: str = LBB_DATA_SOURCE
    employee_range: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RegistryRecord:
    siret: str
    industry_code: Optional[str]
    employee_range: Optional[str]


@dataclass(frozen=True, slots=True)
class Establishment:
    siret: str
    name: str
    address: Optional[str]
    position: Position
    industry_code: Optional[str]
    employee_range: Optional[str]
    is_active: bool
    data_source: str
    updated_at: Optional[datetime] = None
    contact_mode: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Offer:
    siret: str
    occupation_code: str
    score: float
    data_source: str


@dataclass(frozen=True, slots=True)
class Contact:
    siret: str
    first_name: str
    last_name: str
    email: str
    contact_mode: str


@dataclass(frozen=True, slots=True)
class EstablishmentAggregate:
    establishment: Establishment
    offers: Tuple[Offer, ...] = ()
    contacts: Tuple[Contact, ...] = ()


@dataclass(frozen=True, slots=True)
class ClusteredQuery:
    """Representative query for a spatial cluster of search demand."""

    occupation_code: str
    position: Position
    radius_km: float


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    inserted: int = 0
    offers_added: int = 0
