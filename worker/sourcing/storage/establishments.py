"""Authoritative store for establishments, their offers and contacts.

Writers (this pipeline, manual form submissions) never lock each other out;
every write is an upsert whose outcome only depends on source precedence:
``form`` data outranks anything sourced from an API.
"""

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from sourcing.core.db import get_connection, transaction
from sourcing.models import (
    FORM_DATA_SOURCE,
    Contact,
    Establishment,
    EstablishmentAggregate,
    Offer,
    Position,
)

logger = logging.getLogger(__name__)


def incoming_wins(existing_source: str, incoming_source: str) -> bool:
    """Whether an incoming record may overwrite the mutable fields of an existing one."""
    return incoming_source == FORM_DATA_SOURCE or existing_source != FORM_DATA_SOURCE


_UPSERT_ESTABLISHMENT = """
INSERT INTO establishments (
    siret,
    name,
    address,
    lat,
    lon,
    naf_code,
    number_employees,
    is_active,
    data_source,
    contact_mode,
    update_date
) VALUES (
    %(siret)s,
    %(name)s,
    %(address)s,
    %(lat)s,
    %(lon)s,
    %(naf_code)s,
    %(number_employees)s,
    %(is_active)s,
    %(data_source)s,
    %(contact_mode)s,
    COALESCE(%(update_date)s, NOW())
)
ON CONFLICT (siret) DO UPDATE SET
    name = EXCLUDED.name,
    address = EXCLUDED.address,
    lat = EXCLUDED.lat,
    lon = EXCLUDED.lon,
    naf_code = EXCLUDED.naf_code,
    number_employees = EXCLUDED.number_employees,
    is_active = EXCLUDED.is_active,
    data_source = EXCLUDED.data_source,
    contact_mode = EXCLUDED.contact_mode,
    update_date = EXCLUDED.update_date
WHERE EXCLUDED.data_source = 'form' OR establishments.data_source <> 'form'
RETURNING (xmax = 0) AS inserted;
"""

_UPSERT_SOURCED_OFFER = """
INSERT INTO immersion_offers (siret, rome_code, score, data_source, created_at, updated_at)
VALUES (%(siret)s, %(rome_code)s, %(score)s, %(data_source)s, NOW(), NOW())
ON CONFLICT (siret, rome_code) DO UPDATE SET
    score = EXCLUDED.score,
    updated_at = NOW()
WHERE immersion_offers.data_source <> 'form'
RETURNING (xmax = 0) AS inserted;
"""

_UPSERT_FORM_OFFER = """
INSERT INTO immersion_offers (siret, rome_code, score, data_source, created_at, updated_at)
VALUES (%(siret)s, %(rome_code)s, %(score)s, 'form', NOW(), NOW())
ON CONFLICT (siret, rome_code) DO UPDATE SET
    score = EXCLUDED.score,
    data_source = 'form',
    updated_at = NOW();
"""

_DELETE_STALE_FORM_OFFERS = """
DELETE FROM immersion_offers
WHERE siret = %(siret)s AND data_source = 'form' AND NOT (rome_code = ANY(%(rome_codes)s));
"""

_DELETE_CONTACTS = "DELETE FROM establishment_contacts WHERE siret = %(siret)s;"

_INSERT_CONTACT = """
INSERT INTO establishment_contacts (siret, first_name, last_name, email, contact_mode)
VALUES (%(siret)s, %(first_name)s, %(last_name)s, %(email)s, %(contact_mode)s);
"""

_SELECT_ESTABLISHMENT = """
SELECT siret, name, address, lat, lon, naf_code, number_employees, is_active, data_source, update_date, contact_mode
FROM establishments WHERE siret = %(siret)s;
"""

_SELECT_OFFERS = """
SELECT siret, rome_code, score, data_source FROM immersion_offers WHERE siret = %(siret)s ORDER BY created_at, rome_code;
"""

_SELECT_CONTACTS = """
SELECT siret, first_name, last_name, email, contact_mode FROM establishment_contacts WHERE siret = %(siret)s;
"""


def _establishment_params(establishment: Establishment) -> Dict[str, object]:
    return {
        "siret": establishment.siret,
        "name": establishment.name,
        "address": establishment.address,
        "lat": establishment.position.lat,
        "lon": establishment.position.lon,
        "naf_code": establishment.industry_code,
        "number_employees": establishment.employee_range,
        "is_active": establishment.is_active,
        "data_source": establishment.data_source,
        "contact_mode": establishment.contact_mode,
        "update_date": establishment.updated_at,
    }


def _offer_params(offer: Offer) -> Dict[str, object]:
    return {
        "siret": offer.siret,
        "rome_code": offer.occupation_code,
        "score": offer.score,
        "data_source": offer.data_source,
    }


class PgEstablishmentRepository:
    def save_batch(self, establishments: Sequence[Establishment], offers: Sequence[Offer]) -> Tuple[int, int]:
        """Upsert establishments then offers in one transaction.

        Returns ``(inserted establishments, inserted offers)``.
        """
        inserted = 0
        offers_added = 0
        with transaction() as cur:
            for establishment in establishments:
                cur.execute(_UPSERT_ESTABLISHMENT, _establishment_params(establishment))
                row = cur.fetchone()
                if row is None:
                    logger.info("Kept form data for siret=%s", establishment.siret)
                elif row[0]:
                    inserted += 1
            for offer in offers:
                cur.execute(_UPSERT_SOURCED_OFFER, _offer_params(offer))
                row = cur.fetchone()
                if row is not None and row[0]:
                    offers_added += 1
        logger.debug("Saved batch: %d establishments inserted, %d offers added", inserted, offers_added)
        return inserted, offers_added

    def upsert_form_aggregate(self, aggregate: EstablishmentAggregate) -> None:
        establishment = aggregate.establishment
        siret = establishment.siret
        with transaction() as cur:
            cur.execute(_UPSERT_ESTABLISHMENT, _establishment_params(establishment))
            cur.fetchone()
            for offer in aggregate.offers:
                cur.execute(_UPSERT_FORM_OFFER, _offer_params(offer))
            cur.execute(
                _DELETE_STALE_FORM_OFFERS,
                {"siret": siret, "rome_codes": [offer.occupation_code for offer in aggregate.offers]},
            )
            cur.execute(_DELETE_CONTACTS, {"siret": siret})
            for contact in aggregate.contacts:
                cur.execute(
                    _INSERT_CONTACT,
                    {
                        "siret": siret,
                        "first_name": contact.first_name,
                        "last_name": contact.last_name,
                        "email": contact.email,
                        "contact_mode": contact.contact_mode,
                    },
                )
        logger.info("Upserted form establishment siret=%s", siret)

    def get(self, siret: str) -> Optional[EstablishmentAggregate]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SELECT_ESTABLISHMENT, {"siret": siret})
                row = cur.fetchone()
                if row is None:
                    conn.commit()
                    return None
                cur.execute(_SELECT_OFFERS, {"siret": siret})
                offer_rows = cur.fetchall()
                cur.execute(_SELECT_CONTACTS, {"siret": siret})
                contact_rows = cur.fetchall()
            conn.commit()

        establishment = Establishment(
            siret=row[0],
            name=row[1],
            address=row[2],
            position=Position(lat=float(row[3]), lon=float(row[4])),
            industry_code=row[5],
            employee_range=row[6],
            is_active=bool(row[7]),
            data_source=row[8],
            updated_at=row[9],
            contact_mode=row[10],
        )
        return EstablishmentAggregate(
            establishment=establishment,
            offers=tuple(Offer(siret=r[0], occupation_code=r[1], score=float(r[2]), data_source=r[3]) for r in offer_rows),
            contacts=tuple(Contact(*r) for r in contact_rows),
        )


class InMemoryEstablishmentRepository:
    """Same contract as the PostgreSQL store, keyed by siret and (siret, occupation code)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.establishments: Dict[str, Establishment] = {}
        self.offers: Dict[Tuple[str, str], Offer] = {}
        self.contacts: Dict[str, Tuple[Contact, ...]] = {}

    def save_batch(self, establishments: Sequence[Establishment], offers: Sequence[Offer]) -> Tuple[int, int]:
        inserted = 0
        offers_added = 0
        with self._lock:
            for establishment in establishments:
                existing = self.establishments.get(establishment.siret)
                if existing is None:
                    inserted += 1
                elif not incoming_wins(existing.data_source, establishment.data_source):
                    logger.info("Kept form data for siret=%s", establishment.siret)
                    continue
                self.establishments[establishment.siret] = establishment
            for offer in offers:
                key = (offer.siret, offer.occupation_code)
                existing_offer = self.offers.get(key)
                if existing_offer is None:
                    offers_added += 1
                    self.offers[key] = offer
                elif existing_offer.data_source != FORM_DATA_SOURCE:
                    self.offers[key] = Offer(
                        siret=offer.siret,
                        occupation_code=offer.occupation_code,
                        score=offer.score,
                        data_source=existing_offer.data_source,
                    )
        return inserted, offers_added

    def upsert_form_aggregate(self, aggregate: EstablishmentAggregate) -> None:
        siret = aggregate.establishment.siret
        with self._lock:
            self.establishments[siret] = aggregate.establishment
            submitted = {offer.occupation_code for offer in aggregate.offers}
            for key, offer in list(self.offers.items()):
                if key[0] == siret and offer.data_source == FORM_DATA_SOURCE and key[1] not in submitted:
                    del self.offers[key]
            for offer in aggregate.offers:
                self.offers[(siret, offer.occupation_code)] = Offer(
                    siret=siret,
                    occupation_code=offer.occupation_code,
                    score=offer.score,
                    data_source=FORM_DATA_SOURCE,
                )
            self.contacts[siret] = tuple(aggregate.contacts)

    def get(self, siret: str) -> Optional[EstablishmentAggregate]:
        with self._lock:
            establishment = self.establishments.get(siret)
            if establishment is None:
                return None
            offers: List[Offer] = [offer for key, offer in self.offers.items() if key[0] == siret]
            return EstablishmentAggregate(
                establishment=establishment,
                offers=tuple(offers),
                contacts=self.contacts.get(siret, ()),
            )
