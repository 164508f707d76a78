from datetime import datetime, timezone

import pytest

from conftest import PARIS_17, make_candidate
from sourcing.core.errors import FatalSourcingError
from sourcing.etl.reconcile import EstablishmentReconciler
from sourcing.etl.relevance import filter_relevant
from sourcing.models import (
    Contact,
    Establishment,
    EstablishmentAggregate,
    Offer,
    RegistryRecord,
)
from sourcing.storage.establishments import InMemoryEstablishmentRepository

NOW = datetime(2022, 5, 18, tzinfo=timezone.utc)


class FakeRegistry:
    def __init__(self, records=None, error=None):
        self.records = {record.siret: record for record in records or []}
        self.error = error
        self.calls = []

    def get_by_siret(self, siret):
        self.calls.append(siret)
        if self.error:
            raise self.error
        return self.records.get(siret)


def registry_with(*sirets):
    return FakeRegistry([RegistryRecord(siret=s, industry_code="8559A", employee_range="20-49") for s in sirets])


@pytest.fixture
def store():
    return InMemoryEstablishmentRepository()


def form_aggregate(siret, occupation_code="A1101"):
    return EstablishmentAggregate(
        establishment=Establishment(
            siret=siret,
            name="Nom saisi dans le formulaire",
            address="10 avenue du Formulaire, Lyon",
            position=PARIS_17,
            industry_code="4711D",
            employee_range="6-9",
            is_active=True,
            data_source="form",
            contact_mode="EMAIL",
        ),
        offers=(Offer(siret=siret, occupation_code=occupation_code, score=10, data_source="form"),),
        contacts=(Contact(siret=siret, first_name="Ana", last_name="Lopez", email="ana@example.com", contact_mode="EMAIL"),),
    )


def test_inserts_new_establishments_with_offers(store):
    reconciler = EstablishmentReconciler(registry_with("1", "2"), store, clock=lambda: NOW)

    result = reconciler.reconcile(
        [make_candidate("1", relevance_score=1.0), make_candidate("2", relevance_score=2.0)]
    )

    assert (result.inserted, result.offers_added) == (2, 2)
    aggregate = store.get("1")
    assert aggregate.establishment.data_source == "api_labonneboite"
    assert aggregate.establishment.industry_code == "8559A"
    assert aggregate.establishment.employee_range == "20-49"
    assert aggregate.establishment.updated_at == NOW
    assert aggregate.offers == (Offer(siret="1", occupation_code="M1607", score=1.0, data_source="api_labonneboite"),)
    assert aggregate.contacts == ()


def test_drops_candidates_unknown_to_registry(store, caplog):
    reconciler = EstablishmentReconciler(registry_with("1"), store)

    with caplog.at_level("WARNING"):
        result = reconciler.reconcile([make_candidate("1"), make_candidate("unknown")])

    assert result.inserted == 1
    assert store.get("unknown") is None
    assert any("Dropping candidate unknown" in message for message in caplog.messages)


def test_skips_registry_when_attributes_are_present(store):
    registry = registry_with()
    reconciler = EstablishmentReconciler(registry, store)

    result = reconciler.reconcile([make_candidate("1", employee_range="50-99")])

    assert result.inserted == 1
    assert registry.calls == []


def test_registry_failures_propagate(store):
    reconciler = EstablishmentReconciler(FakeRegistry(error=FatalSourcingError("Sirene down")), store)

    with pytest.raises(FatalSourcingError):
        reconciler.reconcile([make_candidate("1")])

    assert store.establishments == {}


def test_keeps_first_candidate_per_siret(store):
    reconciler = EstablishmentReconciler(registry_with("1"), store)

    result = reconciler.reconcile(
        [make_candidate("1", name="First"), make_candidate("1", name="Second", occupation_code="A1101")]
    )

    assert result.inserted == 1
    aggregate = store.get("1")
    assert aggregate.establishment.name == "First"
    assert [offer.occupation_code for offer in aggregate.offers] == ["M1607"]


def test_form_establishment_keeps_its_fields_but_gains_new_offer(store):
    store.upsert_form_aggregate(form_aggregate("12345678901234"))
    reconciler = EstablishmentReconciler(registry_with("12345678901234"), store)

    result = reconciler.reconcile(
        [make_candidate("12345678901234", name="Nom LBB", address="Ailleurs", occupation_code="M1607")]
    )

    assert (result.inserted, result.offers_added) == (0, 1)
    aggregate = store.get("12345678901234")
    assert aggregate.establishment.name == "Nom saisi dans le formulaire"
    assert aggregate.establishment.address == "10 avenue du Formulaire, Lyon"
    assert aggregate.establishment.industry_code == "4711D"
    assert aggregate.establishment.data_source == "form"
    assert aggregate.establishment.contact_mode == "EMAIL"
    assert {offer.occupation_code for offer in aggregate.offers} == {"A1101", "M1607"}
    assert len(aggregate.contacts) == 1


def test_form_offer_is_never_rescored(store):
    store.upsert_form_aggregate(form_aggregate("12345678901234", occupation_code="M1607"))
    reconciler = EstablishmentReconciler(registry_with("12345678901234"), store)

    result = reconciler.reconcile([make_candidate("12345678901234", relevance_score=1.0)])

    assert result.offers_added == 0
    (offer,) = store.get("12345678901234").offers
    assert offer.score == 10
    assert offer.data_source == "form"


def test_sourced_establishment_is_updated_and_offer_rescored(store):
    reconciler = EstablishmentReconciler(registry_with("1"), store)
    reconciler.reconcile([make_candidate("1", name="Old name", relevance_score=1.0)])

    result = reconciler.reconcile([make_candidate("1", name="New name", relevance_score=4.0)])

    assert (result.inserted, result.offers_added) == (0, 0)
    aggregate = store.get("1")
    assert aggregate.establishment.name == "New name"
    assert [offer.score for offer in aggregate.offers] == [4.0]


def test_form_submission_overrides_sourced_data(store):
    reconciler = EstablishmentReconciler(registry_with("12345678901234"), store)
    reconciler.reconcile([make_candidate("12345678901234", occupation_code="A1101", relevance_score=1.0)])

    store.upsert_form_aggregate(form_aggregate("12345678901234", occupation_code="A1101"))

    aggregate = store.get("12345678901234")
    assert aggregate.establishment.data_source == "form"
    assert aggregate.establishment.name == "Nom saisi dans le formulaire"
    assert aggregate.offers == (Offer(siret="12345678901234", occupation_code="A1101", score=10, data_source="form"),)


def test_fresh_fetch_with_one_irrelevant_candidate_creates_one_aggregate(store):
    reconciler = EstablishmentReconciler(registry_with("1", "2"), store)
    candidates = [
        make_candidate("1", industry_code="8500A", occupation_code="A1101"),
        make_candidate("2", industry_code="8411", occupation_code="D1202"),
    ]

    result = reconciler.reconcile(filter_relevant(candidates))

    assert result.inserted == 1
    assert list(store.establishments) == ["1"]


def test_empty_batch_is_a_no_op(store):
    reconciler = EstablishmentReconciler(registry_with(), store)

    assert reconciler.reconcile([]).inserted == 0
