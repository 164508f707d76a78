import sys
from pathlib import Path

import pytest

# Ensure the `sourcing` package is importable when running pytest from the repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sourcing.core import config, db  # noqa: E402
from sourcing.models import CandidateEstablishment, Position  # noqa: E402

PARIS_10 = Position(lat=48.8841446, lon=2.3651789)
PARIS_17 = Position(lat=48.862725, lon=2.287592)
EVRY = Position(lat=48.5961, lon=2.4406)


class DummyCursor:
    def __init__(self, connection):
        self.connection = connection

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.connection.executed.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self.connection.fetchone_results.pop(0) if self.connection.fetchone_results else None

    def fetchall(self):
        return self.connection.fetchall_results.pop(0) if self.connection.fetchall_results else []


class DummyConnection:
    def __init__(self):
        self.executed = []
        self.fetchone_results = []
        self.fetchall_results = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return DummyCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class DummyPool:
    def __init__(self, connection):
        self.connection = connection
        self.get_called = False
        self.put_called = False

    def getconn(self):
        self.get_called = True
        return self.connection

    def putconn(self, conn):
        assert conn is self.connection
        self.put_called = True


@pytest.fixture(autouse=True)
def reset_state():
    config.get_settings.cache_clear()
    db._connection_pool = None
    yield
    config.get_settings.cache_clear()
    db._connection_pool = None


@pytest.fixture
def fake_connection():
    connection = DummyConnection()
    db._connection_pool = DummyPool(connection)
    return connection


def make_candidate(siret="11112222333344", *, occupation_code="M1607", industry_code="8500A", **overrides):
    values = dict(
        siret=siret,
        name=f"Company {siret}",
        address="1 rue de la Paix, 75002 Paris",
        position=PARIS_10,
        industry_code=industry_code,
        relevance_score=3.0,
        occupation_codes=(occupation_code,),
        data_source="api_labonneboite",
        employee_range=None,
    )
    values.update(overrides)
    return CandidateEstablishment(**values)
