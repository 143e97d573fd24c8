"""Shared test fixtures for the incidents app."""

import pytest

from apps.incidents._tests.factories import make_alert, make_site
from apps.incidents._tests.fakes import FakeClock, InMemoryIncidentRepository
from apps.incidents.metrics import InMemoryBackend


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_repository(clock):
    return InMemoryIncidentRepository(clock=clock)


@pytest.fixture
def metrics_backend():
    return InMemoryBackend()


@pytest.fixture
def site(db):
    return make_site()


@pytest.fixture
def alert(site):
    return make_alert(site)
