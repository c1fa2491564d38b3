"""
Shared pytest fixtures for discharge monitoring tests.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient

from main import app
from live import feed
from logic import PatientMetrics
from models import Medication, Pet, TreatmentEpisode
from seed import DEMO_CLINIC_ID, seed_data

# Fixed clock for tests that build their own records
T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    """FastAPI TestClient."""
    return TestClient(app)


@pytest.fixture
def seeded_data():
    """
    Reset to seed data. Demo clinic patients:
    Bella (pet id, 2 visits, adherent), Max (50% adherence),
    Luna (3 symptom flags), Charlie (no adherence records).
    """
    seed_data()
    yield DEMO_CLINIC_ID
    feed.clear()
    seed_data()


def make_episode(
    episode_id: str,
    name: str = "Bella",
    species: str = "Dog",
    created_at: Optional[datetime] = None,
    medication_count: int = 1,
    clinic_id: str = "clinic_test",
    pet_id: Optional[str] = None,
    weight: Optional[str] = None,
) -> TreatmentEpisode:
    """Build a discharge without touching the in-memory store."""
    return TreatmentEpisode(
        episodeId=episode_id,
        clinicId=clinic_id,
        patient=Pet(name=name, species=species, weight=weight, petId=pet_id),
        medications=[Medication(name=f"Med {i}") for i in range(medication_count)],
        createdAt=created_at or T0,
    )


class FakeMetrics:
    """
    Metrics lookup with canned answers per discharge id.
    Ids listed in `failing` raise; ids in `gates` wait for their event first.
    """

    def __init__(self, results: Optional[Dict[str, PatientMetrics]] = None, default: Optional[PatientMetrics] = None):
        self.results = results or {}
        self.default = default or PatientMetrics(adherenceRate=100, symptomFlagCount=0, isActive=True)
        self.failing = set()
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls = []

    async def __call__(self, episode_id: str, clinic_id: str) -> PatientMetrics:
        self.calls.append((episode_id, clinic_id))
        gate = self.gates.get(episode_id)
        if gate is not None:
            await gate.wait()
        if episode_id in self.failing:
            raise ConnectionError(f"metrics backend unavailable for {episode_id}")
        return self.results.get(episode_id, self.default)


@pytest.fixture
def fake_metrics():
    return FakeMetrics()


def at(minutes: int) -> datetime:
    """T0 shifted by minutes."""
    return T0 + timedelta(minutes=minutes)
