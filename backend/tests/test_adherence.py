"""
Tests for adherence metrics computed from dose events
"""
import asyncio
from datetime import timedelta

import pytest
from models import DoseEvent, dose_events
from adherence import (
    calculate_adherence_metrics,
    get_patient_adherence_summary,
    get_recent_dose_events,
    record_dose_event,
)
from conftest import T0

NOW = T0 + timedelta(days=40)


@pytest.fixture(autouse=True)
def clean_dose_events():
    saved = dict(dose_events)
    dose_events.clear()
    yield
    dose_events.clear()
    dose_events.update(saved)


def dose(episode_id, scheduled, status="given", delay=timedelta(minutes=5), medication="Carprofen", n=0):
    given_at = scheduled + delay if status == "given" else None
    return record_dose_event(DoseEvent(
        doseId=f"{episode_id}-{scheduled.isoformat()}-{n}",
        episodeId=episode_id,
        medicationName=medication,
        scheduledTime=scheduled,
        status=status,
        loggedAt=given_at or scheduled + timedelta(hours=1),
        givenAt=given_at,
    ))


class TestCalculateAdherenceMetrics:

    def test_no_records_gives_zero_rate(self):
        metrics = calculate_adherence_metrics(["nothing"], 30, NOW)
        assert metrics["overall"]["adherenceRate"] == 0
        assert metrics["overall"]["totalDoses"] == 0
        assert metrics["perMedication"] == []
        assert metrics["timeline"] == []

    def test_overall_counts(self):
        day = NOW - timedelta(days=1)
        dose("d1", day)
        dose("d1", day + timedelta(hours=1), delay=timedelta(hours=3))  # late
        dose("d1", day + timedelta(hours=2), status="missed")
        dose("d1", day + timedelta(hours=3), status="skipped")

        overall = calculate_adherence_metrics(["d1"], 30, NOW)["overall"]

        assert overall == {
            "totalDoses": 4,
            "givenDoses": 2,
            "lateDoses": 1,
            "missedDoses": 2,
            "adherenceRate": 50,
        }

    def test_exactly_two_hours_is_not_late(self):
        dose("d1", NOW - timedelta(days=1), delay=timedelta(hours=2))
        assert calculate_adherence_metrics(["d1"], 30, NOW)["overall"]["lateDoses"] == 0

    def test_rate_rounds_half_up(self):
        scheduled = NOW - timedelta(days=1)
        dose("d1", scheduled)
        for i in range(7):
            dose("d1", scheduled + timedelta(minutes=i + 1), status="missed", n=i)
        # 1 of 8 = 12.5%
        assert calculate_adherence_metrics(["d1"], 30, NOW)["overall"]["adherenceRate"] == 13

    def test_window_excludes_old_and_future_doses(self):
        dose("d1", NOW - timedelta(days=31))
        dose("d1", NOW + timedelta(hours=1))
        dose("d1", NOW - timedelta(days=2), status="missed")
        overall = calculate_adherence_metrics(["d1"], 30, NOW)["overall"]
        assert overall["totalDoses"] == 1
        assert overall["adherenceRate"] == 0

    def test_per_medication_and_timeline(self):
        day1 = NOW - timedelta(days=2)
        day2 = NOW - timedelta(days=1)
        dose("d1", day1, medication="Carprofen")
        dose("d1", day1 + timedelta(hours=1), medication="Gabapentin", status="missed")
        dose("d1", day2, medication="Carprofen", delay=timedelta(hours=4))

        metrics = calculate_adherence_metrics(["d1"], 30, NOW)

        per_med = {m["medicationName"]: m for m in metrics["perMedication"]}
        assert per_med["Carprofen"]["totalDoses"] == 2
        assert per_med["Carprofen"]["onTimeDoses"] == 1
        assert per_med["Carprofen"]["lateDoses"] == 1
        assert per_med["Carprofen"]["adherenceRate"] == 100
        assert per_med["Gabapentin"]["missedDoses"] == 1
        assert per_med["Gabapentin"]["adherenceRate"] == 0

        assert [d["date"] for d in metrics["timeline"]] == [day1.date().isoformat(), day2.date().isoformat()]
        assert metrics["timeline"][0]["adherenceRate"] == 50
        assert metrics["timeline"][1]["adherenceRate"] == 100

    def test_pools_multiple_discharges(self):
        dose("d1", NOW - timedelta(days=1))
        dose("d2", NOW - timedelta(days=1), status="missed")
        assert calculate_adherence_metrics(["d1", "d2"], 30, NOW)["overall"]["adherenceRate"] == 50


class TestRecentDoseEvents:

    def test_newest_scheduled_first(self):
        older = dose("d1", NOW - timedelta(days=3))
        newer = dose("d1", NOW - timedelta(days=1))
        assert get_recent_dose_events("d1") == [newer, older]
        assert get_recent_dose_events("d1", 1) == [newer]

    def test_unknown_discharge(self):
        assert get_recent_dose_events("missing") == []


class TestPatientAdherenceSummary:

    def test_active_when_logged_within_seven_days(self):
        dose("d1", NOW - timedelta(days=6))
        summary = asyncio.run(get_patient_adherence_summary("d1", "clinic", NOW))
        assert summary.isActive is True
        assert summary.adherenceRate == 100
        assert summary.lastActivity == NOW - timedelta(days=6) + timedelta(minutes=5)

    def test_inactive_after_seven_days(self):
        dose("d1", NOW - timedelta(days=8))
        summary = asyncio.run(get_patient_adherence_summary("d1", "clinic", NOW))
        assert summary.isActive is False
        assert summary.lastActivity is not None

    def test_no_records(self):
        summary = asyncio.run(get_patient_adherence_summary("d1", "clinic", NOW))
        assert summary.adherenceRate == 0
        assert summary.isActive is False
        assert summary.lastActivity is None
