# Adherence metrics - dose events logged by pet owners against a discharge
from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from models import DoseEvent, dose_events, now_utc

LATE_DOSE_THRESHOLD = timedelta(hours=2)
ACTIVE_WINDOW = timedelta(days=7)
MAX_RECORDS_PER_WINDOW = 500
MISSED_STATUSES = ("missed", "skipped")


@dataclass
class AdherenceSummary:
    adherenceRate: int
    isActive: bool
    lastActivity: Optional[datetime] = None


def _rate(given: int, total: int) -> int:
    """Percentage rounded half up; 0 when nothing was scheduled."""
    return math.floor(given / total * 100 + 0.5) if total > 0 else 0


def _is_late(event: DoseEvent) -> bool:
    if event.status != "given" or event.givenAt is None:
        return False
    return event.givenAt - event.scheduledTime > LATE_DOSE_THRESHOLD


def _count(events: List[DoseEvent]) -> Dict[str, int]:
    given = [e for e in events if e.status == "given"]
    late = sum(1 for e in given if _is_late(e))
    return {
        "totalDoses": len(events),
        "givenDoses": len(given),
        "lateDoses": late,
        "missedDoses": sum(1 for e in events if e.status in MISSED_STATUSES),
        "adherenceRate": _rate(len(given), len(events)),
    }


def empty_metrics() -> Dict:
    return {
        "overall": {
            "totalDoses": 0,
            "givenDoses": 0,
            "lateDoses": 0,
            "missedDoses": 0,
            "adherenceRate": 0,
        },
        "perMedication": [],
        "timeline": [],
    }


def get_dose_events_in_window(
    episode_ids: Iterable[str],
    day_range: int = 30,
    now: Optional[datetime] = None,
) -> List[DoseEvent]:
    """Dose events scheduled within the last day_range days, newest first (capped)."""
    now = now or now_utc()
    start = now - timedelta(days=day_range)
    records: List[DoseEvent] = []
    for episode_id in episode_ids:
        records.extend(
            e for e in dose_events.get(episode_id, [])
            if start <= e.scheduledTime <= now
        )
    records.sort(key=lambda e: e.scheduledTime, reverse=True)
    return records[:MAX_RECORDS_PER_WINDOW]


def summarize_dose_events(records: List[DoseEvent]) -> Dict:
    """
    Build adherence metrics from dose events:
    - overall: totals, late (> 2h after schedule), missed (missed + skipped), rate
    - perMedication: same counts per medication name, plus onTimeDoses
    - timeline: per scheduled calendar day, chronological
    """
    if not records:
        return empty_metrics()

    by_medication: Dict[str, List[DoseEvent]] = defaultdict(list)
    by_day: Dict[str, List[DoseEvent]] = defaultdict(list)
    for record in records:
        by_medication[record.medicationName].append(record)
        by_day[record.scheduledTime.date().isoformat()].append(record)

    per_medication = []
    for medication_name, med_records in by_medication.items():
        counts = _count(med_records)
        per_medication.append({
            "medicationName": medication_name,
            "totalDoses": counts["totalDoses"],
            "onTimeDoses": counts["givenDoses"] - counts["lateDoses"],
            "lateDoses": counts["lateDoses"],
            "missedDoses": counts["missedDoses"],
            "adherenceRate": counts["adherenceRate"],
        })

    timeline = []
    for day in sorted(by_day):
        counts = _count(by_day[day])
        timeline.append({
            "date": day,
            "scheduledDoses": counts["totalDoses"],
            "givenDoses": counts["givenDoses"],
            "missedDoses": counts["missedDoses"],
            "adherenceRate": counts["adherenceRate"],
        })

    return {
        "overall": _count(records),
        "perMedication": per_medication,
        "timeline": timeline,
    }


def calculate_adherence_metrics(
    episode_ids: Iterable[str],
    day_range: int = 30,
    now: Optional[datetime] = None,
) -> Dict:
    """Adherence metrics over the trailing window for one or more discharges."""
    return summarize_dose_events(get_dose_events_in_window(episode_ids, day_range, now))


def get_recent_dose_events(episode_id: str, limit: int = 50) -> List[DoseEvent]:
    """Most recently scheduled dose events for a discharge."""
    records = sorted(
        dose_events.get(episode_id, []),
        key=lambda e: e.scheduledTime,
        reverse=True,
    )
    return records[:limit]


async def get_patient_adherence_summary(
    episode_id: str,
    clinic_id: str,
    now: Optional[datetime] = None,
) -> AdherenceSummary:
    """30-day adherence rate plus last activity; active when seen within 7 days."""
    now = now or now_utc()
    metrics = calculate_adherence_metrics([episode_id], 30, now)

    recent = get_recent_dose_events(episode_id, 1)
    last_activity = recent[0].loggedAt if recent else None
    is_active = last_activity is not None and (now - last_activity) < ACTIVE_WINDOW

    return AdherenceSummary(
        adherenceRate=metrics["overall"]["adherenceRate"],
        isActive=is_active,
        lastActivity=last_activity,
    )


def record_dose_event(event: DoseEvent) -> DoseEvent:
    """Store an adherence record against its discharge."""
    dose_events.setdefault(event.episodeId, []).append(event)
    return event


def dose_event_to_dict(event: DoseEvent) -> Dict:
    data = {
        "doseId": event.doseId,
        "dischargeId": event.episodeId,
        "medicationName": event.medicationName,
        "scheduledTime": event.scheduledTime.isoformat(),
        "status": event.status,
        "loggedAt": event.loggedAt.isoformat(),
        "givenAt": event.givenAt.isoformat() if event.givenAt else None,
    }
    if event.symptoms is not None:
        data["symptoms"] = {
            "appetite": event.symptoms.appetite,
            "energyLevel": event.symptoms.energyLevel,
            "isPanting": event.symptoms.isPanting,
            "notes": event.symptoms.notes,
            "recordedAt": event.symptoms.recordedAt.isoformat(),
        }
    return data
