# Symptom flags - clinically notable patterns in caregiver symptom logs
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from adherence import get_dose_events_in_window
from models import now_utc

FLAG_COUNT_WINDOW_DAYS = 14
FREQUENT_PANTING_DAYS = 4
TREND_BAND = 0.5
RECENT_ENTRY_LIMIT = 14


@dataclass
class SymptomEntry:
    date: str  # YYYY-MM-DD
    appetite: int
    energyLevel: int
    isPanting: bool
    recordedAt: datetime
    notes: str = ""


@dataclass
class SymptomFlag:
    type: str  # appetite_low | appetite_drop | energy_low | energy_drop | panting_persistent
    date: str
    description: str
    severity: str  # low | medium | high
    value: Optional[float] = None
    previousValue: Optional[float] = None


@dataclass
class SymptomAnalysis:
    flags: List[SymptomFlag] = field(default_factory=list)
    recentEntries: List[SymptomEntry] = field(default_factory=list)
    trends: Dict = field(default_factory=lambda: empty_trends())


def empty_trends() -> Dict:
    return {
        "appetite": {"current": 0, "sevenDayAverage": 0, "trend": "stable"},
        "energy": {"current": 0, "sevenDayAverage": 0, "trend": "stable"},
        "panting": {"recentDays": 0, "isFrequent": False},
    }


def _round1(value: float) -> float:
    """One decimal, halves rounded up"""
    return math.floor(value * 10 + 0.5) / 10


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0


def collect_symptom_entries(
    episode_ids: List[str],
    day_range: int = 30,
    now: Optional[datetime] = None,
) -> List[SymptomEntry]:
    """One entry per scheduled day (latest recordedAt wins), newest day first."""
    by_day: Dict[str, SymptomEntry] = {}
    for event in get_dose_events_in_window(episode_ids, day_range, now):
        if event.symptoms is None:
            continue
        day = event.scheduledTime.date().isoformat()
        current = by_day.get(day)
        if current is None or event.symptoms.recordedAt > current.recordedAt:
            by_day[day] = SymptomEntry(
                date=day,
                appetite=event.symptoms.appetite,
                energyLevel=event.symptoms.energyLevel,
                isPanting=event.symptoms.isPanting,
                recordedAt=event.symptoms.recordedAt,
                notes=event.symptoms.notes,
            )
    return sorted(by_day.values(), key=lambda e: e.date, reverse=True)


def _is_consecutive(today: SymptomEntry, yesterday: Optional[SymptomEntry]) -> bool:
    if yesterday is None:
        return False
    return date.fromisoformat(today.date) - date.fromisoformat(yesterday.date) == timedelta(days=1)


def generate_symptom_flags(entries: List[SymptomEntry]) -> List[SymptomFlag]:
    """
    Flag rules, evaluated for each day against the next older entry:
    - appetite_low / energy_low: value <= 2 two consecutive days (high when 1)
    - appetite_drop / energy_drop: >= 2 below the 7-day average, needs 3+ entries
      (high when >= 3 below)
    - panting_persistent: panting two consecutive days
    At most one flag per (type, date).
    """
    flags: List[SymptomFlag] = []
    if not entries:
        return flags

    seven_day = entries[:7]
    averages = {
        "appetite": _average([e.appetite for e in seven_day]),
        "energyLevel": _average([e.energyLevel for e in seven_day]),
    }
    seen = set()

    def add(flag: SymptomFlag):
        key = (flag.type, flag.date)
        if key not in seen:
            seen.add(key)
            flags.append(flag)

    for i, today in enumerate(entries):
        yesterday = entries[i + 1] if i + 1 < len(entries) else None
        consecutive = _is_consecutive(today, yesterday)

        for attr, label, prefix in (("appetite", "appetite", "Low appetite"),
                                    ("energyLevel", "energy", "Low energy")):
            value = getattr(today, attr)

            if consecutive and value <= 2 and getattr(yesterday, attr) <= 2:
                add(SymptomFlag(
                    type=f"{label}_low",
                    date=today.date,
                    description=f"{prefix} ({value}/5) for 2+ consecutive days",
                    severity="high" if value == 1 else "medium",
                    value=value,
                ))

            drop = averages[attr] - value
            if len(seven_day) >= 3 and drop >= 2:
                add(SymptomFlag(
                    type=f"{label}_drop",
                    date=today.date,
                    description=f"{label.capitalize()} dropped {_round1(drop)} points below recent average",
                    severity="high" if drop >= 3 else "medium",
                    value=value,
                    previousValue=_round1(averages[attr]),
                ))

        if consecutive and today.isPanting and yesterday.isPanting:
            add(SymptomFlag(
                type="panting_persistent",
                date=today.date,
                description="Persistent panting for 2+ consecutive days",
                severity="medium",
            ))

    return sorted(flags, key=lambda f: f.date, reverse=True)


def _trend(recent_avg: float, older_avg: float) -> str:
    if recent_avg > older_avg + TREND_BAND:
        return "improving"
    if recent_avg < older_avg - TREND_BAND:
        return "declining"
    return "stable"


def calculate_symptom_trends(entries: List[SymptomEntry]) -> Dict:
    """Current value, 7-day average and direction vs. the preceding entries."""
    if not entries:
        return empty_trends()

    recent = entries[:7]
    older = entries[1:8]
    current = entries[0]

    appetite_avg = _average([e.appetite for e in recent])
    energy_avg = _average([e.energyLevel for e in recent])
    older_appetite = _average([e.appetite for e in older]) if older else appetite_avg
    older_energy = _average([e.energyLevel for e in older]) if older else energy_avg
    panting_days = sum(1 for e in recent if e.isPanting)

    return {
        "appetite": {
            "current": current.appetite,
            "sevenDayAverage": _round1(appetite_avg),
            "trend": _trend(appetite_avg, older_appetite),
        },
        "energy": {
            "current": current.energyLevel,
            "sevenDayAverage": _round1(energy_avg),
            "trend": _trend(energy_avg, older_energy),
        },
        "panting": {
            "recentDays": panting_days,
            "isFrequent": panting_days >= FREQUENT_PANTING_DAYS,
        },
    }


def analyze_entries(entries: List[SymptomEntry]) -> SymptomAnalysis:
    if not entries:
        return SymptomAnalysis()
    return SymptomAnalysis(
        flags=generate_symptom_flags(entries),
        recentEntries=entries[:RECENT_ENTRY_LIMIT],
        trends=calculate_symptom_trends(entries),
    )


def analyze_symptoms(
    episode_ids: List[str],
    day_range: int = 30,
    now: Optional[datetime] = None,
) -> SymptomAnalysis:
    """Analyze symptom logs of one or more discharges over the trailing window."""
    return analyze_entries(collect_symptom_entries(episode_ids, day_range, now))


async def get_symptom_flag_count(
    episode_id: str,
    clinic_id: str,
    now: Optional[datetime] = None,
) -> int:
    """Number of symptom flags over the last two weeks (dashboard badge)."""
    analysis = analyze_symptoms([episode_id], FLAG_COUNT_WINDOW_DAYS, now or now_utc())
    return len(analysis.flags)


def analysis_to_dict(analysis: SymptomAnalysis) -> Dict:
    return {
        "flags": [
            {
                "type": f.type,
                "date": f.date,
                "description": f.description,
                "severity": f.severity,
                "value": f.value,
                "previousValue": f.previousValue,
            }
            for f in analysis.flags
        ],
        "recentEntries": [
            {
                "date": e.date,
                "appetite": e.appetite,
                "energyLevel": e.energyLevel,
                "isPanting": e.isPanting,
                "notes": e.notes,
                "recordedAt": e.recordedAt.isoformat(),
            }
            for e in analysis.recentEntries
        ],
        "trends": analysis.trends,
        "flagCount": len(analysis.flags),
    }
