# Business logic - discharge queries, patient risk aggregation, client registry
from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from adherence import (
    ACTIVE_WINDOW,
    calculate_adherence_metrics,
    get_dose_events_in_window,
    get_patient_adherence_summary,
)
from models import (
    MEDICATION_TEMPLATES,
    AlertLevel,
    Client,
    Clinic,
    Medication,
    MedicationTemplate,
    PatientGroup,
    PatientSummary,
    Pet,
    RegisteredPet,
    TreatmentEpisode,
    as_utc,
    clients,
    clinics,
    derive_patient_id,
    episodes,
    generate_pet_id,
    now_utc,
    pets,
)
from symptom_flags import analysis_to_dict, analyze_symptoms, get_symptom_flag_count

logger = logging.getLogger(__name__)


@dataclass
class PatientMetrics:
    """What the monitoring backend knows about a discharge right now"""
    adherenceRate: int
    symptomFlagCount: int
    isActive: bool
    lastActivity: Optional[datetime] = None


# (episode_id, clinic_id) -> metrics; may raise on backend failure
MetricsLookup = Callable[[str, str], Awaitable[PatientMetrics]]


def get_clinic(clinic_id: str) -> Optional[Clinic]:
    """Get clinic by ID"""
    return clinics.get(clinic_id)


def get_episode(episode_id: str) -> Optional[TreatmentEpisode]:
    for ep in episodes:
        if ep.episodeId == episode_id:
            return ep
    return None


def list_episodes(clinic_id: str, max_count: int) -> List[TreatmentEpisode]:
    """Clinic's discharges, newest first, at most max_count."""
    clinic_episodes = [ep for ep in episodes if ep.clinicId == clinic_id]
    clinic_episodes.sort(key=lambda ep: ep.createdAt, reverse=True)
    return clinic_episodes[:max_count]


def create_episode(
    clinic_id: str,
    patient: Pet,
    medications: List[Medication],
    vet_id: str = "",
    diagnosis: str = "",
    notes: str = "",
    created_at: Optional[datetime] = None,
) -> TreatmentEpisode:
    """
    Record a new discharge. Discharges are never updated afterwards.
    Medications without instructions get the template default, if one exists.
    """
    episode = TreatmentEpisode(
        episodeId=f"dis_{uuid.uuid4().hex[:12]}",
        clinicId=clinic_id,
        patient=patient,
        medications=[_with_default_instructions(m) for m in medications],
        createdAt=created_at or now_utc(),
        vetId=vet_id,
        diagnosis=diagnosis,
        notes=notes,
    )
    episodes.append(episode)
    return episode


def _with_default_instructions(medication: Medication) -> Medication:
    if medication.instructions:
        return medication
    template = get_medication_template(medication.name)
    if template is None:
        return medication
    return replace(medication, instructions=template.defaultInstructions)


def get_patient_episodes(clinic_id: str, patient_id: str) -> List[TreatmentEpisode]:
    """All discharges of one patient (by derived id), newest first."""
    matching = [
        ep for ep in episodes
        if ep.clinicId == clinic_id and derive_patient_id(ep) == patient_id
    ]
    return sorted(matching, key=lambda ep: ep.createdAt, reverse=True)


def get_discharge_stats(clinic_id: str, now: Optional[datetime] = None, recent: int = 10) -> Dict:
    """Counts of the clinic's most recent discharges created today / this week / this month."""
    now = now or now_utc()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Weeks start on Sunday
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    month_start = today.replace(day=1)

    recent_episodes = list_episodes(clinic_id, recent)
    return {
        "totalToday": sum(1 for ep in recent_episodes if ep.createdAt >= today),
        "totalThisWeek": sum(1 for ep in recent_episodes if ep.createdAt >= week_start),
        "totalThisMonth": sum(1 for ep in recent_episodes if ep.createdAt >= month_start),
    }


# =============================================================================
# Patient risk aggregation
# =============================================================================

def group_by_patient(episode_list: List[TreatmentEpisode]) -> List[PatientGroup]:
    """
    One group per derived patient id. Input order is arbitrary; the latest
    episode is replaced only on a strictly later createdAt, so ties keep the
    first one encountered.
    """
    groups: Dict[str, PatientGroup] = {}
    for ep in episode_list:
        patient_id = derive_patient_id(ep)
        group = groups.get(patient_id)
        if group is None:
            groups[patient_id] = PatientGroup(patientId=patient_id, latestEpisode=ep, allEpisodes=[ep])
            continue
        group.allEpisodes.append(ep)
        if ep.createdAt > group.latestEpisode.createdAt:
            group.latestEpisode = ep
    return list(groups.values())


def classify_alert_level(adherence_rate: float, symptom_flag_count: int) -> AlertLevel:
    """Threshold table, first match wins. Adherence bounds are exclusive."""
    if symptom_flag_count >= 3 or adherence_rate < 50:
        return AlertLevel.HIGH
    if symptom_flag_count >= 2 or adherence_rate < 70:
        return AlertLevel.MEDIUM
    if symptom_flag_count >= 1 or adherence_rate < 85:
        return AlertLevel.LOW
    return AlertLevel.NONE


async def fetch_patient_metrics(episode_id: str, clinic_id: str) -> PatientMetrics:
    """Default metrics lookup backed by the adherence and symptom records."""
    adherence, flag_count = await asyncio.gather(
        get_patient_adherence_summary(episode_id, clinic_id),
        get_symptom_flag_count(episode_id, clinic_id),
    )
    return PatientMetrics(
        adherenceRate=adherence.adherenceRate,
        symptomFlagCount=flag_count,
        isActive=adherence.isActive,
        lastActivity=adherence.lastActivity,
    )


def _base_summary(group: PatientGroup) -> PatientSummary:
    """Summary fields that come from the discharges alone."""
    latest = group.latestEpisode
    return PatientSummary(
        dischargeId=latest.episodeId,
        patientId=group.patientId,
        petName=latest.patient.name,
        petSpecies=latest.patient.species,
        petWeight=latest.patient.weight,
        firstSeenAt=min(ep.createdAt for ep in group.allEpisodes),
        lastSeenAt=latest.createdAt,
        # Cumulative treatment burden across every visit, not just the latest
        medicationCount=sum(len(ep.medications) for ep in group.allEpisodes),
        totalEpisodes=len(group.allEpisodes),
    )


async def compute_summary(
    group: PatientGroup,
    metrics: MetricsLookup = fetch_patient_metrics,
    timeout: Optional[float] = None,
) -> PatientSummary:
    """
    Summarize one patient. A failed, timed-out or malformed metrics lookup
    never propagates: the summary falls back to zero adherence, inactive, no alert.
    """
    summary = _base_summary(group)
    latest = group.latestEpisode
    try:
        result = await asyncio.wait_for(metrics(latest.episodeId, latest.clinicId), timeout)
        adherence_rate = max(0, min(100, int(result.adherenceRate)))
        flag_count = max(0, int(result.symptomFlagCount))
        last_activity = as_utc(result.lastActivity)
    except asyncio.TimeoutError:
        logger.warning("Metrics lookup timed out for discharge %s", latest.episodeId)
        return summary
    except Exception:
        logger.warning("Metrics lookup failed for discharge %s", latest.episodeId, exc_info=True)
        return summary

    summary.adherenceRate = adherence_rate
    summary.symptomFlagCount = flag_count
    summary.isActive = bool(result.isActive)
    summary.lastActivity = last_activity
    summary.alertLevel = classify_alert_level(adherence_rate, flag_count)
    return summary


def _most_recent(summary: PatientSummary) -> datetime:
    if summary.lastActivity is not None and summary.lastActivity > summary.lastSeenAt:
        return summary.lastActivity
    return summary.lastSeenAt


def rank_and_sort(summaries: List[PatientSummary]) -> List[PatientSummary]:
    """
    Riskiest first: alert severity desc, then active before inactive,
    then most recent of lastActivity/lastSeenAt desc. Stable.
    """
    return sorted(
        summaries,
        key=lambda s: (-s.alertLevel.severity, not s.isActive, -_most_recent(s).timestamp()),
    )


async def aggregate_patients(
    episode_list: List[TreatmentEpisode],
    metrics: MetricsLookup = fetch_patient_metrics,
    timeout: Optional[float] = None,
) -> List[PatientSummary]:
    """episodes -> groups -> summaries -> sorted summaries, lookups fanned out in parallel."""
    groups = group_by_patient(episode_list)
    summaries = await asyncio.gather(*(compute_summary(g, metrics, timeout) for g in groups))
    return rank_and_sort(list(summaries))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def summary_to_dict(summary: PatientSummary) -> Dict:
    return {
        "dischargeId": summary.dischargeId,
        "patientId": summary.patientId,
        "petName": summary.petName,
        "petSpecies": summary.petSpecies,
        "petWeight": summary.petWeight,
        "firstSeenAt": _iso(summary.firstSeenAt),
        "lastSeenAt": _iso(summary.lastSeenAt),
        "lastActivity": _iso(summary.lastActivity),
        "medicationCount": summary.medicationCount,
        "adherenceRate": summary.adherenceRate,
        "symptomFlagCount": summary.symptomFlagCount,
        "isActive": summary.isActive,
        "alertLevel": summary.alertLevel.value,
        "totalEpisodes": summary.totalEpisodes,
    }


def episode_to_dict(episode: TreatmentEpisode) -> Dict:
    return {
        "dischargeId": episode.episodeId,
        "clinicId": episode.clinicId,
        "patientId": derive_patient_id(episode),
        "pet": {
            "name": episode.patient.name,
            "species": episode.patient.species,
            "weight": episode.patient.weight,
            "petId": episode.patient.petId,
        },
        "medications": [
            {
                "name": m.name,
                "dosage": m.dosage,
                "frequency": m.frequency,
                "instructions": m.instructions,
                "isTapered": m.isTapered,
            }
            for m in episode.medications
        ],
        "createdAt": _iso(episode.createdAt),
        "vetId": episode.vetId,
        "diagnosis": episode.diagnosis,
        "notes": episode.notes,
    }


def get_patient_detail(
    clinic_id: str,
    patient_id: str,
    day_range: int = 90,
    now: Optional[datetime] = None,
) -> Optional[Dict]:
    """Every discharge of one patient with adherence and symptoms pooled across them."""
    patient_episodes = get_patient_episodes(clinic_id, patient_id)
    if not patient_episodes:
        return None

    now = now or now_utc()
    episode_ids = [ep.episodeId for ep in patient_episodes]
    latest = patient_episodes[0]

    records = get_dose_events_in_window(episode_ids, day_range, now)
    last_activity = max((r.loggedAt for r in records), default=None)

    return {
        "patientId": patient_id,
        "petName": latest.patient.name,
        "petSpecies": latest.patient.species,
        "petWeight": latest.patient.weight,
        "totalVisits": len(patient_episodes),
        "firstVisitDate": _iso(patient_episodes[-1].createdAt),
        "lastVisitDate": _iso(latest.createdAt),
        "lastActivity": _iso(last_activity),
        "isActive": last_activity is not None and (now - last_activity) < ACTIVE_WINDOW,
        "adherence": calculate_adherence_metrics(episode_ids, day_range, now),
        "symptoms": analysis_to_dict(analyze_symptoms(episode_ids, day_range, now)),
        "discharges": [episode_to_dict(ep) for ep in patient_episodes],
    }


# =============================================================================
# Client and pet registry
# =============================================================================
CLIENT_PAGE_SIZE = 50
CLIENT_ACTIVITY_LIMIT = 20

_BARE_NUMBER = re.compile(r'^\d+(?:\.\d+)?$')
_PET_FIELDS = ("name", "species", "breed", "weight", "microchipNumber", "notes", "isActive")


def standardize_weight(weight: Optional[str]) -> str:
    """A bare number is read as pounds; anything with units is kept as entered."""
    weight = (weight or "").strip()
    if _BARE_NUMBER.match(weight):
        return f"{weight} lbs"
    return weight


def get_client(client_id: str) -> Optional[Client]:
    return clients.get(client_id)


def create_client(
    clinic_id: str,
    first_name: str,
    last_name: str,
    email: str = "",
    phone: str = "",
    notes: str = "",
) -> Client:
    now = now_utc()
    client = Client(
        clientId=f"client_{uuid.uuid4().hex[:12]}",
        clinicId=clinic_id,
        firstName=first_name.strip(),
        lastName=last_name.strip(),
        email=email.strip(),
        phone=phone.strip(),
        notes=notes.strip(),
        createdAt=now,
        updatedAt=now,
    )
    clients[client.clientId] = client
    return client


def _client_order(client: Client):
    return (client.lastName.lower(), client.firstName.lower(), client.clientId)


def _matches_search(client: Client, term: str) -> bool:
    """Name or email substring, or the digits of the phone number"""
    term_lower = term.strip().lower()
    full_name = f"{client.firstName} {client.lastName}".lower()
    if term_lower in full_name or term_lower in client.email.lower():
        return True
    term_digits = re.sub(r'\D', '', term)
    return bool(term_digits) and term_digits in re.sub(r'\D', '', client.phone)


def list_clients(
    clinic_id: str,
    limit: int = CLIENT_PAGE_SIZE,
    after: Optional[str] = None,
    search: Optional[str] = None,
) -> Optional[List[Client]]:
    """
    One page of a clinic's clients ordered by last name. `after` is the
    clientId that ended the previous page; None is returned when it does
    not belong to this clinic. A search term restricts to active clients.
    """
    matching = [c for c in clients.values() if c.clinicId == clinic_id]
    if search and search.strip():
        matching = [c for c in matching if c.isActive and _matches_search(c, search)]
    matching.sort(key=_client_order)

    if after is not None:
        cursor = clients.get(after)
        if cursor is None or cursor.clinicId != clinic_id:
            return None
        matching = [c for c in matching if _client_order(c) > _client_order(cursor)]
    return matching[:limit]


def get_client_pets(client_id: str, include_inactive: bool = False) -> List[RegisteredPet]:
    """Client's pets, newest first. Deactivated pets are hidden unless asked for."""
    owned = [
        p for p in pets.values()
        if p.clientId == client_id and (include_inactive or p.isActive)
    ]
    return sorted(owned, key=lambda p: p.createdAt, reverse=True)


def get_pet(pet_id: str) -> Optional[RegisteredPet]:
    return pets.get(pet_id)


def register_pet(
    client: Client,
    name: str,
    species: str,
    breed: str = "",
    weight: Optional[str] = None,
    microchip_number: str = "",
    notes: str = "",
) -> RegisteredPet:
    """Add a pet to a client. The generated petId is the patient id its discharges carry."""
    now = now_utc()
    pet = RegisteredPet(
        petId=generate_pet_id(),
        clientId=client.clientId,
        clinicId=client.clinicId,
        name=name.strip(),
        species=species.strip(),
        breed=breed.strip(),
        weight=standardize_weight(weight),
        microchipNumber=microchip_number.strip(),
        notes=notes.strip(),
        createdAt=now,
        updatedAt=now,
    )
    pets[pet.petId] = pet
    return pet


def update_pet(pet_id: str, changes: Dict) -> Optional[RegisteredPet]:
    """Apply a partial edit; unknown keys are ignored. Setting isActive=False retires the pet."""
    pet = pets.get(pet_id)
    if pet is None:
        return None
    for key in _PET_FIELDS:
        if key not in changes or changes[key] is None:
            continue
        value = changes[key]
        if key == "weight":
            value = standardize_weight(value)
        elif isinstance(value, str):
            value = value.strip()
        setattr(pet, key, value)
    pet.updatedAt = now_utc()
    return pet


def _pet_discharges(clinic_id: str, pet_ids: List[str]) -> List[TreatmentEpisode]:
    wanted = set(pet_ids)
    matching = [
        ep for ep in episodes
        if ep.clinicId == clinic_id and ep.patient.petId in wanted
    ]
    return sorted(matching, key=lambda ep: ep.createdAt, reverse=True)


def client_to_dict(client: Client) -> Dict:
    return {
        "clientId": client.clientId,
        "clinicId": client.clinicId,
        "firstName": client.firstName,
        "lastName": client.lastName,
        "email": client.email,
        "phone": client.phone,
        "notes": client.notes,
        "isActive": client.isActive,
        "createdAt": _iso(client.createdAt),
        "updatedAt": _iso(client.updatedAt),
    }


def pet_to_dict(pet: RegisteredPet) -> Dict:
    return {
        "petId": pet.petId,
        "clientId": pet.clientId,
        "clinicId": pet.clinicId,
        "name": pet.name,
        "species": pet.species,
        "breed": pet.breed,
        "weight": pet.weight,
        "microchipNumber": pet.microchipNumber,
        "notes": pet.notes,
        "isActive": pet.isActive,
        "createdAt": _iso(pet.createdAt),
        "updatedAt": _iso(pet.updatedAt),
    }


def get_client_summary(client: Client) -> Dict:
    """List row: the client plus active pet count and most recent visit"""
    active_pets = get_client_pets(client.clientId)
    discharges = _pet_discharges(client.clinicId, [p.petId for p in active_pets])
    return {
        **client_to_dict(client),
        "petCount": len(active_pets),
        "lastVisitDate": _iso(discharges[0].createdAt) if discharges else None,
    }


def get_client_detail(client_id: str) -> Optional[Dict]:
    """Client with their active pets and the recent discharges of those pets."""
    client = clients.get(client_id)
    if client is None:
        return None

    active_pets = get_client_pets(client_id)
    discharges = _pet_discharges(client.clinicId, [p.petId for p in active_pets])

    pet_rows = []
    for pet in active_pets:
        latest = next((ep for ep in discharges if ep.patient.petId == pet.petId), None)
        pet_rows.append({
            **pet_to_dict(pet),
            "activeMedications": len(latest.medications) if latest else 0,
            "lastDischargeDate": _iso(latest.createdAt) if latest else None,
        })

    return {
        **client_to_dict(client),
        "pets": pet_rows,
        "recentDischarges": [episode_to_dict(ep) for ep in discharges[:CLIENT_ACTIVITY_LIMIT]],
    }


def get_medication_template(name: str) -> Optional[MedicationTemplate]:
    """Case-insensitive lookup by medication name"""
    wanted = name.strip().lower()
    return next((t for t in MEDICATION_TEMPLATES if t.name.lower() == wanted), None)
