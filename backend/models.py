# In-memory data models for discharges, pets and adherence records
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

# In-memory storage
clinics: Dict[str, 'Clinic'] = {}
episodes: List['TreatmentEpisode'] = []
dose_events: Dict[str, List['DoseEvent']] = {}  # episodeId -> adherence records
clients: Dict[str, 'Client'] = {}
pets: Dict[str, 'RegisteredPet'] = {}  # petId -> registered pet

PET_ID_PATTERN = re.compile(
    r'^pet_[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$',
    re.IGNORECASE,
)


class AlertLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def severity(self) -> int:
        return _ALERT_SEVERITY[self]


_ALERT_SEVERITY = {
    AlertLevel.NONE: 0,
    AlertLevel.LOW: 1,
    AlertLevel.MEDIUM: 2,
    AlertLevel.HIGH: 3,
}


@dataclass
class Clinic:
    """Clinic (tenant)"""
    clinicId: str
    name: str


@dataclass
class Client:
    """Pet owner registered with a clinic"""
    clientId: str
    clinicId: str
    firstName: str
    lastName: str
    email: str = ""
    phone: str = ""
    notes: str = ""
    isActive: bool = True
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


@dataclass
class RegisteredPet:
    """Pet record owned by a client. Its petId is what discharges reference."""
    petId: str
    clientId: str
    clinicId: str
    name: str
    species: str
    breed: str = ""
    weight: str = ""
    microchipNumber: str = ""
    notes: str = ""
    isActive: bool = True
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


@dataclass(frozen=True)
class MedicationTemplate:
    name: str
    defaultInstructions: str


MEDICATION_TEMPLATES = (
    MedicationTemplate("Carprofen", "Give with food. Monitor for GI upset."),
    MedicationTemplate("Prednisone", "Give in the morning. Do not stop suddenly without vet guidance."),
    MedicationTemplate("Metacam", "Give with food. Monitor for decreased appetite or vomiting."),
    MedicationTemplate("Tramadol", "May cause drowsiness. Give with or without food."),
    MedicationTemplate("Cephalexin", "Complete entire course even if symptoms improve. Give with food."),
    MedicationTemplate("Gabapentin", "May cause sedation initially. Do not stop suddenly."),
    MedicationTemplate("Onsior", "Give with food. Monitor for decreased appetite."),
    MedicationTemplate("Rimadyl", "Give with food. Watch for loss of appetite, vomiting, or diarrhea."),
    MedicationTemplate("Methocarbamol", "May cause drowsiness. Give with or without food."),
    MedicationTemplate("Amoxicillin", "Complete entire course. Give with or without food."),
)


@dataclass
class Pet:
    """Patient snapshot embedded in a discharge"""
    name: str
    species: str
    weight: Optional[str] = None
    petId: Optional[str] = None  # Stable id, missing on legacy records


@dataclass
class Medication:
    name: str
    dosage: str = ""
    frequency: int = 1  # times per day
    instructions: str = ""
    isTapered: bool = False


@dataclass
class TreatmentEpisode:
    """A discharge: one visit outcome with its prescribed medications"""
    episodeId: str
    clinicId: str
    patient: Pet
    medications: List[Medication] = field(default_factory=list)
    createdAt: Optional[datetime] = None
    vetId: str = ""
    diagnosis: str = ""
    notes: str = ""


@dataclass
class SymptomEntryLog:
    """Caregiver-reported symptoms attached to a dose event"""
    appetite: int  # 1-5
    energyLevel: int  # 1-5
    isPanting: bool
    recordedAt: datetime
    notes: str = ""


@dataclass
class DoseEvent:
    """Adherence record logged by the pet owner against a discharge"""
    doseId: str
    episodeId: str
    medicationName: str
    scheduledTime: datetime
    status: str  # "given" | "missed" | "skipped"
    loggedAt: datetime
    givenAt: Optional[datetime] = None
    symptoms: Optional[SymptomEntryLog] = None


@dataclass
class PatientGroup:
    patientId: str
    latestEpisode: TreatmentEpisode
    allEpisodes: List[TreatmentEpisode] = field(default_factory=list)


@dataclass
class PatientSummary:
    """Per-patient row of the monitoring list"""
    dischargeId: str
    patientId: str
    petName: str
    petSpecies: str
    firstSeenAt: datetime
    lastSeenAt: datetime
    medicationCount: int
    totalEpisodes: int
    adherenceRate: int = 0
    symptomFlagCount: int = 0
    isActive: bool = False
    alertLevel: AlertLevel = AlertLevel.NONE
    petWeight: Optional[str] = None
    lastActivity: Optional[datetime] = None


def now_utc() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def patient_slug(name: Optional[str], species: Optional[str]) -> str:
    """Legacy patient key: "name species" lowercased, whitespace runs -> hyphen"""
    joined = " ".join(part for part in (name or "", species or "") if part).strip().lower()
    return re.sub(r'\s+', '-', joined)


def derive_patient_id(episode: TreatmentEpisode) -> str:
    """Explicit pet id when present, else the name/species slug"""
    if episode.patient.petId:
        return episode.patient.petId
    return patient_slug(episode.patient.name, episode.patient.species)


def generate_pet_id() -> str:
    return f"pet_{uuid.uuid4()}"


def is_valid_pet_id(pet_id: str) -> bool:
    if not isinstance(pet_id, str):
        return False
    return bool(PET_ID_PATTERN.match(pet_id))
