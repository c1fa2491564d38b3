# Backend main entry point
import asyncio
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv
load_dotenv()  # Load .env so DEMO_MODE=true works for local reviewers
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import settings
from adherence import calculate_adherence_metrics, dose_event_to_dict, record_dose_event
from live import PatientListWatcher, feed
from logic import (
    CLIENT_PAGE_SIZE,
    aggregate_patients,
    client_to_dict,
    create_client,
    create_episode,
    episode_to_dict,
    get_client,
    get_client_detail,
    get_client_summary,
    get_clinic,
    get_discharge_stats,
    get_episode,
    get_patient_detail,
    list_clients,
    list_episodes,
    pet_to_dict,
    register_pet,
    summary_to_dict,
    update_pet,
)
from models import (
    MEDICATION_TEMPLATES,
    DoseEvent,
    Medication,
    Pet,
    SymptomEntryLog,
    as_utc,
    clinics,
    is_valid_pet_id,
    now_utc,
)
from seed import seed_data
from symptom_flags import analysis_to_dict, analyze_symptoms

logging.basicConfig(level=settings.log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Initialize seed data
seed_data()

app = FastAPI(title="Discharge Monitor API")

# Configure CORS - allow local dev and the deployed frontend
_allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
if settings.frontend_url():
    _allowed_origins.append(settings.frontend_url())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class ClinicResponse(BaseModel):
    clinicId: str
    name: str


class PetIn(BaseModel):
    name: str = Field(min_length=1)
    species: str = Field(min_length=1)
    weight: Optional[str] = None
    petId: Optional[str] = None


class MedicationIn(BaseModel):
    name: str = Field(min_length=1)
    dosage: str = ""
    frequency: int = Field(default=1, ge=1, le=24)
    instructions: str = ""
    isTapered: bool = False


class DischargeCreate(BaseModel):
    pet: PetIn
    medications: List[MedicationIn] = Field(min_length=1)
    vetId: str = ""
    diagnosis: str = ""
    notes: str = ""


class SymptomsIn(BaseModel):
    appetite: int = Field(ge=1, le=5)
    energyLevel: int = Field(ge=1, le=5)
    isPanting: bool = False
    notes: str = ""
    recordedAt: Optional[datetime] = None


class DoseEventCreate(BaseModel):
    medicationName: str = Field(min_length=1)
    scheduledTime: datetime
    status: str = Field(pattern="^(given|missed|skipped)$")
    givenAt: Optional[datetime] = None
    symptoms: Optional[SymptomsIn] = None


class ClientCreate(BaseModel):
    firstName: str = Field(min_length=1)
    lastName: str = Field(min_length=1)
    email: str = ""
    phone: str = ""
    notes: str = ""


class PetCreate(BaseModel):
    name: str = Field(min_length=1)
    species: str = Field(min_length=1)
    breed: str = ""
    weight: Optional[str] = None
    microchipNumber: str = ""
    notes: str = ""


class PetUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    species: Optional[str] = Field(default=None, min_length=1)
    breed: Optional[str] = None
    weight: Optional[str] = None
    microchipNumber: Optional[str] = None
    notes: Optional[str] = None
    isActive: Optional[bool] = None


def _require_clinic(clinic_id: str):
    clinic = get_clinic(clinic_id)
    if not clinic:
        raise HTTPException(status_code=404, detail="Clinic not found")
    return clinic


def _require_episode(discharge_id: str):
    episode = get_episode(discharge_id)
    if not episode:
        raise HTTPException(status_code=404, detail="Discharge not found")
    return episode


@app.get("/")
def read_root():
    return {"message": "Discharge Monitor API"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


@app.get("/clinics", response_model=List[ClinicResponse])
def get_all_clinics():
    """Get all clinics"""
    return [ClinicResponse(clinicId=c.clinicId, name=c.name) for c in clinics.values()]


@app.get("/clinics/{clinic_id}/discharges")
def get_clinic_discharges(clinic_id: str, limit: Optional[int] = Query(default=None, ge=1)):
    """Clinic's discharges, newest first"""
    _require_clinic(clinic_id)
    max_count = limit or settings.patient_list_limit()
    return [episode_to_dict(ep) for ep in list_episodes(clinic_id, max_count)]


@app.post("/clinics/{clinic_id}/discharges", status_code=201)
async def create_discharge(clinic_id: str, discharge: DischargeCreate):
    """
    Record a new discharge and push a fresh snapshot to live patient lists.
    Async so the publish happens on the event loop the subscribers live on.
    """
    _require_clinic(clinic_id)
    if discharge.pet.petId is not None and not is_valid_pet_id(discharge.pet.petId):
        raise HTTPException(status_code=400, detail="petId must look like pet_<uuid4>")

    episode = create_episode(
        clinic_id,
        Pet(**discharge.pet.model_dump()),
        [Medication(**m.model_dump()) for m in discharge.medications],
        vet_id=discharge.vetId,
        diagnosis=discharge.diagnosis,
        notes=discharge.notes,
    )
    logger.info("Created discharge %s for clinic %s", episode.episodeId, clinic_id)
    feed.publish(clinic_id, settings.patient_list_limit())
    return episode_to_dict(episode)


@app.get("/clinics/{clinic_id}/discharges/stats")
def get_clinic_discharge_stats(clinic_id: str):
    """Dashboard counts: today / this week / this month"""
    _require_clinic(clinic_id)
    return get_discharge_stats(clinic_id)


@app.get("/clinics/{clinic_id}/patients")
async def get_clinic_patients(clinic_id: str):
    """Patients of a clinic, riskiest first"""
    _require_clinic(clinic_id)
    snapshot = list_episodes(clinic_id, settings.patient_list_limit())
    summaries = await aggregate_patients(snapshot, timeout=settings.metrics_timeout_seconds())
    return [summary_to_dict(s) for s in summaries]


@app.get("/clinics/{clinic_id}/patients/{patient_id}")
def get_clinic_patient(clinic_id: str, patient_id: str):
    """Every discharge of one patient with pooled adherence and symptoms"""
    _require_clinic(clinic_id)
    detail = get_patient_detail(clinic_id, patient_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return detail


@app.websocket("/clinics/{clinic_id}/patients/live")
async def clinic_patients_live(websocket: WebSocket, clinic_id: str):
    """Sends the sorted patient list now and again after every discharge change."""
    await websocket.accept()
    if not get_clinic(clinic_id):
        await websocket.close(code=4404)
        return

    queue = feed.subscribe(clinic_id)
    watcher = PatientListWatcher(timeout=settings.metrics_timeout_seconds())

    async def emit(summaries):
        await websocket.send_json({
            "type": "patients",
            "generation": watcher.generation,
            "patients": [summary_to_dict(s) for s in summaries],
        })

    queue.put_nowait(list_episodes(clinic_id, settings.patient_list_limit()))
    watch_task = asyncio.ensure_future(watcher.watch(queue, emit))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Live patient list closed for clinic %s", clinic_id)
    finally:
        watch_task.cancel()
        feed.unsubscribe(clinic_id, queue)


@app.get("/clinics/{clinic_id}/clients")
def get_clinic_clients(
    clinic_id: str,
    limit: int = Query(default=CLIENT_PAGE_SIZE, ge=1, le=200),
    after: Optional[str] = None,
    search: Optional[str] = None,
):
    """Clients ordered by last name, one page at a time"""
    _require_clinic(clinic_id)
    page = list_clients(clinic_id, limit=limit, after=after, search=search)
    if page is None:
        raise HTTPException(status_code=400, detail="Unknown page cursor")
    return [get_client_summary(c) for c in page]


@app.post("/clinics/{clinic_id}/clients", status_code=201)
def create_clinic_client(clinic_id: str, client: ClientCreate):
    _require_clinic(clinic_id)
    created = create_client(clinic_id, client.firstName, client.lastName, client.email, client.phone, client.notes)
    logger.info("Registered client %s for clinic %s", created.clientId, clinic_id)
    return client_to_dict(created)


@app.get("/clients/{client_id}")
def get_client_profile(client_id: str):
    """Client with active pets and their recent discharges"""
    detail = get_client_detail(client_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return detail


@app.post("/clients/{client_id}/pets", status_code=201)
def add_client_pet(client_id: str, pet: PetCreate):
    owner = get_client(client_id)
    if owner is None:
        raise HTTPException(status_code=404, detail="Client not found")
    created = register_pet(
        owner,
        pet.name,
        pet.species,
        breed=pet.breed,
        weight=pet.weight,
        microchip_number=pet.microchipNumber,
        notes=pet.notes,
    )
    return pet_to_dict(created)


@app.patch("/pets/{pet_id}")
def edit_pet(pet_id: str, changes: PetUpdate):
    updated = update_pet(pet_id, changes.model_dump(exclude_none=True))
    if updated is None:
        raise HTTPException(status_code=404, detail="Pet not found")
    return pet_to_dict(updated)


@app.get("/medication-templates")
def get_medication_templates():
    """Common medications with default owner instructions"""
    return [{"name": t.name, "defaultInstructions": t.defaultInstructions} for t in MEDICATION_TEMPLATES]


@app.post("/discharges/{discharge_id}/adherence", status_code=201)
def log_dose_event(discharge_id: str, dose: DoseEventCreate):
    """Record a dose event (and optional symptoms) logged by the pet owner"""
    _require_episode(discharge_id)
    logged_at = now_utc()
    symptoms = None
    if dose.symptoms is not None:
        symptoms = SymptomEntryLog(
            appetite=dose.symptoms.appetite,
            energyLevel=dose.symptoms.energyLevel,
            isPanting=dose.symptoms.isPanting,
            notes=dose.symptoms.notes,
            recordedAt=as_utc(dose.symptoms.recordedAt) or logged_at,
        )
    event = record_dose_event(DoseEvent(
        doseId=f"dose_{uuid.uuid4().hex[:12]}",
        episodeId=discharge_id,
        medicationName=dose.medicationName,
        scheduledTime=as_utc(dose.scheduledTime),
        status=dose.status,
        loggedAt=logged_at,
        givenAt=as_utc(dose.givenAt) if dose.status == "given" else None,
        symptoms=symptoms,
    ))
    return dose_event_to_dict(event)


@app.get("/discharges/{discharge_id}/adherence")
def get_discharge_adherence(discharge_id: str, days: int = Query(default=30, ge=1, le=365)):
    """Adherence metrics for one discharge over the trailing window"""
    _require_episode(discharge_id)
    return calculate_adherence_metrics([discharge_id], days)


@app.get("/discharges/{discharge_id}/symptoms")
def get_discharge_symptoms(discharge_id: str, days: int = Query(default=30, ge=1, le=365)):
    """Symptom flags and trends for one discharge"""
    _require_episode(discharge_id)
    return analysis_to_dict(analyze_symptoms([discharge_id], days))


@app.get("/demo/status")
def demo_status():
    """Returns whether demo mode is enabled. Only for frontend visibility gate."""
    return {"demoMode": settings.is_demo_mode()}


@app.post("/demo/reset")
def demo_reset():
    """
    Reset prototype to baseline. Only available when DEMO_MODE=true.
    Restores seed clinics, discharges and adherence records.
    """
    if not settings.is_demo_mode():
        raise HTTPException(status_code=404, detail="Demo reset not available")
    seed_data()
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
