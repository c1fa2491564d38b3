# Seed data - deterministic demo clinic with discharges and adherence history
import logging
from datetime import datetime, timedelta
from typing import Optional

from models import (
    Client,
    Clinic,
    DoseEvent,
    Medication,
    Pet,
    RegisteredPet,
    SymptomEntryLog,
    TreatmentEpisode,
    clients,
    clinics,
    dose_events,
    episodes,
    now_utc,
    pets,
)

logger = logging.getLogger(__name__)

DEMO_CLINIC_ID = "clinic_demo"
OTHER_CLINIC_ID = "clinic_north"
BELLA_PET_ID = "pet_0b6f7c1e-2a4d-4c8e-9f10-3d5a7b9c1e2f"
THOMPSON_CLIENT_ID = "client_thompson"
ALVAREZ_CLIENT_ID = "client_alvarez"


def _dose(
    episode_id: str,
    medication: str,
    scheduled: datetime,
    status: str = "given",
    delay: timedelta = timedelta(minutes=10),
    symptoms: Optional[SymptomEntryLog] = None,
) -> DoseEvent:
    given_at = scheduled + delay if status == "given" else None
    logged_at = given_at or scheduled + timedelta(hours=1)
    return DoseEvent(
        doseId=f"{episode_id}-{medication.lower().replace(' ', '-')}-{scheduled.date().isoformat()}-{scheduled.hour}",
        episodeId=episode_id,
        medicationName=medication,
        scheduledTime=scheduled,
        status=status,
        loggedAt=logged_at,
        givenAt=given_at,
        symptoms=symptoms,
    )


def seed_data():
    """Initialize clinics, discharges and adherence records relative to now"""
    clinics.clear()
    episodes.clear()
    dose_events.clear()
    clients.clear()
    pets.clear()

    base = now_utc().replace(minute=0, second=0, microsecond=0)

    clinics[DEMO_CLINIC_ID] = Clinic(clinicId=DEMO_CLINIC_ID, name="Riverside Animal Hospital")
    clinics[OTHER_CLINIC_ID] = Clinic(clinicId=OTHER_CLINIC_ID, name="Northside Veterinary Clinic")

    # Owners. Bella is a registered pet; the other demo patients predate the registry
    clients[THOMPSON_CLIENT_ID] = Client(
        clientId=THOMPSON_CLIENT_ID,
        clinicId=DEMO_CLINIC_ID,
        firstName="Sarah",
        lastName="Thompson",
        email="sarah.thompson@example.com",
        phone="(555) 201-4477",
        createdAt=base - timedelta(days=60),
        updatedAt=base - timedelta(days=60),
    )
    clients[ALVAREZ_CLIENT_ID] = Client(
        clientId=ALVAREZ_CLIENT_ID,
        clinicId=DEMO_CLINIC_ID,
        firstName="Diego",
        lastName="Alvarez",
        email="diego.alvarez@example.com",
        phone="(555) 309-1288",
        createdAt=base - timedelta(days=45),
        updatedAt=base - timedelta(days=45),
    )
    clients["client_okafor"] = Client(
        clientId="client_okafor",
        clinicId=OTHER_CLINIC_ID,
        firstName="Ada",
        lastName="Okafor",
        phone="(555) 777-0142",
        createdAt=base - timedelta(days=30),
        updatedAt=base - timedelta(days=30),
    )
    pets[BELLA_PET_ID] = RegisteredPet(
        petId=BELLA_PET_ID,
        clientId=THOMPSON_CLIENT_ID,
        clinicId=DEMO_CLINIC_ID,
        name="Bella",
        species="Dog",
        breed="Labrador Retriever",
        weight="23.5 kg",
        createdAt=base - timedelta(days=60),
        updatedAt=base - timedelta(days=3),
    )

    # Bella: stable pet id, two visits, fully adherent -> no alert
    bella_first = TreatmentEpisode(
        episodeId="dis_bella_1",
        clinicId=DEMO_CLINIC_ID,
        patient=Pet(name="Bella", species="Dog", weight="24 kg", petId=BELLA_PET_ID),
        medications=[
            Medication(name="Carprofen", dosage="75mg", frequency=2, instructions="Give with food"),
            Medication(name="Gabapentin", dosage="100mg", frequency=2, instructions="May cause drowsiness"),
        ],
        createdAt=base - timedelta(days=20),
        vetId="vet_1",
        diagnosis="Cruciate ligament repair",
    )
    bella_latest = TreatmentEpisode(
        episodeId="dis_bella_2",
        clinicId=DEMO_CLINIC_ID,
        patient=Pet(name="Bella", species="Dog", weight="23.5 kg", petId=BELLA_PET_ID),
        medications=[
            Medication(name="Carprofen", dosage="50mg", frequency=1, instructions="Give with food"),
        ],
        createdAt=base - timedelta(days=3),
        vetId="vet_1",
        diagnosis="Post-op recheck",
    )

    # Max: legacy record (no pet id), half the doses missed -> medium
    max_episode = TreatmentEpisode(
        episodeId="dis_max_1",
        clinicId=DEMO_CLINIC_ID,
        patient=Pet(name="Max", species="Cat", weight="5 kg"),
        medications=[
            Medication(name="Amoxicillin", dosage="62.5mg", frequency=2, instructions="Finish the full course"),
        ],
        createdAt=base - timedelta(days=10),
        vetId="vet_2",
        diagnosis="Upper respiratory infection",
    )

    # Luna: adherent but low appetite and panting -> high
    luna_episode = TreatmentEpisode(
        episodeId="dis_luna_1",
        clinicId=DEMO_CLINIC_ID,
        patient=Pet(name="Luna", species="Dog", weight="18 kg"),
        medications=[
            Medication(name="Prednisone", dosage="10mg", frequency=1, instructions="Taper as directed", isTapered=True),
            Medication(name="Famotidine", dosage="10mg", frequency=1, instructions="Give before breakfast"),
        ],
        createdAt=base - timedelta(days=12),
        vetId="vet_1",
        diagnosis="Inflammatory bowel disease",
    )

    # Charlie: never synced the owner app -> zero adherence, inactive
    charlie_episode = TreatmentEpisode(
        episodeId="dis_charlie_1",
        clinicId=DEMO_CLINIC_ID,
        patient=Pet(name="Charlie", species="Rabbit", weight="2 kg"),
        medications=[
            Medication(name="Meloxicam", dosage="0.3mg", frequency=1, instructions="Oral suspension"),
        ],
        createdAt=base - timedelta(days=40),
        vetId="vet_2",
        diagnosis="Dental extraction",
    )

    # Another tenant, must never show up in the demo clinic's lists
    milo_episode = TreatmentEpisode(
        episodeId="dis_milo_1",
        clinicId=OTHER_CLINIC_ID,
        patient=Pet(name="Milo", species="Dog", weight="30 kg"),
        medications=[Medication(name="Cephalexin", dosage="500mg", frequency=2)],
        createdAt=base - timedelta(days=2),
        vetId="vet_9",
        diagnosis="Skin infection",
    )

    episodes.extend([bella_first, bella_latest, max_episode, luna_episode, charlie_episode, milo_episode])

    for day in range(1, 4):
        scheduled = base - timedelta(days=day)
        dose_events.setdefault(bella_latest.episodeId, []).append(
            _dose(bella_latest.episodeId, "Carprofen", scheduled)
        )

    for day in range(1, 10):
        morning = base - timedelta(days=day, hours=12)
        evening = base - timedelta(days=day)
        dose_events.setdefault(max_episode.episodeId, []).extend([
            _dose(max_episode.episodeId, "Amoxicillin", morning),
            _dose(max_episode.episodeId, "Amoxicillin", evening, status="missed"),
        ])

    # Newest day first: (appetite, energy, panting)
    luna_symptoms = [(2, 4, True), (2, 4, True), (1, 4, False), (4, 4, False), (4, 4, False), (4, 4, False)]
    for day, (appetite, energy, panting) in enumerate(luna_symptoms, start=1):
        scheduled = base - timedelta(days=day)
        dose_events.setdefault(luna_episode.episodeId, []).append(
            _dose(
                luna_episode.episodeId,
                "Prednisone",
                scheduled,
                symptoms=SymptomEntryLog(
                    appetite=appetite,
                    energyLevel=energy,
                    isPanting=panting,
                    recordedAt=scheduled + timedelta(minutes=15),
                ),
            )
        )

    logger.info(
        "Seed data initialized: %d clinics, %d clients, %d discharges, %d dose events",
        len(clinics),
        len(clients),
        len(episodes),
        sum(len(v) for v in dose_events.values()),
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    seed_data()
