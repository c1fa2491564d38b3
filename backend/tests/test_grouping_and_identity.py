"""
Test patient identity derivation and grouping of discharges by patient
"""
import pytest
from models import (
    derive_patient_id,
    generate_pet_id,
    is_valid_pet_id,
    patient_slug,
)
from logic import group_by_patient
from conftest import at, make_episode


class TestPatientSlug:
    """Legacy name/species key"""

    def test_lowercases_and_hyphenates(self):
        assert patient_slug("Bella", "Dog") == "bella-dog"

    def test_whitespace_runs_collapse_to_single_hyphen(self):
        assert patient_slug("  Mister   Whiskers ", "Domestic\tShorthair") == "mister-whiskers-domestic-shorthair"

    def test_missing_name_and_species_degrades_to_empty_key(self):
        """Data-quality signal: malformed records all share the empty key"""
        assert patient_slug("", "") == ""
        assert patient_slug(None, None) == ""

    def test_missing_species_keeps_name_only(self):
        assert patient_slug("Bella", "") == "bella"


class TestDerivePatientId:

    def test_explicit_pet_id_wins(self):
        pet_id = generate_pet_id()
        ep = make_episode("e1", name="Bella", species="Dog", pet_id=pet_id)
        assert derive_patient_id(ep) == pet_id

    def test_falls_back_to_slug(self):
        ep = make_episode("e1", name="Max Power", species="Cat")
        assert derive_patient_id(ep) == "max-power-cat"

    def test_same_pet_id_groups_even_when_name_changes(self):
        pet_id = generate_pet_id()
        a = make_episode("e1", name="Bella", pet_id=pet_id)
        b = make_episode("e2", name="Bella Rose", pet_id=pet_id, created_at=at(5))
        groups = group_by_patient([a, b])
        assert len(groups) == 1


class TestPetIdFormat:

    def test_generated_ids_are_valid(self):
        for _ in range(5):
            assert is_valid_pet_id(generate_pet_id())

    def test_rejects_other_formats(self):
        assert not is_valid_pet_id("bella-dog")
        assert not is_valid_pet_id("pet_1234")
        assert not is_valid_pet_id("med_0b6f7c1e-2a4d-4c8e-9f10-3d5a7b9c1e2f")
        assert not is_valid_pet_id(None)


class TestGroupByPatient:

    def test_empty_input_yields_no_groups(self):
        assert group_by_patient([]) == []

    def test_one_group_per_distinct_patient_id(self):
        eps = [
            make_episode("e1", "Bella", "Dog", at(0)),
            make_episode("e2", "Max", "Cat", at(1)),
            make_episode("e3", "bella", "dog", at(2)),
            make_episode("e4", "Bella", "Cat", at(3)),
        ]
        groups = group_by_patient(eps)
        distinct = {derive_patient_id(e) for e in eps}
        assert len(groups) == len(distinct) == 3

    def test_every_episode_in_exactly_one_group(self):
        eps = [make_episode(f"e{i}", ["Bella", "Max", "Luna"][i % 3], "Dog", at(i)) for i in range(10)]
        groups = group_by_patient(eps)
        seen = [ep.episodeId for g in groups for ep in g.allEpisodes]
        assert sorted(seen) == sorted(e.episodeId for e in eps)
        for g in groups:
            assert all(derive_patient_id(ep) == g.patientId for ep in g.allEpisodes)

    def test_latest_episode_is_max_created_at_regardless_of_order(self):
        eps = [
            make_episode("mid", created_at=at(10)),
            make_episode("newest", created_at=at(30)),
            make_episode("oldest", created_at=at(0)),
        ]
        (group,) = group_by_patient(eps)
        assert group.latestEpisode.episodeId == "newest"
        assert group.latestEpisode in group.allEpisodes
        assert group.latestEpisode.createdAt == max(e.createdAt for e in group.allEpisodes)

    def test_timestamp_tie_keeps_first_encountered(self):
        first = make_episode("first", created_at=at(5))
        second = make_episode("second", created_at=at(5))
        (group,) = group_by_patient([first, second])
        assert group.latestEpisode.episodeId == "first"

        (group,) = group_by_patient([second, first])
        assert group.latestEpisode.episodeId == "second"

    def test_malformed_episodes_share_empty_key_group(self):
        """Missing name/species is not an error but collapses unrelated pets together"""
        eps = [
            make_episode("e1", name="", species="", created_at=at(0)),
            make_episode("e2", name="", species="", created_at=at(1)),
            make_episode("e3", name="Bella", species="Dog", created_at=at(2)),
        ]
        groups = {g.patientId: g for g in group_by_patient(eps)}
        assert "" in groups
        assert len(groups[""].allEpisodes) == 2
