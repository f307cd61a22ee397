import pytest
from pydantic import ValidationError

from itinerary_engine.schemas import CandidateActivity, PreferenceProfile, ScoringContext, coerce_profile


def test_profile_defaults_are_defined_once():
    profile = PreferenceProfile()
    assert profile.price_tier == 2
    assert profile.energy_level == 2
    assert profile.preferred_start_time == "mid"
    assert profile.transport_modes == ["walking", "taxi"]
    assert profile.crowd_preference == "mixed"
    assert profile.meal_importance.wanted() == []


def test_profile_accepts_camel_case_payloads():
    profile = PreferenceProfile.model_validate(
        {
            "interests": ["Arts", "arts", "Food"],
            "energyLevel": 3,
            "preferredStartTime": "early",
            "dietaryRestrictions": ["none", "Vegetarian"],
            "mealImportance": {"dinner": True},
            "cuisinePreferences": {"preferred": ["Thai"], "avoided": ["fast-food"]},
        }
    )
    assert profile.interests == ["arts", "food"]
    assert profile.energy_level == 3
    assert profile.dietary_restrictions == ["vegetarian"]
    assert profile.meal_importance.wanted() == ["dinner"]
    assert profile.cuisine_preferences.avoided == ["fast_food"]


def test_meal_importance_rejects_unknown_meals():
    with pytest.raises(ValidationError):
        PreferenceProfile.model_validate({"meal_importance": {"brunch": True}})


def test_preferred_and_avoided_cuisines_must_be_disjoint():
    with pytest.raises(ValidationError):
        PreferenceProfile.model_validate({"cuisine_preferences": {"preferred": ["thai"], "avoided": ["Thai"]}})


def test_coerce_profile_replaces_malformed_fields_with_defaults():
    profile = coerce_profile({"energy_level": 9, "price_tier": 4, "crowd_preference": "nobody"})
    assert profile.energy_level == 2
    assert profile.price_tier == 4
    assert profile.crowd_preference == "mixed"
    assert coerce_profile("not a profile") == PreferenceProfile()


def test_candidate_is_frozen_and_normalises_tags():
    candidate = CandidateActivity(id="a", name="Louvre", category="Art Gallery", tags=["Must-See", "indoor"])
    assert candidate.category == "art_gallery"
    assert candidate.is_must_see
    with pytest.raises(ValidationError):
        candidate.name = "Other"


def test_scoring_context_drops_unknown_budget():
    assert ScoringContext(budget="cheap").budget is None
    assert ScoringContext(budget="Luxury").budget == "luxury"
