"""
Unit tests for country rollout policy.
"""

import pytest

from service_access.app.rollout.policy import (
    DEFAULT_COMING_SOON_MESSAGE,
    CountryRolloutPolicy,
    coming_soon_message,
    effective_features,
    is_business_type_enabled,
    is_country_active,
    is_feature_enabled,
    is_module_enabled_in_country,
)


@pytest.fixture
def policies():
    return {
        "IN": CountryRolloutPolicy(
            country_code="IN",
            is_active=True,
            enabled_business_types=frozenset({"salon", "clinic"}),
            enabled_modules=frozenset({"salon", "clinic", "hrms"}),
            enabled_features={"multi_currency": True, "ai_insights": False},
        ),
        "GB": CountryRolloutPolicy(
            country_code="GB",
            is_active=False,
            enabled_business_types=frozenset({"salon"}),
            enabled_modules=frozenset({"salon"}),
            enabled_features={"multi_currency": True},
            coming_soon_message="Launching in the UK this spring",
        ),
    }


class TestRolloutPolicy:

    def test_active_country(self, policies):
        assert is_country_active(policies, "IN")
        assert is_country_active(policies, "india")

    def test_inactive_country_disables_everything(self, policies):
        assert not is_country_active(policies, "GB")
        assert not is_business_type_enabled(policies, "GB", "salon")
        assert not is_module_enabled_in_country(policies, "UK", "salon")
        assert not is_feature_enabled(policies, "GB", "multi_currency")

    def test_absent_country_is_disabled(self, policies):
        assert not is_country_active(policies, "FR")
        assert not is_module_enabled_in_country(policies, "FR", "salon")
        assert not is_country_active(policies, None)

    def test_closed_world_keys(self, policies):
        assert is_business_type_enabled(policies, "IN", "clinic")
        assert not is_business_type_enabled(policies, "IN", "gym")
        assert is_module_enabled_in_country(policies, "IN", "hrms")
        assert not is_module_enabled_in_country(policies, "IN", "legal")
        assert is_feature_enabled(policies, "IN", "multi_currency")
        assert not is_feature_enabled(policies, "IN", "ai_insights")
        assert not is_feature_enabled(policies, "IN", "white_label")

    def test_coming_soon_message(self, policies):
        assert coming_soon_message(policies, "uk") == "Launching in the UK this spring"
        assert coming_soon_message(policies, "FR") == DEFAULT_COMING_SOON_MESSAGE
        assert coming_soon_message(policies, "IN", default="Soon") == "Soon"

    def test_effective_features_masks_tier_flags(self, policies):
        tier_flags = {"multi_currency": True, "ai_insights": True, "white_label": False}
        assert effective_features(policies, "IN", tier_flags) == {
            "multi_currency": True,
            "ai_insights": False,
            "white_label": False,
        }
        assert effective_features(policies, "GB", tier_flags) == {
            "multi_currency": False,
            "ai_insights": False,
            "white_label": False,
        }

    def test_dict_round_trip(self, policies):
        policy = policies["GB"]
        assert CountryRolloutPolicy.from_dict(policy.to_dict()) == policy

    def test_from_dict_normalizes_country(self):
        policy = CountryRolloutPolicy.from_dict({"country_code": "uk", "is_active": True})
        assert policy.country_code == "GB"
        assert policy.enabled_modules == frozenset()
