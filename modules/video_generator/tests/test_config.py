"""
Unit tests for video_generator.config and the provider registry.
"""
import json
from decimal import Decimal

import pytest
from unittest.mock import patch

from shared.errors import ConfigError
from modules.video_generator.config import (
    PROVIDER_CONFIGS,
    build_profiles,
    get_profile,
    load_provider_profiles,
    poll_budget_seconds,
)
from modules.video_generator.providers import KlingProvider, ReplicateProvider
from modules.video_generator.registry import ProviderRegistry


class TestLoadProviderProfiles:
    """Tests for the static table and the override file."""

    def test_static_table_is_valid(self):
        profiles = load_provider_profiles()

        assert [p.id for p in profiles] == [c["id"] for c in PROVIDER_CONFIGS]
        assert all(p.max_concurrent_jobs >= 1 for p in profiles)
        assert all(p.cost_per_second >= 0 for p in profiles)

    def test_override_file_replaces_table(self, tmp_path):
        path = tmp_path / "profiles.json"
        path.write_text(json.dumps([{
            "id": "local-svd",
            "tier": "budget",
            "model": "stability-ai/svd",
            "max_duration_seconds": 4,
            "supported_resolutions": ["576p"],
            "max_concurrent_jobs": 1,
            "cost_per_second": "0.01",
        }]))

        profiles = load_provider_profiles(str(path))

        assert len(profiles) == 1
        assert profiles[0].cost_per_second == Decimal("0.01")

    def test_override_file_must_be_a_list(self, tmp_path):
        path = tmp_path / "profiles.json"
        path.write_text(json.dumps({"id": "x"}))

        with pytest.raises(ConfigError, match="JSON list"):
            load_provider_profiles(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            load_provider_profiles(str(tmp_path / "missing.json"))

    def test_invalid_entry(self):
        raw = dict(PROVIDER_CONFIGS[0], max_concurrent_jobs=0)
        with pytest.raises(ConfigError, match="Invalid provider profile"):
            build_profiles([raw])

    def test_duplicate_ids(self):
        with pytest.raises(ConfigError, match="Duplicate"):
            build_profiles([PROVIDER_CONFIGS[0], PROVIDER_CONFIGS[0]])


def test_get_profile_unknown():
    with pytest.raises(ConfigError):
        get_profile(load_provider_profiles(), "nope")


def test_poll_budget_scales_with_max_duration():
    profiles = {p.id: p for p in load_provider_profiles()}
    with patch("modules.video_generator.config.settings") as mock_settings:
        mock_settings.poll_seconds_per_output_second = 30.0
        mock_settings.poll_timeout_margin_seconds = 120.0
        assert poll_budget_seconds(profiles["wan-2.2"]) == 5 * 30 + 120
        assert poll_budget_seconds(profiles["kling-2.6"]) == 10 * 30 + 120


class TestProviderRegistry:
    def test_builds_adapter_lazily_by_backend(self):
        profiles = load_provider_profiles()
        registry = ProviderRegistry(profiles)
        with patch("modules.video_generator.providers.kling.settings") as mock_settings:
            mock_settings.kling_api_key = "kling-key"
            mock_settings.kling_base_url = "https://kling.test"
            mock_settings.provider_request_timeout = 10.0
            provider = registry.get("kling-2.6")

        assert isinstance(provider, KlingProvider)
        assert registry.get("kling-2.6") is provider

    def test_missing_credentials_fail_only_that_provider(self):
        registry = ProviderRegistry(load_provider_profiles())
        with patch("modules.video_generator.providers.replicate_provider.settings") as mock_settings:
            mock_settings.replicate_api_token = None
            with pytest.raises(ConfigError, match="REPLICATE_API_TOKEN"):
                registry.get("wan-2.2")

    def test_unknown_provider(self):
        registry = ProviderRegistry([])
        with pytest.raises(ConfigError, match="Unknown provider"):
            registry.get("ghost")
        assert "ghost" not in registry

    def test_register_ready_made_adapter(self, make_profile, fake_provider):
        registry = ProviderRegistry([])
        provider = fake_provider(make_profile("local"))

        registry.register(provider)

        assert "local" in registry
        assert registry.get("local") is provider
        assert registry.profiles == [provider.profile]

    def test_custom_factory(self, make_profile):
        built = []

        def factory(profile):
            built.append(profile.id)
            return ReplicateProvider(profile, client=object())

        registry = ProviderRegistry([make_profile("svd")], factories={"replicate": factory})
        registry.get("svd")

        assert built == ["svd"]
