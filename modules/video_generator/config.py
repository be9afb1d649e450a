"""
Video Generator configuration.

Static provider table loaded once at process start. Each entry describes one
generation backend's limits, pricing and wire-format parameter names.
PROVIDER_PROFILES_PATH may point at a JSON list that replaces the table.
"""
import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from shared.config import settings
from shared.errors import ConfigError
from shared.logging import get_logger
from shared.models.generation import ProviderProfile

logger = get_logger("video_generator.config")

# Provider table, cheapest first within each tier
PROVIDER_CONFIGS: List[Dict[str, Any]] = [
    {
        "id": "wan-2.2-fast",
        "tier": "budget",
        "backend": "replicate",
        "model": "wan-video/wan-2.2-i2v-fast",
        "max_duration_seconds": 5,
        "supported_durations": [],
        "supported_resolutions": ["480p", "720p"],
        "max_concurrent_jobs": 8,
        "cost_per_second": Decimal("0.017"),
        "capability_flags": {},
        "parameter_names": {
            "prompt": "prompt",
            "image": "image",
            "resolution": "resolution",
        },
    },
    {
        "id": "wan-2.2",
        "tier": "budget",
        "backend": "replicate",
        "model": "wan-video/wan-2.2-i2v-a14b",
        "max_duration_seconds": 5,
        "supported_durations": [],
        "supported_resolutions": ["480p", "720p"],
        "max_concurrent_jobs": 5,
        "cost_per_second": Decimal("0.020"),
        "capability_flags": {},
        "parameter_names": {
            "prompt": "prompt",
            "image": "image",
            "resolution": "resolution",
        },
    },
    {
        "id": "hailuo-2.3-fast",
        "tier": "standard",
        "backend": "replicate",
        "model": "minimax/hailuo-2.3-fast",
        "max_duration_seconds": 10,
        "supported_durations": [6, 10],
        "supported_resolutions": ["768p", "1080p"],
        "max_concurrent_jobs": 3,
        "cost_per_second": Decimal("0.05"),
        "capability_flags": {},
        "parameter_names": {
            "prompt": "prompt",
            "image": "first_frame_image",
            "duration": "duration",
            "resolution": "resolution",
        },
    },
    {
        "id": "runway-gen4-turbo",
        "tier": "standard",
        "backend": "runway",
        "model": "gen4_turbo",
        "max_duration_seconds": 10,
        "supported_durations": [5, 10],
        "supported_resolutions": ["720p"],
        "max_concurrent_jobs": 2,
        "cost_per_second": Decimal("0.05"),
        "capability_flags": {},
        "parameter_names": {},
    },
    {
        "id": "kling-2.5-turbo",
        "tier": "premium",
        "backend": "kling",
        "model": "kling-v2-5-turbo",
        "max_duration_seconds": 10,
        "supported_durations": [5, 10],
        "supported_resolutions": ["1080p"],
        "max_concurrent_jobs": 3,
        "cost_per_second": Decimal("0.08"),
        "capability_flags": {"motion_brush": True},
        "parameter_names": {},
    },
    {
        "id": "kling-2.6",
        "tier": "premium",
        "backend": "kling",
        "model": "kling-v2-6",
        "max_duration_seconds": 10,
        "supported_durations": [5, 10],
        "supported_resolutions": ["1080p", "2160p"],
        "max_concurrent_jobs": 3,
        "cost_per_second": Decimal("0.10"),
        "capability_flags": {"audio": True, "lip_sync": True},
        "parameter_names": {},
    },
    {
        "id": "veo-3.1-fast",
        "tier": "premium",
        "backend": "replicate",
        "model": "google/veo-3.1-fast",
        "max_duration_seconds": 8,
        "supported_durations": [4, 6, 8],
        "supported_resolutions": ["720p", "1080p"],
        "max_concurrent_jobs": 3,
        "cost_per_second": Decimal("0.15"),
        "capability_flags": {"audio": True, "interpolation": True},
        "parameter_names": {
            "prompt": "prompt",
            "image": "image",
            "duration": "duration",
            "resolution": "resolution",
            "negative_prompt": "negative_prompt",
        },
    },
]


def build_profiles(raw_profiles: List[Dict[str, Any]]) -> List[ProviderProfile]:
    """
    Validate raw provider entries.

    Raises:
        ConfigError: On any invalid entry or duplicate id
    """
    profiles = []
    seen = set()
    for raw in raw_profiles:
        try:
            profile = ProviderProfile(**raw)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid provider profile {raw.get('id', '?')}: {e}") from e
        if profile.id in seen:
            raise ConfigError(f"Duplicate provider profile id: {profile.id}")
        seen.add(profile.id)
        profiles.append(profile)
    return profiles


def load_provider_profiles(path: Optional[str] = None) -> List[ProviderProfile]:
    """
    Load provider profiles from PROVIDER_PROFILES_PATH or the static table.

    Args:
        path: Optional JSON file overriding the settings value

    Returns:
        Validated profiles in declared order
    """
    path = path or settings.provider_profiles_path
    if not path:
        return build_profiles(PROVIDER_CONFIGS)

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read provider profiles from {path}: {e}") from e
    if not isinstance(raw, list):
        raise ConfigError(f"Provider profiles file must contain a JSON list: {path}")

    profiles = build_profiles(raw)
    logger.info(
        f"Loaded {len(profiles)} provider profiles from {path}",
        extra={"provider_ids": ",".join(p.id for p in profiles)}
    )
    return profiles


def get_profile(profiles: List[ProviderProfile], provider_id: str) -> ProviderProfile:
    """Look up one profile by id."""
    for profile in profiles:
        if profile.id == provider_id:
            return profile
    raise ConfigError(f"Unknown provider: {provider_id}")


def poll_budget_seconds(profile: ProviderProfile) -> float:
    """Wall-clock budget for one provider poll loop."""
    return (
        profile.max_duration_seconds * settings.poll_seconds_per_output_second
        + settings.poll_timeout_margin_seconds
    )
