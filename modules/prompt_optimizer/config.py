"""
Prompt conventions per provider.

Maximum prompt length, preferred style, camera-motion phrasing and the
negative prompt library for each generation backend.
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from shared.models.generation import ProviderProfile

PromptStyle = Literal["concise", "descriptive", "cinematic"]

# Canonical camera moves recognised in shot descriptions
CAMERA_MOVES = (
    "pan left", "pan right", "tilt up", "tilt down", "zoom in", "zoom out",
    "dolly in", "dolly out", "tracking", "orbit", "crane up", "crane down", "static",
)

BASE_NEGATIVES = ["blurry", "low quality", "distorted", "watermark", "text"]


class PromptConventions(BaseModel):
    """How one provider wants its prompts written."""

    max_length: int = Field(default=800, gt=0)
    style: PromptStyle = "descriptive"
    # Canonical move -> provider phrasing
    camera_vocabulary: Dict[str, str] = Field(default_factory=dict)
    # Where the camera phrase goes; {camera} is replaced
    camera_syntax: str = "{camera}"
    supports_negative_prompt: bool = True
    max_negative_length: int = 300
    negative_library: List[str] = Field(default_factory=lambda: list(BASE_NEGATIVES))
    avoid_terms: List[str] = Field(default_factory=list)
    boost_terms: List[str] = Field(default_factory=list)
    prefix: str = ""
    suffix: str = ""


_WAN = PromptConventions(
    max_length=400,
    style="concise",
    camera_vocabulary={
        "pan left": "camera pans left",
        "pan right": "camera pans right",
        "zoom in": "slow zoom in",
        "zoom out": "slow zoom out",
        "static": "static camera",
    },
    supports_negative_prompt=False,
    avoid_terms=["masterpiece", "8k", "ultra realistic"],
    boost_terms=["smooth motion", "consistent"],
)

PROMPT_CONVENTIONS: Dict[str, PromptConventions] = {
    "wan-2.2-fast": _WAN,
    "wan-2.2": _WAN,
    "hailuo-2.3-fast": PromptConventions(
        max_length=600,
        style="descriptive",
        camera_vocabulary={
            "pan left": "Pan left",
            "pan right": "Pan right",
            "tilt up": "Tilt up",
            "tilt down": "Tilt down",
            "zoom in": "Zoom in",
            "zoom out": "Zoom out",
            "dolly in": "Push in",
            "dolly out": "Pull out",
            "tracking": "Tracking shot",
            "static": "Static shot",
        },
        camera_syntax="[{camera}]",
        supports_negative_prompt=False,
        boost_terms=["realistic motion", "natural movement"],
    ),
    "runway-gen4-turbo": PromptConventions(
        max_length=1000,
        style="cinematic",
        camera_syntax="The camera {camera}.",
        camera_vocabulary={
            "pan left": "pans left",
            "pan right": "pans right",
            "zoom in": "slowly pushes in",
            "zoom out": "slowly pulls back",
            "tracking": "tracks the subject",
            "static": "remains locked off",
        },
        supports_negative_prompt=False,
        boost_terms=["cinematic lighting"],
    ),
    "kling-2.5-turbo": PromptConventions(
        max_length=600,
        style="cinematic",
        camera_vocabulary={
            "pan left": "smooth pan left",
            "pan right": "smooth pan right",
            "zoom in": "slow zoom in",
            "zoom out": "slow zoom out",
            "dolly in": "dolly forward",
            "static": "locked camera, static shot",
        },
        camera_syntax="Camera movement: {camera}.",
        negative_library=BASE_NEGATIVES + ["deformed hands", "extra limbs", "morphing"],
        boost_terms=["dramatic lighting", "depth of field"],
    ),
    "kling-2.6": PromptConventions(
        max_length=800,
        style="cinematic",
        camera_vocabulary={
            "pan left": "smooth pan left",
            "pan right": "smooth pan right",
            "zoom in": "slow zoom in",
            "zoom out": "slow zoom out",
            "dolly in": "dolly forward",
            "static": "locked camera, static shot",
        },
        camera_syntax="Camera movement: {camera}.",
        negative_library=BASE_NEGATIVES + ["deformed hands", "extra limbs", "morphing"],
        boost_terms=["dramatic lighting", "depth of field", "lip sync"],
    ),
    "veo-3.1-fast": PromptConventions(
        max_length=1000,
        style="cinematic",
        camera_vocabulary={
            "pan left": "camera pans slowly to the left",
            "pan right": "camera pans slowly to the right",
            "zoom in": "camera slowly zooms in",
            "zoom out": "camera slowly zooms out",
            "dolly in": "camera dollies forward",
            "static": "static camera, locked frame",
        },
        negative_library=BASE_NEGATIVES + ["cartoon", "subtitles"],
        boost_terms=["cinematic lighting", "shallow depth of field"],
    ),
}

# Fallback per backend for profiles added through PROVIDER_PROFILES_PATH
BACKEND_DEFAULTS: Dict[str, PromptConventions] = {
    "replicate": PromptConventions(),
    "kling": PROMPT_CONVENTIONS["kling-2.6"],
    "runway": PROMPT_CONVENTIONS["runway-gen4-turbo"],
}


def get_conventions(profile: ProviderProfile, overrides: Optional[Dict[str, PromptConventions]] = None) -> PromptConventions:
    """Conventions for a provider: by id, then by backend, then defaults."""
    table = overrides or PROMPT_CONVENTIONS
    if profile.id in table:
        return table[profile.id]
    return BACKEND_DEFAULTS.get(profile.backend, PromptConventions())
