"""
Prompt quality scoring.

Advisory 0-100 estimate of how well a prompt suits a provider. The score is
surfaced to callers and logged; it never blocks submission.
"""
import re
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from shared.models.generation import ProviderProfile

from .config import PromptConventions, get_conventions
from .optimizer import ProviderPrompt

WEIGHTS = {
    "specificity": 0.30,
    "length": 0.20,
    "motion": 0.30,
    "consistency": 0.20,
}

QUALITY_KEYWORDS = (
    "cinematic", "detailed", "realistic", "photorealistic", "sharp", "crisp",
    "fluid", "natural movement", "dramatic lighting", "soft lighting", "backlit",
    "rim light", "golden hour", "composition", "framing", "depth of field",
    "bokeh", "foreground", "background", "close-up", "wide shot", "silhouette",
)

WEAK_WORDS = (
    "good", "nice", "beautiful", "cool", "awesome", "amazing",
    "some", "thing", "stuff", "something", "video", "generate",
)

MOTION_KEYWORDS = (
    "moving", "moves", "walking", "walks", "running", "runs", "turns", "turning",
    "talking", "breathing", "blinking", "gesture", "rises", "falls", "drifts",
    "flows", "sways", "flickers", "reaches", "movement", "motion",
)

CAMERA_KEYWORDS = (
    "pan", "tilt", "zoom", "dolly", "tracking", "orbit", "crane", "push in",
    "pull back", "pull out", "handheld", "camera",
)

SPEED_KEYWORDS = ("slowly", "slow", "quickly", "fast", "gradually", "gentle", "rapid", "sudden")

# Pairs that should not appear in the same prompt
CONTRADICTIONS = (
    (("static camera", "locked camera", "static shot", "locked frame"), ("pan", "zoom", "dolly", "tracking", "orbit")),
    (("slow motion", "slowly"), ("fast", "rapid", "quickly")),
    (("daytime", "midday", "sunlight"), ("night", "midnight", "moonlight")),
    (("close-up",), ("wide shot", "establishing shot")),
    (("sunrise",), ("sunset",)),
)


class QualityScore(BaseModel):
    """Weighted prompt score with its components."""

    overall: int = Field(ge=0, le=100)
    specificity: int
    length: int
    motion: int
    consistency: int
    grade: str
    warnings: List[str] = Field(default_factory=list)


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


def _contains(text: str, term: str) -> bool:
    return re.search(rf"\b{re.escape(term)}\b", text) is not None


def _count(text: str, terms) -> int:
    return sum(1 for term in terms if _contains(text, term))


def _specificity(text: str, conventions: PromptConventions) -> int:
    unique_words = set(re.findall(r"[a-z']+", text))
    richness = min(20, max(0, len(unique_words) - 8))
    return _clamp(
        40
        + 5 * _count(text, QUALITY_KEYWORDS)
        + 8 * _count(text, [t.lower() for t in conventions.boost_terms])
        - 8 * _count(text, WEAK_WORDS)
        + richness
    )


def _length(length: int, max_length: int) -> int:
    ratio = length / max_length
    if ratio == 0:
        return 0
    if ratio < 0.3:
        return _clamp(ratio / 0.3 * 100)
    if ratio <= 0.9:
        return 100
    if ratio <= 1.0:
        return _clamp(100 - (ratio - 0.9) * 500)
    return 0


def _motion(text: str) -> int:
    score = 40 + 10 * min(3, _count(text, MOTION_KEYWORDS))
    if any(_contains(text, term) for term in CAMERA_KEYWORDS):
        score += 15
    if any(_contains(text, term) for term in SPEED_KEYWORDS):
        score += 10
    return _clamp(score)


def _consistency(text: str, conventions: PromptConventions, warnings: List[str]) -> int:
    score = 100
    for left, right in CONTRADICTIONS:
        hit_left = next((t for t in left if _contains(text, t)), None)
        hit_right = next((t for t in right if _contains(text, t)), None)
        if hit_left and hit_right:
            warnings.append(f"contradiction:{hit_left}/{hit_right}")
            score -= 40
    for term in conventions.avoid_terms:
        if _contains(text, term.lower()):
            warnings.append(f"avoided_term:{term}")
            score -= 25
    return _clamp(score)


def grade_for(overall: int) -> str:
    if overall >= 85:
        return "A"
    if overall >= 70:
        return "B"
    if overall >= 55:
        return "C"
    if overall >= 40:
        return "D"
    return "F"


def score(
    prompt: Union[ProviderPrompt, str],
    profile: ProviderProfile,
    conventions: Optional[PromptConventions] = None,
) -> QualityScore:
    """
    Score a prompt for ``profile``.

    Args:
        prompt: Optimized prompt or raw text
        profile: Target provider
        conventions: Override for the provider's prompt conventions

    Returns:
        QualityScore with overall in [0, 100]
    """
    conventions = conventions or get_conventions(profile)
    raw = prompt.text if isinstance(prompt, ProviderPrompt) else prompt
    text = raw.lower()
    warnings: List[str] = []

    components = {
        "specificity": _specificity(text, conventions),
        "length": _length(len(raw), conventions.max_length),
        "motion": _motion(text),
        "consistency": _consistency(text, conventions, warnings),
    }
    if len(raw) > conventions.max_length:
        warnings.append(f"too_long:{len(raw)}>{conventions.max_length}")
    if components["motion"] <= 40:
        warnings.append("no_motion_cues")
    if isinstance(prompt, ProviderPrompt) and prompt.truncated:
        warnings.append(f"truncated:{len(prompt.dropped_clauses)} clauses dropped")

    overall = _clamp(sum(WEIGHTS[name] * value for name, value in components.items()))
    return QualityScore(overall=overall, grade=grade_for(overall), warnings=warnings, **components)
