"""
Provider-tuned prompt rewriting.

Turns a generic shot description into the prompt one provider expects.
When the provider's length limit would be exceeded, clauses are kept by
priority: subject, then camera, then mood/style, then negative constraints.
Pure and deterministic.
"""
import re
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from shared.models.generation import GenerationRequest, ProviderProfile

from .config import CAMERA_MOVES, PromptConventions, get_conventions

_CLAUSE_SPLIT = re.compile(r"(?<=[.!?;])\s+|\n+")
_FILLERS = re.compile(
    r"\b(?:very|really|quite|rather|somewhat|kind of|sort of|that is|which is|there is|there are)\s+",
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r"\s+")

# Priority groups, highest first
SUBJECT, CAMERA, MOOD, NEGATIVE = "subject", "camera", "mood", "negative"


class ShotDescription(BaseModel):
    """Provider-neutral description of one shot."""

    subject: str
    camera: str = ""
    mood: str = ""
    negative: str = ""

    @classmethod
    def from_request(cls, request: GenerationRequest) -> "ShotDescription":
        return cls(
            subject=request.motion_description,
            camera=request.camera_instruction,
            mood=request.mood,
            negative=request.negative_prompt,
        )


class ProviderPrompt(BaseModel):
    """Prompt ready to send to one provider."""

    provider_id: str
    text: str
    negative_prompt: Optional[str] = None
    truncated: bool = False
    dropped_clauses: List[str] = Field(default_factory=list)
    transformations: List[str] = Field(default_factory=list)

    @property
    def length(self) -> int:
        return len(self.text)


def _clean(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def split_clauses(text: str) -> List[str]:
    """Split on sentence terminators and semicolons, dropping trailing punctuation."""
    clauses = []
    for part in _CLAUSE_SPLIT.split(text or ""):
        part = _clean(part).rstrip(".!?;, ")
        if part:
            clauses.append(part)
    return clauses


def remove_terms(text: str, terms: List[str]) -> str:
    for term in terms:
        text = re.sub(rf"\b{re.escape(term)}\b", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\s+([,.;])", r"\1", text)
    text = re.sub(r",\s*,", ",", text)
    return _clean(text).strip(", ")


def apply_style(text: str, conventions: PromptConventions) -> str:
    if conventions.style == "concise":
        text = _FILLERS.sub("", text)
    return _clean(text)


def phrase_camera(camera: str, conventions: PromptConventions) -> str:
    """Rewrite a camera instruction in the provider's vocabulary and syntax."""
    camera = _clean(camera).rstrip(".")
    if not camera:
        return ""
    lowered = camera.lower()
    for move in sorted(CAMERA_MOVES, key=len, reverse=True):
        if move in lowered and move in conventions.camera_vocabulary:
            camera = conventions.camera_vocabulary[move]
            break
    return conventions.camera_syntax.format(camera=camera)


def _negative_terms(description: ShotDescription, conventions: PromptConventions) -> List[str]:
    terms = []
    for term in re.split(r"[,;\n]", description.negative) + conventions.negative_library:
        term = _clean(term).lower()
        if term and term not in terms:
            terms.append(term)
    return terms


def _join(clauses: List[str], conventions: PromptConventions) -> str:
    if not clauses:
        return ""
    if conventions.style == "concise":
        return ", ".join(c.rstrip(".") for c in clauses)
    parts = []
    for clause in clauses:
        clause = clause if clause.endswith((".", "]")) else clause + "."
        parts.append(clause[0].upper() + clause[1:] if clause[0].islower() else clause)
    return " ".join(parts)


def _wrap(body: str, conventions: PromptConventions) -> str:
    return " ".join(p for p in (conventions.prefix.strip(), body, conventions.suffix.strip()) if p)


def _truncate_words(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0] if " " in text[:limit] else text[:limit]
    return cut.rstrip(",;. ")


def _assemble(
    groups: List[Tuple[str, List[str]]],
    conventions: PromptConventions,
) -> Tuple[str, List[str], bool]:
    """Greedily keep clauses in priority order while the prompt fits."""
    kept: List[str] = []
    dropped: List[str] = []
    hard_truncated = False
    limit = conventions.max_length

    for group, clauses in groups:
        for clause in clauses:
            candidate = _wrap(_join(kept + [clause], conventions), conventions)
            if len(candidate) <= limit:
                kept.append(clause)
                continue
            if group == SUBJECT and not kept:
                # The lead subject clause alone is too long: cut it at a word boundary
                overhead = len(_wrap(_join(["x"], conventions), conventions)) - 1
                kept.append(_truncate_words(clause, max(1, limit - overhead)))
                hard_truncated = True
                continue
            dropped.append(clause)

    return _wrap(_join(kept, conventions), conventions), dropped, hard_truncated


def optimize(
    description: ShotDescription,
    profile: ProviderProfile,
    conventions: Optional[PromptConventions] = None,
) -> ProviderPrompt:
    """
    Rewrite ``description`` for ``profile``.

    Args:
        description: Generic shot description
        profile: Target provider
        conventions: Override for the provider's prompt conventions

    Returns:
        ProviderPrompt whose text never exceeds the provider's max length
    """
    conventions = conventions or get_conventions(profile)
    transformations = [f"style:{conventions.style}"]

    subject = apply_style(remove_terms(description.subject, conventions.avoid_terms), conventions)
    mood = apply_style(remove_terms(description.mood, conventions.avoid_terms), conventions)
    camera = phrase_camera(description.camera, conventions)
    if camera:
        transformations.append("camera")
    if conventions.avoid_terms:
        transformations.append("avoid_terms")

    negatives = _negative_terms(description, conventions)
    negative_prompt = None
    inline_negative: List[str] = []
    if conventions.supports_negative_prompt:
        negative_prompt = _truncate_words(", ".join(negatives), conventions.max_negative_length) or None
    elif negatives:
        inline_negative = ["Avoid " + ", ".join(negatives)]
        transformations.append("inline_negative")

    groups = [
        (SUBJECT, split_clauses(subject)),
        (CAMERA, [camera] if camera else []),
        (MOOD, split_clauses(mood)),
        (NEGATIVE, inline_negative),
    ]
    text, dropped, hard_truncated = _assemble(groups, conventions)
    truncated = bool(dropped) or hard_truncated
    if truncated:
        transformations.append(f"truncate:{conventions.max_length}")

    return ProviderPrompt(
        provider_id=profile.id,
        text=text,
        negative_prompt=negative_prompt,
        truncated=truncated,
        dropped_clauses=dropped,
        transformations=transformations,
    )
