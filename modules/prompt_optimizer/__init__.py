"""
Prompt optimizer module.

Rewrites shot descriptions into provider-tuned prompts and scores them.
"""

from .optimizer import ProviderPrompt, ShotDescription, optimize
from .scorer import QualityScore, score

__all__ = ["ProviderPrompt", "QualityScore", "ShotDescription", "optimize", "score"]
