"""
Composer module.

Timeline composition engine: renders a declarative Timeline (video clips with
transitions and effects plus mixed audio tracks) into one graded, encoded
video file with ffmpeg.
"""

from modules.composer.config import COLOR_GRADES, OUTPUT_PRESETS, get_output_preset
from modules.composer.process import CompositionEngine

__all__ = ["COLOR_GRADES", "CompositionEngine", "OUTPUT_PRESETS", "get_output_preset"]
