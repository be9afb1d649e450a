"""
Color grading for composer module.
"""
import math
from typing import List

from .config import ColorGrade
from .filter_graph import fmt


def build_grade_filter(grade: ColorGrade) -> str:
    """eq plus optional colorlevels, colorbalance and vignette for ``grade``."""
    filters: List[str] = [
        f"eq=contrast={fmt(grade.contrast)}:saturation={fmt(grade.saturation)}"
        f":brightness={fmt(grade.brightness)}"
    ]
    if grade.black_level > 0:
        level = fmt(grade.black_level)
        filters.append(f"colorlevels=rimin={level}:gimin={level}:bimin={level}")
    if grade.tint:
        red, green, blue = grade.tint
        filters.append(f"colorbalance=rs={fmt(red)}:gs={fmt(green)}:bs={fmt(blue)}")
    if grade.vignette > 0:
        filters.append(f"vignette=angle={fmt(math.pi * grade.vignette / 4)}")
    return ",".join(filters)
