from __future__ import annotations

from enum import Enum


class Difficulty(str, Enum):
    """Problem difficulty as labelled by the source site (case-sensitive)."""

    easy = "Easy"
    medium = "Medium"
    hard = "Hard"
