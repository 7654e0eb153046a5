"""Rounding used for every whole-number score, percentage and interval."""

from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer with halves going up.

    Python's ``round`` sends halves to the even neighbour (``round(2.5) == 2``),
    which would make e.g. a 65% average and a 2.5-day interval round down.
    """
    return int(math.floor(value + 0.5))
