"""
Coarse grid references for raw coordinates.

A grid reference is one letter and one number (``"K:42"``). The letter comes
from latitude, the number from longitude, both at 1/1000 degree steps and
wrapped with a true (always non-negative) floor-modulo, so negative
coordinates wrap around instead of producing negative cells:

    encode(-0.001, -0.001) == "Z:99"

The scaled value is rounded to 9 decimals before flooring (see ``_cell``), so
this is not a bare ``floor(x * 1000)``: an input within 5e-10 below a cell
edge lands in the upper cell.

The mapping is lossy. ``decode`` only recovers the anchor of the cell, so
``encode(*decode(label))`` is stable but ``decode(encode(lat, lng))`` is not
``(lat, lng)``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional

LETTERS = 26
NUMBERS = 99
SCALE = 1000

_LABEL_RE = re.compile(r"([A-Z]):([0-9]+)")


@dataclass(frozen=True)
class GridPoint:
    lat: float
    lng: float


def _cell(value: float) -> int:
    """
    Cell index of one coordinate: ``floor(value * 1000)`` after the product is
    rounded to 9 decimals.

    k/1000 * 1000 can land a hair under k, so without the rounding a cell
    anchor would fall into the cell below it. The cost is that inputs within
    5e-10 of a cell edge are assigned to the upper cell.
    """
    return math.floor(round(value * SCALE, 9))


def encode(lat: float, lng: float) -> str:
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise ValueError(f"Coordinates must be finite, got lat={lat} lng={lng}")

    lat_base = _cell(lat) % LETTERS
    lng_base = _cell(lng) % NUMBERS

    return f"{chr(ord('A') + lat_base)}:{lng_base + 1}"


def decode(label: str) -> Optional[GridPoint]:
    """Return the anchor point of ``label``'s cell, or None if it is not a grid reference."""
    if not isinstance(label, str):
        return None

    match = _LABEL_RE.fullmatch(label)
    if not match:
        return None

    lat_base = ord(match.group(1)) - ord("A")
    try:
        lng_base = int(match.group(2)) - 1
    except ValueError:
        # digit runs past the interpreter's int conversion limit
        return None

    return GridPoint(lat=lat_base / SCALE, lng=lng_base / SCALE)


def is_valid(label: str) -> bool:
    return decode(label) is not None
