"""Group palette and per-machine shade derivation."""

import colorsys
import math
import re
from typing import Dict, Iterable, Tuple

import matplotlib.colors as mcolors


# Base color per equipment group (first letter of the machine code).
GROUP_PALETTE: Dict[str, str] = {
    "A": "#1f77b4",
    "B": "#ff7f0e",
    "C": "#2ca02c",
    "D": "#d62728",
    "E": "#9467bd",
    "F": "#8c564b",
    "G": "#e377c2",
    "H": "#17becf",
}
DEFAULT_COLOR = "#7f7f7f"

# Reserved for the synthetic Average line; never part of GROUP_PALETTE.
AVERAGE_COLOR = "#000000"

LIGHTNESS_STEP = 0.08
LIGHTNESS_MIN = 0.20
LIGHTNESS_MAX = 0.85

_DIGITS_RE = re.compile(r"(\d+)")


def natural_sort_key(text: str) -> Tuple[tuple, str]:
    """Sort key that orders digit runs numerically and letters case-insensitively.

    ``"A9"`` sorts before ``"A10"``. The raw text breaks ties so the order is
    total.
    """

    parts = _DIGITS_RE.split(text)
    # re.split with a capture group alternates text, digits, text, ...
    key = tuple(int(part) if i % 2 else part.casefold() for i, part in enumerate(parts))
    return key, text


def group_letter(key: str) -> str:
    return key[:1].upper()


def base_color(group: str) -> str:
    return GROUP_PALETTE.get(group, DEFAULT_COLOR)


def shade(color: str, rank: int) -> str:
    """Return ``color`` with its lightness shifted for the ``rank``-th group member.

    Rank 0 keeps the base color. Odd ranks go lighter, even ranks darker, by
    ``LIGHTNESS_STEP * ceil(rank / 2)``, clamped to the lightness bounds.
    """

    if rank <= 0:
        return color

    hue, lightness, saturation = colorsys.rgb_to_hls(*mcolors.to_rgb(color))
    sign = 1 if rank % 2 else -1
    lightness += sign * LIGHTNESS_STEP * math.ceil(rank / 2)
    lightness = min(max(lightness, LIGHTNESS_MIN), LIGHTNESS_MAX)
    return mcolors.to_hex(colorsys.hls_to_rgb(hue, lightness, saturation))


def assign_colors(keys: Iterable[str]) -> Dict[str, str]:
    """Map each machine key to its display color.

    The result depends only on the set of keys, never on their order.
    """

    seen_per_group: Dict[str, int] = {}
    colors: Dict[str, str] = {}
    for key in sorted(set(keys), key=natural_sort_key):
        group = group_letter(key)
        rank = seen_per_group.get(group, 0)
        seen_per_group[group] = rank + 1
        colors[key] = shade(base_color(group), rank)
    return colors


__all__ = [
    "AVERAGE_COLOR",
    "DEFAULT_COLOR",
    "GROUP_PALETTE",
    "assign_colors",
    "natural_sort_key",
    "shade",
]
