# services/route_sequencer.py
from __future__ import annotations

import math
from typing import Callable, List, Optional, Sequence, TypeVar

from services.domain import Coordinates

T = TypeVar("T")

def _distance(a: Coordinates, b: Coordinates) -> float:
    # planar lat/lng distance; fine at district scale
    return math.hypot(a.lat - b.lat, a.lng - b.lng)

def sequence_route(items: Sequence[T], coords_of: Callable[[T], Optional[Coordinates]]) -> List[T]:
    """
    Greedy nearest neighbour starting from the northernmost located item.
    Items without coordinates keep their relative order and go last.
    """
    located = [(i, coords_of(i)) for i in items if coords_of(i) is not None]
    unlocated = [i for i in items if coords_of(i) is None]
    if len(located) <= 1:
        return [i for i, _ in located] + unlocated

    start = 0
    for idx, (_, c) in enumerate(located):
        if c.lat > located[start][1].lat:  # type: ignore[union-attr]
            start = idx

    remaining = list(located)
    current = remaining.pop(start)
    route = [current[0]]
    while remaining:
        best = 0
        best_d = _distance(current[1], remaining[0][1])  # type: ignore[arg-type]
        for idx in range(1, len(remaining)):
            d = _distance(current[1], remaining[idx][1])  # type: ignore[arg-type]
            if d < best_d:
                best, best_d = idx, d
        current = remaining.pop(best)
        route.append(current[0])
    return route + unlocated
