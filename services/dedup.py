# services/dedup.py
from __future__ import annotations

import re
from typing import Callable, Iterable, List, Optional, Set, TypeVar

from services.domain import Candidate, ResolvedSlot

T = TypeVar("T")

_PARENTHETICAL = re.compile(r"[（(][^）)]*[）)]")
_WHITESPACE = re.compile(r"\s+")

# Longest first so "旅遊服務園區" wins over "園區".
GENERIC_SUFFIXES = (
    "旅遊服務園區", "生態園區", "服務中心", "遊客中心", "觀光工廠", "休閒農場", "園區",
    "visitor center", "service center", "service park", "eco park", "tourist factory", "leisure farm",
)

def normalize_name(name: str) -> str:
    trimmed = (name or "").strip()
    n = _PARENTHETICAL.sub("", trimmed)
    n = _WHITESPACE.sub(" ", n).strip()
    folded = n.casefold()
    for suffix in GENERIC_SUFFIXES:
        if folded.endswith(suffix.casefold()):
            folded = folded[: -len(suffix)].strip()
            break
    return folded or trimmed.casefold()

class SeenPlaces:
    """Tracks place ids and normalized names already accepted into a result set."""

    def __init__(self) -> None:
        self._ids: Set[str] = set()
        self._names: Set[str] = set()

    def is_duplicate(self, candidate: Candidate) -> bool:
        if candidate.place_id and candidate.place_id in self._ids:
            return True
        return normalize_name(candidate.name) in self._names

    def add(self, candidate: Candidate) -> None:
        if candidate.place_id:
            self._ids.add(candidate.place_id)
        self._names.add(normalize_name(candidate.name))

    def accept(self, candidate: Candidate) -> bool:
        """Add and return True unless the candidate repeats something already seen."""
        if self.is_duplicate(candidate):
            return False
        self.add(candidate)
        return True

def dedupe(items: Iterable[T], candidate_of: Optional[Callable[[T], Candidate]] = None,
           seen: Optional[SeenPlaces] = None) -> List[T]:
    """Order-preserving; the first occurrence of a place wins."""
    get = candidate_of or (lambda x: x.candidate)  # type: ignore[attr-defined]
    seen = seen if seen is not None else SeenPlaces()
    return [item for item in items if seen.accept(get(item))]

def dedupe_resolved(items: Iterable[ResolvedSlot]) -> List[ResolvedSlot]:
    return dedupe(items, lambda r: r.candidate)
