# services/taxonomy.py
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import yaml

from errors import ConfigurationError
from services.domain import Energy, LocalizedName, TimeSlot

log = logging.getLogger("engine")

FOOD = "food"
STAY = "stay"
FILLABLE_CATEGORIES: Tuple[str, ...] = (
    "education", "experience", "entertainment", "activity", "scenery", "shopping",
)

@dataclass(frozen=True)
class Subcategory:
    code: str
    category: str
    label: LocalizedName
    meals: Tuple[str, ...] = ()

@dataclass(frozen=True)
class Category:
    code: str
    label: LocalizedName
    color_hex: str
    energy: Energy
    base_weight: float
    time_slots: Tuple[TimeSlot, ...]
    subcategories: Tuple[Subcategory, ...]

@dataclass(frozen=True)
class AntiFatigueRule:
    active: FrozenSet[str]
    rest: Tuple[str, ...]
    max_consecutive: int

class Taxonomy:
    """
    Read-only view of the category catalog.
    One instance is shared by every request; nothing here mutates after load.
    """

    def __init__(self,
                 categories: Sequence[Category],
                 time_slots: Mapping[str, str],
                 anti_fatigue: AntiFatigueRule,
                 worker_exclusions: Mapping[str, FrozenSet[str]]) -> None:
        self._categories: Dict[str, Category] = {c.code: c for c in categories}
        self._subcategories: Dict[str, Subcategory] = {
            s.code: s for c in categories for s in c.subcategories
        }
        self.time_slot_times: Dict[str, str] = dict(time_slots)
        self.time_slot_order: Tuple[str, ...] = tuple(time_slots.keys())
        self.anti_fatigue = anti_fatigue
        self.worker_exclusions: Dict[str, FrozenSet[str]] = dict(worker_exclusions)

    # --- lookups ---
    def category(self, code: str) -> Category:
        try:
            return self._categories[code]
        except KeyError:
            raise ConfigurationError(f"Unknown category {code!r}") from None

    def subcategory(self, code: str) -> Subcategory:
        try:
            return self._subcategories[code]
        except KeyError:
            raise ConfigurationError(f"Unknown subcategory {code!r}") from None

    @property
    def categories(self) -> List[Category]:
        return list(self._categories.values())

    @property
    def all_subcategories(self) -> List[Subcategory]:
        return list(self._subcategories.values())

    def activity_categories(self) -> List[str]:
        """Every category a generic (non-meal, non-stay) slot may be drawn from."""
        return [code for code in self._categories if code not in (FOOD, STAY)]

    def meal_options(self, meal: str) -> List[Subcategory]:
        if meal == STAY:
            return list(self.category(STAY).subcategories)
        food = list(self.category(FOOD).subcategories)
        tagged = [s for s in food if meal in s.meals]
        return tagged or food

    def time_rank(self, slot: str) -> int:
        try:
            return self.time_slot_order.index(slot)
        except ValueError:
            return len(self.time_slot_order)

    def suggested_time(self, slot: str) -> str:
        return self.time_slot_times.get(slot, "12:00")

    def color_for(self, category: str) -> str:
        cat = self._categories.get(category)
        return cat.color_hex if cat else "#6366f1"

    def excluded_for(self, worker: Optional[str]) -> FrozenSet[str]:
        if not worker:
            return frozenset()
        return self.worker_exclusions.get(worker, frozenset())

# ----------------------------
# YAML loading
# ----------------------------

def _label(raw: Mapping[str, object]) -> LocalizedName:
    zh = str(raw.get("zh") or raw.get("en") or "")
    en = str(raw.get("en") or zh)
    ja = raw.get("ja")
    ko = raw.get("ko")
    return LocalizedName(zh=zh, en=en, ja=str(ja) if ja else None, ko=str(ko) if ko else None)

def parse_taxonomy(raw: Mapping[str, object]) -> Taxonomy:
    if not isinstance(raw, Mapping):
        raise ConfigurationError("Taxonomy root must be a mapping")

    slots: Dict[str, str] = {}
    for item in raw.get("time_slots") or []:
        if isinstance(item, dict) and item.get("code"):
            slots[str(item["code"])] = str(item.get("time") or "12:00")
    if not slots:
        raise ConfigurationError("Taxonomy defines no time slots")

    categories: List[Category] = []
    for item in raw.get("categories") or []:
        if not isinstance(item, dict) or not item.get("code"):
            continue
        code = str(item["code"])
        subs = tuple(
            Subcategory(
                code=str(s["code"]),
                category=code,
                label=_label(s),
                meals=tuple(s.get("meals") or ()),
            )
            for s in item.get("subcategories") or []
            if isinstance(s, dict) and s.get("code")
        )
        unknown = [t for t in item.get("time_slots") or [] if t not in slots]
        if unknown:
            raise ConfigurationError(f"Category {code!r} uses unknown time slots {unknown}")
        categories.append(
            Category(
                code=code,
                label=_label(item),
                color_hex=str(item.get("color") or "#6366f1"),
                energy=item.get("energy") or "medium",
                base_weight=float(item.get("base_weight") or 1),
                time_slots=tuple(item.get("time_slots") or ()),
                subcategories=subs,
            )
        )

    codes = {c.code for c in categories}
    missing = [c for c in (FOOD, STAY, *FILLABLE_CATEGORIES) if c not in codes]
    if missing:
        raise ConfigurationError(f"Taxonomy is missing categories: {missing}")

    af = raw.get("anti_fatigue") or {}
    anti_fatigue = AntiFatigueRule(
        active=frozenset(af.get("active") or ("education", "experience", "activity", "scenery")),
        rest=tuple(af.get("rest") or (FOOD, "shopping")),
        max_consecutive=int(af.get("max_consecutive") or 2),
    )
    exclusions = {
        str(worker): frozenset(subs or ())
        for worker, subs in (raw.get("worker_exclusions") or {}).items()
    }
    return Taxonomy(categories, slots, anti_fatigue, exclusions)

@functools.lru_cache(maxsize=8)
def load_taxonomy(path: str) -> Taxonomy:
    """Load and validate the YAML catalog. Cached per path; the result is immutable."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        log.error("Taxonomy catalog missing", extra={"path": path})
        raise ConfigurationError(f"Taxonomy file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Taxonomy file is not valid YAML: {e}") from e
    taxonomy = parse_taxonomy(raw)
    log.info("Taxonomy loaded", extra={
        "path": path,
        "categories": len(taxonomy.categories),
        "subcategories": len(taxonomy.all_subcategories),
    })
    return taxonomy
