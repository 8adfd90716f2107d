# services/quota_planner.py
from __future__ import annotations

import logging
import random
from typing import Dict, List, Mapping, Optional, Set

from services.domain import Slot
from services.taxonomy import FILLABLE_CATEGORIES, FOOD, STAY, Subcategory, Taxonomy

log = logging.getLogger("engine")

MIN_ITEMS = 5
MAX_ITEMS = 12

# Food slots take these positions in order; the first three are real meals.
FOOD_TIME_POSITIONS = ("breakfast", "lunch", "dinner", "tea_time", "late_night")
MEALS = ("breakfast", "lunch", "dinner")
STAY_TIME = "overnight"

def clamp_count(n: int) -> int:
    return max(MIN_ITEMS, min(MAX_ITEMS, int(n)))

def food_quota(n: int) -> int:
    return 2 if n <= 7 else 3

def stay_quota(n: int) -> int:
    return 1 if n >= 9 else 0

def category_weights(taxonomy: Taxonomy, inventory: Mapping[str, int]) -> Dict[str, float]:
    """Live inventory per fillable category; falls back to static weights on a cold cache."""
    live = {c: float(max(0, inventory.get(c, 0))) for c in FILLABLE_CATEGORIES}
    if any(live.values()):
        return live
    return {c: taxonomy.category(c).base_weight for c in FILLABLE_CATEGORIES}

class QuotaPlanner:
    def __init__(self, taxonomy: Taxonomy) -> None:
        self._taxonomy = taxonomy

    def plan(self, n: int, inventory: Mapping[str, int], rng: random.Random) -> List[Slot]:
        n = clamp_count(n)
        food, stay = food_quota(n), stay_quota(n)
        remaining = n - food - stay
        used: Set[str] = set()

        food_positions = list(FOOD_TIME_POSITIONS)
        slots: List[Slot] = []

        for _ in range(food):
            slots.append(self._food_slot(food_positions.pop(0), rng, used))
        for _ in range(stay):
            slots.append(self._meal_slot(STAY, STAY_TIME, rng, used))

        for category in self._draw_categories(remaining, category_weights(self._taxonomy, inventory), rng):
            if category == FOOD and food_positions:
                # forced rest stop; it is not one of the three meals
                time = food_positions.pop(0)
                sub = self._pick_subcategory(list(self._taxonomy.category(FOOD).subcategories), rng, used)
                slots.append(self._slot(sub, time, meal=None))
                continue
            cat = self._taxonomy.category(category)
            sub = self._pick_subcategory(list(cat.subcategories), rng, used)
            slots.append(self._slot(sub, rng.choice(cat.time_slots)))

        slots.sort(key=lambda s: self._taxonomy.time_rank(s.time_of_day))
        log.debug("Quota planned", extra={
            "count": n, "food": food, "stay": stay, "remaining": remaining,
        })
        return slots

    # --- draws ---
    def _draw_categories(self, count: int, weights: Mapping[str, float], rng: random.Random) -> List[str]:
        rule = self._taxonomy.anti_fatigue
        codes = [c for c, w in weights.items() if w > 0]
        ws = [weights[c] for c in codes]
        drawn: List[str] = []
        streak = 0
        for _ in range(count):
            if streak >= rule.max_consecutive:
                choice = self._rest_category(weights, rule.rest, rng)
                streak = 0
            else:
                choice = rng.choices(codes, weights=ws, k=1)[0]
                streak = streak + 1 if choice in rule.active else 0
            drawn.append(choice)
        return drawn

    @staticmethod
    def _rest_category(weights: Mapping[str, float], rest: tuple, rng: random.Random) -> str:
        # food always qualifies; other rest stops need inventory
        options = [c for c in rest if c == FOOD or weights.get(c, 0) > 0] or [FOOD]
        return rng.choice(options)

    @staticmethod
    def _pick_subcategory(options: List[Subcategory], rng: random.Random, used: Set[str]) -> Subcategory:
        fresh = [s for s in options if s.code not in used] or options
        sub = rng.choice(fresh)
        used.add(sub.code)
        return sub

    # --- slot builders ---
    def _food_slot(self, time: str, rng: random.Random, used: Set[str]) -> Slot:
        meal = time if time in MEALS else None
        if meal is None:
            options = list(self._taxonomy.category(FOOD).subcategories)
            return self._slot(self._pick_subcategory(options, rng, used), time)
        return self._meal_slot(meal, time, rng, used)

    def _meal_slot(self, meal: str, time: str, rng: random.Random, used: Set[str]) -> Slot:
        sub = self._pick_subcategory(self._taxonomy.meal_options(meal), rng, used)
        return self._slot(sub, time, meal=meal)

    def _slot(self, sub: Subcategory, time: str, meal: Optional[str] = None) -> Slot:
        cat = self._taxonomy.category(sub.category)
        return Slot(
            macro_category=cat.code,
            subcategory=sub.code,
            time_of_day=time,  # type: ignore[arg-type]
            suggested_time=self._taxonomy.suggested_time(time),
            energy_level=cat.energy,
            meal=meal,  # type: ignore[arg-type]
        )
