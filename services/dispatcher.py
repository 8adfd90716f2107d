# services/dispatcher.py
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from config import Settings
from request_context import get_request_id
from services.candidate_resolver import CandidateResolver, RunContext
from services.dedup import dedupe_resolved
from services.domain import ResolvedSlot, Slot
from services.quota_planner import MAX_ITEMS, MIN_ITEMS
from services.taxonomy import Taxonomy

log = logging.getLogger("engine")

WORKER_ORDER = ("morning", "afternoon", "evening", "night")

@dataclass(frozen=True)
class WorkerPlan:
    worker: str
    meal: Optional[str]
    capacity: int  # non-meal slots

def _w(worker: str, meal: Optional[str], capacity: int) -> WorkerPlan:
    return WorkerPlan(worker, meal, capacity)

# Keyed by itinerary size; meals + capacities always add up to the key.
WORKER_LAYOUT: Dict[int, Tuple[WorkerPlan, ...]] = {
    5: (_w("morning", "breakfast", 1), _w("afternoon", "lunch", 2)),
    6: (_w("morning", "breakfast", 2), _w("afternoon", "lunch", 2)),
    7: (_w("morning", "breakfast", 2), _w("afternoon", "lunch", 2), _w("evening", None, 1)),
    8: (_w("morning", "breakfast", 2), _w("afternoon", "lunch", 2), _w("evening", "dinner", 1)),
    9: (_w("morning", "breakfast", 2), _w("afternoon", "lunch", 2), _w("evening", "dinner", 1),
        _w("night", "stay", 0)),
    10: (_w("morning", "breakfast", 2), _w("afternoon", "lunch", 2), _w("evening", "dinner", 2),
         _w("night", "stay", 0)),
    11: (_w("morning", "breakfast", 2), _w("afternoon", "lunch", 2), _w("evening", "dinner", 2),
         _w("night", "stay", 1)),
    12: (_w("morning", "breakfast", 2), _w("afternoon", "lunch", 2), _w("evening", "dinner", 2),
         _w("night", "stay", 2)),
}

def layout_for(n: int) -> Tuple[WorkerPlan, ...]:
    return WORKER_LAYOUT[max(MIN_ITEMS, min(MAX_ITEMS, n))]

def assign_workers(slots: List[Slot], n: int) -> Dict[str, List[Slot]]:
    """
    Meal slots go to the worker that owns the meal; everything else is dealt,
    in time order, into the workers' remaining capacity.
    """
    layout = layout_for(n)
    by_meal = {p.meal: p.worker for p in layout if p.meal}
    buckets: Dict[str, List[Slot]] = {p.worker: [] for p in layout}
    generic: List[Slot] = []

    for slot in slots:
        owner = by_meal.get(slot.meal) if slot.meal else None
        if owner is not None:
            buckets[owner].append(replace(slot, assigned_worker=owner))
        else:
            generic.append(slot)

    queue = list(generic)
    for plan in layout:
        for _ in range(plan.capacity):
            if not queue:
                break
            buckets[plan.worker].append(replace(queue.pop(0), assigned_worker=plan.worker))
    if queue:
        # planner produced more generic slots than the table has room for
        last = layout[-1].worker
        buckets[last].extend(replace(s, assigned_worker=last) for s in queue)
    return buckets

class WorkerDispatcher:
    def __init__(self, taxonomy: Taxonomy, resolver: CandidateResolver, settings: Settings) -> None:
        self._taxonomy = taxonomy
        self._resolver = resolver
        self._settings = settings

    def localize(self, worker: str, slots: List[Slot], rng: random.Random) -> List[Slot]:
        """Apply the worker's blacklist and used-set; re-draw or drop colliding slots."""
        blacklist = self._taxonomy.excluded_for(worker)
        used: Set[str] = set()
        kept: List[Slot] = []
        for slot in slots:
            current: Optional[Slot] = slot
            tries = 0
            while current is not None and (current.subcategory in blacklist or current.subcategory in used):
                if tries >= self._settings.WORKER_REDRAW_LIMIT:
                    current = None
                    break
                tries += 1
                current = self._redraw(slot, blacklist, used, rng) or current
            if current is None:
                log.info("Slot dropped after re-draws", extra={
                    "request_id": get_request_id(),
                    "worker": worker,
                    "subcategory": slot.subcategory,
                })
                continue
            used.add(current.subcategory)
            kept.append(current)
        return kept

    def _redraw(self, slot: Slot, blacklist: FrozenSet[str], used: Set[str],
                rng: random.Random) -> Optional[Slot]:
        blocked = blacklist | used
        if slot.meal is not None:
            options = [s for s in self._taxonomy.meal_options(slot.meal) if s.code not in blocked]
            if not options:
                return None
            sub = rng.choice(options)
        else:
            # two-stage uniform draw: category, then subcategory
            code = rng.choice(self._taxonomy.activity_categories())
            options = [s for s in self._taxonomy.category(code).subcategories if s.code not in blocked]
            if not options:
                return None
            sub = rng.choice(options)
        cat = self._taxonomy.category(sub.category)
        return replace(slot, macro_category=cat.code, subcategory=sub.code, energy_level=cat.energy)

    async def run_worker(self, worker: str, slots: List[Slot], run: RunContext) -> List[ResolvedSlot]:
        local = self.localize(worker, slots, run.rng)
        candidates = await asyncio.gather(*(self._resolver.resolve(s, run) for s in local))
        resolved = dedupe_resolved(ResolvedSlot(s, c) for s, c in zip(local, candidates))
        log.info("Worker finished", extra={
            "request_id": get_request_id(),
            "worker": worker,
            "slots": len(slots),
            "resolved": len(resolved),
        })
        return resolved

    async def run(self, slots: List[Slot], n: int, run: RunContext) -> List[ResolvedSlot]:
        buckets = assign_workers(slots, n)
        workers = [w for w in WORKER_ORDER if buckets.get(w)]
        results = await asyncio.gather(*(self.run_worker(w, buckets[w], run) for w in workers))
        return [r for chunk in results for r in chunk]