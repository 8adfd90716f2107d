import asyncio
import random

import pytest

from services.candidate_resolver import CandidateResolver, RunContext
from services.dispatcher import WORKER_LAYOUT, WorkerDispatcher, assign_workers, layout_for
from services.domain import Slot
from services.quota_planner import QuotaPlanner, food_quota, stay_quota

from conftest import FakePlaces, ScriptedGenerator

FULL_INVENTORY = {c: 4 for c in ("education", "experience", "entertainment", "activity", "scenery", "shopping")}

def _slot(sub, category="scenery", time="morning", meal=None):
    return Slot(category, sub, time, "10:00", "medium", meal=meal)

@pytest.mark.parametrize("n", range(5, 13))
def test_layout_agrees_with_quota(n):
    layout = WORKER_LAYOUT[n]
    meals = [p.meal for p in layout if p.meal]
    assert len(meals) + sum(p.capacity for p in layout) == n
    assert len([m for m in meals if m != "stay"]) == food_quota(n)
    assert meals.count("stay") == stay_quota(n)

def test_larger_n_uses_twelve():
    assert layout_for(20) == WORKER_LAYOUT[12]

def test_n8_assignment_matches_table(taxonomy, rng):
    slots = QuotaPlanner(taxonomy).plan(8, FULL_INVENTORY, rng)
    buckets = assign_workers(slots, 8)
    assert {w: len(s) for w, s in buckets.items()} == {"morning": 3, "afternoon": 3, "evening": 2}
    assert any(s.meal == "breakfast" for s in buckets["morning"])
    assert any(s.meal == "lunch" for s in buckets["afternoon"])
    assert any(s.meal == "dinner" for s in buckets["evening"])
    for worker, assigned in buckets.items():
        assert all(s.assigned_worker == worker for s in assigned)

def test_n9_stay_goes_to_night_worker(taxonomy, rng):
    slots = QuotaPlanner(taxonomy).plan(9, FULL_INVENTORY, rng)
    buckets = assign_workers(slots, 9)
    assert [s.meal for s in buckets["night"]] == ["stay"]

def test_blacklisted_subcategory_is_redrawn(taxonomy, settings, cache):
    dispatcher = WorkerDispatcher(taxonomy, None, settings)
    local = dispatcher.localize("morning", [_slot("bar", "entertainment")], random.Random(5))
    assert len(local) == 1
    assert local[0].subcategory not in taxonomy.excluded_for("morning")
    assert local[0].macro_category not in ("food", "stay")

def test_meal_slot_redraws_within_meal(taxonomy, settings):
    dispatcher = WorkerDispatcher(taxonomy, None, settings)
    slots = [_slot("brunch", "food", "lunch", meal="lunch")]
    local = dispatcher.localize("afternoon", slots, random.Random(2))
    assert len(local) == 1
    assert local[0].macro_category == "food"
    assert local[0].subcategory not in ("local_breakfast", "brunch")

def test_used_subcategory_is_not_repeated_in_worker(taxonomy, settings):
    dispatcher = WorkerDispatcher(taxonomy, None, settings)
    slots = [_slot("temple"), _slot("temple"), _slot("temple")]
    local = dispatcher.localize("afternoon", slots, random.Random(9))
    subs = [s.subcategory for s in local]
    assert len(subs) == len(set(subs))

def test_slot_dropped_when_redraws_exhausted(taxonomy, settings):
    strict = settings.model_copy(update={"WORKER_REDRAW_LIMIT": 0})
    dispatcher = WorkerDispatcher(taxonomy, None, strict)
    local = dispatcher.localize("morning", [_slot("temple"), _slot("temple")], random.Random(1))
    assert [s.subcategory for s in local] == ["temple"]

def test_run_resolves_every_worker(taxonomy, settings, cache, district):
    gen = ScriptedGenerator()
    resolver = CandidateResolver(taxonomy, cache, gen, None, settings.model_copy(update={"GOOGLE_MAPS_API_KEY": ""}))
    dispatcher = WorkerDispatcher(taxonomy, resolver, settings)
    rng = random.Random(11)
    slots = QuotaPlanner(taxonomy).plan(8, FULL_INVENTORY, rng)
    run = RunContext(district=district, language="zh-TW", rng=rng)

    resolved = asyncio.run(dispatcher.run(slots, 8, run))

    assert len(resolved) == 8
    workers = [r.slot.assigned_worker for r in resolved]
    # results come back grouped morning -> afternoon -> evening
    order = {"morning": 0, "afternoon": 1, "evening": 2}
    assert [order[w] for w in workers] == sorted(order[w] for w in workers)
    assert gen.calls == 8
