# services/backfill.py
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from config import Settings
from request_context import get_request_id
from services.candidate_resolver import CandidateResolver, RunContext
from services.dedup import SeenPlaces
from services.domain import ResolvedSlot, Slot
from services.taxonomy import Taxonomy

log = logging.getLogger("engine")

SHORTAGE_MESSAGES = {
    "zh-TW": "此區域的觀光資源有限，僅找到 {n} 個地點",
    "ja": "このエリアでは {n} 件のスポットのみ見つかりました",
    "ko": "이 지역에서 {n}개의 장소만 찾았습니다",
    "en": "Only {n} spots found in this area",
}

def shortage_message(language: str, found: int) -> str:
    template = SHORTAGE_MESSAGES.get(language, SHORTAGE_MESSAGES["zh-TW"])
    return template.format(n=found)

class BackfillLoop:
    """Sequential top-up after global dedup; one resolution in flight at a time."""

    def __init__(self, taxonomy: Taxonomy, resolver: CandidateResolver, settings: Settings) -> None:
        self._taxonomy = taxonomy
        self._resolver = resolver
        self._settings = settings

    async def fill(self, resolved: List[ResolvedSlot], n: int,
                   run: RunContext) -> Tuple[List[ResolvedSlot], Optional[str]]:
        result = list(resolved)
        shortfall = n - len(result)
        if shortfall <= 0:
            return result, None

        seen = SeenPlaces()
        for r in result:
            seen.add(r.candidate)

        represented = {r.slot.subcategory for r in result}
        pool = [s for s in self._taxonomy.all_subcategories if s.code not in represented]
        run.rng.shuffle(pool)

        budget = self._settings.BACKFILL_ATTEMPT_FACTOR * shortfall
        attempts = 0
        for sub in pool:
            if len(result) >= n or attempts >= budget:
                break
            attempts += 1
            slot = self._slot_for(sub.code, run)
            candidate = await self._resolver.resolve(slot, run, exclusions=(), use_cache=False)
            if candidate.placeholder or not seen.accept(candidate):
                continue
            result.append(ResolvedSlot(slot, candidate))

        log.info("Backfill finished", extra={
            "request_id": get_request_id(),
            "requested": n,
            "returned": len(result),
            "attempts": attempts,
        })
        if len(result) < n:
            return result, shortage_message(run.language, len(result))
        return result, None

    def _slot_for(self, code: str, run: RunContext) -> Slot:
        sub = self._taxonomy.subcategory(code)
        cat = self._taxonomy.category(sub.category)
        time = run.rng.choice(cat.time_slots)
        return Slot(
            macro_category=cat.code,
            subcategory=sub.code,
            time_of_day=time,
            suggested_time=self._taxonomy.suggested_time(time),
            energy_level=cat.energy,
            assigned_worker="backfill",
        )
