# services/candidate_resolver.py
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from config import Settings
from errors import CacheUnavailable, GenerationFailure
from request_context import get_request_id
from services.domain import CacheEntry, Candidate, DistrictContext, Slot
from services.llm_service import build_candidate_prompt, parse_generation
from services.places_service import VerificationGate
from services.retry import retry_with_exclusions
from services.stores import KnowledgeCache, TextGenerator
from services.taxonomy import Taxonomy

log = logging.getLogger("engine")

UNVERIFIED_WARNING = "Location not verified"
VERIFICATION_DISABLED_WARNING = "Location not verified (verification unavailable)"
PLACEHOLDER_WARNING = "No real place could be found for this slot"

@dataclass
class RunContext:
    """Everything one generation run shares. Created per request, never stored globally."""
    district: DistrictContext
    language: str
    rng: random.Random
    user_id: Optional[str] = None
    collected: FrozenSet[str] = frozenset()

    # counters; asyncio tasks interleave only at awaits, so plain ints are safe
    cache_reads: int = 0
    cache_hits: int = 0
    ai_calls: int = 0
    rejected: int = 0
    verified: int = 0
    placeholders: int = 0
    started_at: float = field(default=0.0)

class CandidateResolver:
    def __init__(
        self,
        taxonomy: Taxonomy,
        cache: KnowledgeCache,
        generator: TextGenerator,
        gate: Optional[VerificationGate],
        settings: Settings,
    ) -> None:
        self._taxonomy = taxonomy
        self._cache = cache
        self._generator = generator
        self._gate = gate
        self._settings = settings

    async def resolve(
        self,
        slot: Slot,
        run: RunContext,
        *,
        exclusions: Tuple[str, ...] = (),
        use_cache: bool = True,
    ) -> Candidate:
        """Never raises: anything unexpected degrades this slot to a placeholder."""
        try:
            return await self._resolve(slot, run, exclusions, use_cache)
        except Exception:
            log.exception("Slot resolution failed; using placeholder", extra={
                "request_id": get_request_id(),
                "subcategory": slot.subcategory,
            })
            return self._placeholder(slot, run)

    async def _resolve(self, slot: Slot, run: RunContext, excluded: Tuple[str, ...],
                       use_cache: bool) -> Candidate:
        if use_cache and run.rng.random() < self._settings.CACHE_USE_PROBABILITY:
            cached = await self._from_cache(slot, run, excluded)
            if cached is not None:
                return cached

        return await self._generate(slot, run, excluded)

    # ----------------------------
    # Cache path
    # ----------------------------

    async def _from_cache(self, slot: Slot, run: RunContext, excluded: Tuple[str, ...]) -> Optional[Candidate]:
        ctx = run.district
        run.cache_reads += 1
        try:
            entry = await self._cache.get(slot.subcategory, ctx.district_name, ctx.region_name, ctx.country_name)
        except CacheUnavailable:
            log.warning("Knowledge cache read failed; treating as miss", extra={
                "request_id": get_request_id(),
                "subcategory": slot.subcategory,
            })
            return None
        if entry is None or entry.name in excluded:
            return None
        if entry.name in run.collected and run.rng.random() < self._settings.COLLECTED_SKIP_PROBABILITY:
            log.debug("Skipping collected cache hit", extra={"request_id": get_request_id(), "place": entry.name})
            return None
        run.cache_hits += 1
        return entry.to_candidate()

    # ----------------------------
    # Generation path
    # ----------------------------

    async def _generate(self, slot: Slot, run: RunContext, excluded: Tuple[str, ...]) -> Candidate:
        ctx = run.district
        last_proposal: list[Tuple[str, str]] = []

        async def attempt(n: int, exclusions: Tuple[str, ...]) -> Candidate:
            prompt = build_candidate_prompt(ctx, slot.macro_category, slot.subcategory, run.language, exclusions)
            run.ai_calls += 1
            try:
                text = await asyncio.wait_for(self._generator.generate(prompt), self._settings.AI_TIMEOUT_S)
            except asyncio.TimeoutError:
                raise GenerationFailure("timeout") from None
            except Exception as e:
                # any client/transport error is just a failed attempt
                log.warning("LLM call failed", extra={"request_id": get_request_id()}, exc_info=True)
                raise GenerationFailure("error", detail=str(e)) from e

            result = parse_generation(text, ctx)
            if not result.ok:
                run.rejected += 1
                raise GenerationFailure(result.reason or "error", name=result.name)
            name, description = result.name or "", result.description or ""

            if name in run.collected and run.rng.random() < self._settings.COLLECTED_SKIP_PROBABILITY:
                raise GenerationFailure("collected", name=name)
            last_proposal.append((name, description))

            if self._gate is None:
                return self._candidate(slot, name, description, warning=VERIFICATION_DISABLED_WARNING)

            match = await self._gate.verify(name, ctx)
            run.verified += 1
            candidate = Candidate(
                name=match.name or name,
                description=description,
                category=slot.macro_category,
                subcategory=slot.subcategory,
                origin="generated",
                verified=True,
                address=match.address,
                place_id=match.place_id,
                rating=match.rating,
                coordinates=match.coordinates,
            )
            await self._remember(candidate, ctx)
            return candidate

        outcome = await retry_with_exclusions(
            attempt,
            max_attempts=self._settings.GENERATION_MAX_ATTEMPTS,
            backoff_s=self._settings.RETRY_BACKOFF_S,
            exclusions=excluded,
            label=slot.subcategory,
        )
        if outcome.value is not None:
            return outcome.value

        if last_proposal:
            name, description = last_proposal[-1]
            return self._candidate(slot, name, description, warning=UNVERIFIED_WARNING)

        log.warning("Resolution exhausted; using placeholder", extra={
            "request_id": get_request_id(),
            "subcategory": slot.subcategory,
            "attempts": outcome.attempts,
        })
        return self._placeholder(slot, run)

    def _placeholder(self, slot: Slot, run: RunContext) -> Candidate:
        run.placeholders += 1
        label = self._taxonomy.subcategory(slot.subcategory).label.get(run.language)
        return Candidate(
            name=f"{run.district.district.get(run.language)} {label}",
            description="",
            category=slot.macro_category,
            subcategory=slot.subcategory,
            origin="generated",
            verified=False,
            warning=PLACEHOLDER_WARNING,
            placeholder=True,
        )

    @staticmethod
    def _candidate(slot: Slot, name: str, description: str, *, warning: str) -> Candidate:
        return Candidate(
            name=name,
            description=description,
            category=slot.macro_category,
            subcategory=slot.subcategory,
            origin="generated",
            verified=False,
            warning=warning,
        )

    async def _remember(self, candidate: Candidate, ctx: DistrictContext) -> None:
        entry = CacheEntry(
            subcategory=candidate.subcategory,
            category=candidate.category,
            district=ctx.district_name,
            city=ctx.region_name,
            country=ctx.country_name,
            name=candidate.name,
            description=candidate.description,
            verified=True,
            place_id=candidate.place_id,
            address=candidate.address,
            rating=candidate.rating,
            coordinates=candidate.coordinates,
        )
        try:
            await self._cache.put(entry)
        except Exception:
            # write-back is best effort; the verified candidate stands
            log.warning("Knowledge cache write failed", extra={
                "request_id": get_request_id(),
                "place": candidate.name,
            }, exc_info=True)
