# services/itinerary_engine.py
from __future__ import annotations

import logging
import random
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import Settings
from errors import CacheUnavailable, ConfigurationError, NoDistrictFound
from models import (
    Coordinates as CoordinatesOut,
    DistrictOut,
    ItineraryItemOut,
    ItineraryRequest,
    ItineraryResponse,
    Meta,
    PromoOut,
)
from request_context import get_request_id
from services.backfill import BackfillLoop
from services.candidate_resolver import CandidateResolver, RunContext
from services.dedup import dedupe_resolved
from services.dispatcher import WorkerDispatcher
from services.domain import DistrictContext, ItineraryItem
from services.places_service import VerificationGate
from services.quota_planner import QuotaPlanner, clamp_count
from services.reward_engine import RewardEngine
from services.route_sequencer import sequence_route
from services.stores import (
    InventoryStore,
    KnowledgeCache,
    LocationStore,
    MerchantPromotionStore,
    PlaceSearch,
    TextGenerator,
    UserCollectionStore,
)
from services.taxonomy import Taxonomy

log = logging.getLogger("engine")

class ItineraryEngine:
    """
    Plans, resolves and decorates one itinerary per call.

    Holds only collaborators and read-only configuration; everything a run
    mutates lives in its RunContext.
    """

    def __init__(
        self,
        *,
        taxonomy: Taxonomy,
        settings: Settings,
        locations: LocationStore,
        cache: KnowledgeCache,
        generator: TextGenerator,
        collections: UserCollectionStore,
        inventory: InventoryStore,
        promotions: MerchantPromotionStore,
        places: Optional[PlaceSearch] = None,
    ) -> None:
        self._taxonomy = taxonomy
        self._settings = settings
        self._locations = locations
        self._cache = cache
        self._collections = collections

        self._gate: Optional[VerificationGate] = None
        if places is not None and settings.verification_enabled:
            self._gate = VerificationGate(places, settings.VERIFY_RADIUS_KM, settings.PLACES_TIMEOUT_S)
        else:
            log.warning("Place verification disabled; generated items will be unverified")

        self._resolver = CandidateResolver(taxonomy, cache, generator, self._gate, settings)
        self._planner = QuotaPlanner(taxonomy)
        self._dispatcher = WorkerDispatcher(taxonomy, self._resolver, settings)
        self._backfill = BackfillLoop(taxonomy, self._resolver, settings)
        self._rewards = RewardEngine(promotions, inventory, settings)

    async def _resolve_district(self, req: ItineraryRequest) -> DistrictContext:
        if req.region_id is None and req.country_id is None:
            raise ConfigurationError("Either region_id or country_id is required")
        ctx = await self._locations.random_district(region_id=req.region_id, country_id=req.country_id)
        if ctx is None:
            raise NoDistrictFound(region_id=req.region_id, country_id=req.country_id)
        if ctx.centroid is None and self._gate is not None:
            centroid = await self._gate.locate_centroid(ctx)
            if centroid is not None:
                ctx = replace(ctx, centroid=centroid)
        return ctx

    async def _inventory_counts(self, ctx: DistrictContext) -> Dict[str, int]:
        try:
            return await self._cache.category_inventory(ctx.region_name, ctx.country_name)
        except CacheUnavailable:
            log.warning("Category inventory unavailable; using static weights",
                        extra={"request_id": get_request_id()})
            return {}

    async def generate(self, req: ItineraryRequest, rng: Optional[random.Random] = None) -> ItineraryResponse:
        started = time.perf_counter()
        rng = rng or random.Random()
        n = clamp_count(req.item_count)

        ctx = await self._resolve_district(req)
        collected = await self._collections.collected_names(req.user_id) if req.user_id else set()
        run = RunContext(
            district=ctx,
            language=req.language,
            rng=rng,
            user_id=req.user_id,
            collected=frozenset(collected),
            started_at=started,
        )
        log.info("Itinerary run started", extra={
            "request_id": get_request_id(),
            "district": ctx.district_name,
            "region": ctx.region_name,
            "count": n,
        })

        slots = self._planner.plan(n, await self._inventory_counts(ctx), rng)
        resolved = await self._dispatcher.run(slots, n, run)
        resolved = dedupe_resolved(resolved)
        resolved, shortage = await self._backfill.fill(resolved, n, run)

        ordered = sequence_route(resolved, lambda r: r.candidate.coordinates)
        items = [
            ItineraryItem(
                order=i + 1,
                candidate=r.candidate,
                slot=r.slot,
                color_tag=self._taxonomy.color_for(r.candidate.category),
            )
            for i, r in enumerate(ordered)
        ]
        items = await self._rewards.apply(items, run)

        response = self._build_response(items, run, n, shortage, started)
        log.info("Itinerary generated", extra={
            "request_id": get_request_id(),
            "returned": response.meta.returned_count,
            "cache_hits": response.meta.cache_hits,
            "ai_calls": run.ai_calls,
            "rejected": run.rejected,
            "placeholders": run.placeholders,
            "duration_ms": response.meta.duration_ms,
        })
        return response

    def _build_response(self, items: List[ItineraryItem], run: RunContext, n: int,
                        shortage: Optional[str], started: float) -> ItineraryResponse:
        lang = run.language
        out: List[ItineraryItemOut] = []
        for item in items:
            c, s = item.candidate, item.slot
            category = self._taxonomy.category(c.category)
            subcategory = self._taxonomy.subcategory(c.subcategory)
            out.append(ItineraryItemOut(
                order=item.order,
                name=c.name,
                description=c.description,
                address=c.address,
                coordinates=CoordinatesOut(lat=c.coordinates.lat, lng=c.coordinates.lng) if c.coordinates else None,
                category=c.category,
                category_label=category.label.get(lang),
                subcategory=c.subcategory,
                subcategory_label=subcategory.label.get(lang),
                time_slot=s.time_of_day,
                suggested_time=s.suggested_time,
                energy_level=s.energy_level,
                color_tag=item.color_tag,
                verified=c.verified,
                warning=c.warning,
                source=c.origin,
                worker=s.assigned_worker,
                place_id=c.place_id,
                rating=c.rating,
                reward_tier=item.reward_tier,
                reward_id=item.reward.record_id if item.reward else None,
                promo=PromoOut(
                    merchant_id=item.promo.merchant_id,
                    title=item.promo.promo_title,
                    description=item.promo.promo_description,
                ) if item.promo else None,
            ))

        ctx = run.district
        return ItineraryResponse(
            district=DistrictOut(
                name=ctx.district.get(lang),
                region=ctx.region.get(lang),
                country=ctx.country.get(lang),
            ),
            items=out,
            meta=Meta(
                requested_count=n,
                returned_count=len(out),
                cache_hits=sum(1 for i in items if i.candidate.origin == "cache"),
                ai_generated=sum(1 for i in items if i.candidate.origin == "generated"),
                verified_count=sum(1 for i in items if i.candidate.verified),
                rewards_won=sum(1 for i in items if i.reward is not None),
                shortage_warning=shortage,
                duration_ms=int((time.perf_counter() - started) * 1000),
                generated_at_iso=datetime.now(timezone.utc).isoformat(),
            ),
        )
