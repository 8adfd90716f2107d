# services/reward_engine.py
from __future__ import annotations

import logging
import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import List, Mapping, Optional

from config import Settings
from request_context import get_request_id
from services.candidate_resolver import RunContext
from services.domain import ItineraryItem, PromoLink, RewardRecord
from services.stores import InventoryStore, MerchantPromotionStore

log = logging.getLogger("rewards")

# Rarest first; the cumulative roll walks them in this order.
TIER_ORDER = ("SP", "SSR", "SR", "S", "R")

def roll_tier(rates: Mapping[str, float], rng: random.Random) -> Optional[str]:
    """One cumulative draw over percent rates; None when the roll lands in the no-drop remainder."""
    ordered = [t for t in TIER_ORDER if t in rates] + [t for t in rates if t not in TIER_ORDER]
    roll = rng.random() * 100.0
    cumulative = 0.0
    for tier in ordered:
        cumulative += rates[tier]
        if roll < cumulative:
            return tier
    return None

class RewardEngine:
    def __init__(self, promotions: MerchantPromotionStore, inventory: InventoryStore,
                 settings: Settings) -> None:
        self._promotions = promotions
        self._inventory = inventory
        self._settings = settings

    async def _find_link(self, item: ItineraryItem, run: RunContext) -> Optional[PromoLink]:
        c = item.candidate
        if c.place_id:
            link = await self._promotions.find_by_place_id(c.place_id)
            if link is not None:
                return link
        return await self._promotions.find_by_name(c.name, run.district.district_name, run.district.region_name)

    async def apply(self, items: List[ItineraryItem], run: RunContext) -> List[ItineraryItem]:
        out: List[ItineraryItem] = []
        for item in items:
            link = await self._find_link(item, run)
            if link is None or not link.is_promo_active:
                out.append(item)
                continue
            item = replace(item, promo=link)
            record = await self._maybe_reward(item, link, run)
            out.append(replace(item, reward=record) if record else item)
        return out

    async def _maybe_reward(self, item: ItineraryItem, link: PromoLink,
                            run: RunContext) -> Optional[RewardRecord]:
        if not run.user_id:
            return None
        max_slots = self._settings.INVENTORY_MAX_SLOTS
        if await self._inventory.slot_count(run.user_id) >= max_slots:
            log.info("Inventory full; no reward roll", extra={"request_id": get_request_id(), "user_id": run.user_id})
            return None

        tier = roll_tier(self._settings.REWARD_TIER_RATES, run.rng)
        if tier is None:
            return None
        templates = await self._promotions.templates_for(link.link_id)
        template = next((t for t in templates if t.tier == tier), None)
        if template is None:
            log.debug("No template for rolled tier", extra={"request_id": get_request_id(), "tier": tier})
            return None

        valid_until = template.valid_until or (
            datetime.now(timezone.utc) + timedelta(days=self._settings.REWARD_DEFAULT_VALID_DAYS)
        )
        record = RewardRecord(
            tier=tier,
            owner_user=run.user_id,
            merchant_id=link.merchant_id,
            template_id=template.template_id,
            name=template.name,
            place_name=item.candidate.name,
            valid_until=valid_until,
        )
        stored = await self._inventory.add(record, max_slots)
        if stored is None:
            return None
        log.info("Reward dropped", extra={
            "request_id": get_request_id(),
            "tier": tier,
            "merchant_id": link.merchant_id,
            "slot_index": stored.slot_index,
        })
        return stored
