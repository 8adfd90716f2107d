# services/stores.py
"""
Collaborator interfaces the engine depends on.

Persistence lives elsewhere; anything satisfying these protocols can be
plugged into ItineraryEngine. Implementations should raise CacheUnavailable
(knowledge cache) rather than driver-specific errors.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Set

from services.domain import (
    CacheEntry,
    Coordinates,
    DistrictContext,
    PlaceMatch,
    PromoLink,
    RewardRecord,
    RewardTemplate,
)

class LocationStore(Protocol):
    async def random_district(self, *, region_id: Optional[int] = None,
                              country_id: Optional[int] = None) -> Optional[DistrictContext]: ...

class KnowledgeCache(Protocol):
    async def get(self, subcategory: str, district: str, city: str, country: str) -> Optional[CacheEntry]: ...

    async def put(self, entry: CacheEntry) -> None: ...

    async def category_inventory(self, city: str, country: str) -> Dict[str, int]: ...

class UserCollectionStore(Protocol):
    async def collected_names(self, user_id: str) -> Set[str]: ...

class InventoryStore(Protocol):
    async def slot_count(self, user_id: str) -> int: ...

    async def add(self, record: RewardRecord, max_slots: int) -> Optional[RewardRecord]:
        """Store the record in the next free slot; return None when the inventory is full."""
        ...

class MerchantPromotionStore(Protocol):
    async def find_by_place_id(self, place_id: str) -> Optional[PromoLink]: ...

    async def find_by_name(self, name: str, district: str, city: str) -> Optional[PromoLink]: ...

    async def templates_for(self, link_id: str) -> List[RewardTemplate]: ...

class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...

class PlaceSearch(Protocol):
    async def search_text(self, query: str) -> List[PlaceMatch]: ...

    async def geocode(self, address: str) -> Optional[Coordinates]: ...
