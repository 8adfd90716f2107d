# services/memory_store.py
from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

import yaml

from errors import CacheUnavailable
from services.domain import (
    CacheEntry,
    Coordinates,
    DistrictContext,
    LocalizedName,
    PromoLink,
    RewardRecord,
    RewardTemplate,
)

log = logging.getLogger("stores")

# ----------------------------
# Location hierarchy
# ----------------------------

class InMemoryLocationStore:
    def __init__(self, districts: Iterable[DistrictContext], rng: random.Random | None = None) -> None:
        self._districts: List[DistrictContext] = list(districts)
        self._rng = rng or random.Random()

    async def random_district(self, *, region_id: Optional[int] = None,
                              country_id: Optional[int] = None) -> Optional[DistrictContext]:
        if region_id is not None:
            pool = [d for d in self._districts if d.region_id == region_id]
        else:
            pool = [d for d in self._districts if d.country_id == country_id]
        if not pool:
            return None
        return self._rng.choice(pool)

# ----------------------------
# Knowledge cache
# ----------------------------

class InMemoryKnowledgeCache:
    """Append/overwrite-by-key; last write wins on a race."""

    def __init__(self, entries: Iterable[CacheEntry] = ()) -> None:
        self._entries: Dict[Tuple[str, str, str, str], CacheEntry] = {}
        self._lock = asyncio.Lock()
        self.available = True
        for e in entries:
            self._entries[self._key(e.subcategory, e.district, e.city, e.country)] = e

    @staticmethod
    def _key(subcategory: str, district: str, city: str, country: str) -> Tuple[str, str, str, str]:
        return (subcategory, district, city, country)

    async def get(self, subcategory: str, district: str, city: str, country: str) -> Optional[CacheEntry]:
        if not self.available:
            raise CacheUnavailable("knowledge cache offline")
        return self._entries.get(self._key(subcategory, district, city, country))

    async def put(self, entry: CacheEntry) -> None:
        if not self.available:
            raise CacheUnavailable("knowledge cache offline")
        async with self._lock:
            self._entries[self._key(entry.subcategory, entry.district, entry.city, entry.country)] = entry
        log.debug("Cache write", extra={"subcategory": entry.subcategory, "district": entry.district})

    async def category_inventory(self, city: str, country: str) -> Dict[str, int]:
        if not self.available:
            raise CacheUnavailable("knowledge cache offline")
        counts: Counter[str] = Counter()
        for e in self._entries.values():
            if e.city == city and e.country == country:
                counts[e.category] += 1
        return dict(counts)

    def __len__(self) -> int:
        return len(self._entries)

# ----------------------------
# User collections + reward inventory
# ----------------------------

class InMemoryUserCollections:
    def __init__(self, collected: Mapping[str, Iterable[str]] | None = None) -> None:
        self._collected: Dict[str, Set[str]] = {
            user: set(names) for user, names in (collected or {}).items()
        }

    async def collected_names(self, user_id: str) -> Set[str]:
        return set(self._collected.get(user_id, set()))

class InMemoryInventory:
    """Slot-indexed reward inventory; add() is the only place the capacity cap is enforced."""

    def __init__(self) -> None:
        self._items: Dict[str, List[RewardRecord]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def slot_count(self, user_id: str) -> int:
        return len(self._items.get(user_id, []))

    async def add(self, record: RewardRecord, max_slots: int) -> Optional[RewardRecord]:
        async with self._lock:
            items = self._items[record.owner_user]
            used = {r.slot_index for r in items}
            free = next((i for i in range(max_slots) if i not in used), None)
            if free is None:
                return None
            stored = replace(record, slot_index=free, record_id=uuid.uuid4().hex[:12])
            items.append(stored)
            return stored

    def records(self, user_id: str) -> List[RewardRecord]:
        return list(self._items.get(user_id, []))

# ----------------------------
# Merchant promotions
# ----------------------------

class InMemoryMerchantPromotions:
    def __init__(self, links: Iterable[PromoLink] = (),
                 templates: Mapping[str, Iterable[RewardTemplate]] | None = None) -> None:
        self._links: List[PromoLink] = list(links)
        self._templates: Dict[str, List[RewardTemplate]] = {
            k: list(v) for k, v in (templates or {}).items()
        }

    async def find_by_place_id(self, place_id: str) -> Optional[PromoLink]:
        return next((l for l in self._links if l.place_id and l.place_id == place_id), None)

    async def find_by_name(self, name: str, district: str, city: str) -> Optional[PromoLink]:
        for link in self._links:
            if link.place_name != name:
                continue
            if link.district and link.district != district:
                continue
            if link.city and link.city != city:
                continue
            return link
        return None

    async def templates_for(self, link_id: str) -> List[RewardTemplate]:
        return list(self._templates.get(link_id, []))

# ----------------------------
# YAML seed
# ----------------------------

@dataclass
class SeededStores:
    locations: InMemoryLocationStore
    cache: InMemoryKnowledgeCache
    collections: InMemoryUserCollections
    inventory: InMemoryInventory
    promotions: InMemoryMerchantPromotions
    districts: List[DistrictContext] = field(default_factory=list)

def _name(raw: Mapping[str, object]) -> LocalizedName:
    zh = str(raw.get("zh") or raw.get("en") or "")
    return LocalizedName(
        zh=zh,
        en=str(raw.get("en") or zh),
        ja=str(raw["ja"]) if raw.get("ja") else None,
        ko=str(raw["ko"]) if raw.get("ko") else None,
    )

def _coords(raw: Mapping[str, object]) -> Optional[Coordinates]:
    lat, lng = raw.get("lat"), raw.get("lng")
    if lat is None or lng is None:
        return None
    return Coordinates(lat=float(lat), lng=float(lng))

def build_stores(raw: Mapping[str, object], rng: random.Random | None = None) -> SeededStores:
    countries = {int(c["id"]): c for c in raw.get("countries") or [] if isinstance(c, dict)}
    regions = {int(r["id"]): r for r in raw.get("regions") or [] if isinstance(r, dict)}

    districts: List[DistrictContext] = []
    for d in raw.get("districts") or []:
        if not isinstance(d, dict):
            continue
        region = regions.get(int(d.get("region_id") or 0))
        if region is None:
            log.warning("Seed district without region", extra={"district_id": d.get("id")})
            continue
        country = countries.get(int(region.get("country_id") or 0))
        if country is None:
            log.warning("Seed region without country", extra={"region_id": region.get("id")})
            continue
        districts.append(DistrictContext(
            district_id=int(d["id"]),
            district=_name(d),
            region_id=int(region["id"]),
            region=_name(region),
            country_id=int(country["id"]),
            country=_name(country),
            centroid=_coords(d),
        ))

    entries = [
        CacheEntry(
            subcategory=str(e["subcategory"]),
            category=str(e["category"]),
            district=str(e["district"]),
            city=str(e["city"]),
            country=str(e["country"]),
            name=str(e["name"]),
            description=str(e.get("description") or ""),
            verified=bool(e.get("verified")),
            place_id=e.get("place_id"),
            address=e.get("address"),
            rating=float(e["rating"]) if e.get("rating") is not None else None,
            coordinates=_coords(e),
        )
        for e in raw.get("knowledge_cache") or []
        if isinstance(e, dict)
    ]

    links: List[PromoLink] = []
    templates: Dict[str, List[RewardTemplate]] = {}
    for m in raw.get("merchant_links") or []:
        if not isinstance(m, dict):
            continue
        link = PromoLink(
            link_id=str(m["link_id"]),
            merchant_id=str(m["merchant_id"]),
            place_name=str(m["place_name"]),
            is_promo_active=bool(m.get("is_promo_active")),
            promo_title=m.get("promo_title"),
            promo_description=m.get("promo_description"),
            place_id=m.get("place_id"),
            district=m.get("district"),
            city=m.get("city"),
        )
        links.append(link)
        templates[link.link_id] = [
            RewardTemplate(
                template_id=str(t["template_id"]),
                merchant_id=link.merchant_id,
                tier=str(t["tier"]),
                name=str(t.get("name") or ""),
                content=str(t.get("content") or ""),
                terms=t.get("terms"),
                valid_until=datetime.fromisoformat(t["valid_until"]) if t.get("valid_until") else None,
            )
            for t in m.get("templates") or []
            if isinstance(t, dict)
        ]

    return SeededStores(
        locations=InMemoryLocationStore(districts, rng=rng),
        cache=InMemoryKnowledgeCache(entries),
        collections=InMemoryUserCollections(raw.get("collections") or {}),
        inventory=InMemoryInventory(),
        promotions=InMemoryMerchantPromotions(links, templates),
        districts=districts,
    )

def load_seed(path: str, rng: random.Random | None = None) -> SeededStores:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        log.warning("Seed file missing; starting with empty stores", extra={"path": path})
        raw = {}
    stores = build_stores(raw, rng=rng)
    log.info("In-memory stores seeded", extra={
        "path": path,
        "districts": len(stores.districts),
        "cache_entries": len(stores.cache),
    })
    return stores
