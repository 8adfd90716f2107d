# services/domain.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional, Tuple

TimeSlot = Literal[
    "breakfast", "morning", "lunch", "afternoon", "tea_time",
    "dinner", "evening", "night", "late_night", "overnight",
]
Energy = Literal["high", "medium", "low"]
Origin = Literal["cache", "generated"]
Worker = Literal["morning", "afternoon", "evening", "night", "backfill"]
Meal = Literal["breakfast", "lunch", "dinner", "stay"]

# ----------------------------
# Location
# ----------------------------

@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

@dataclass(frozen=True)
class LocalizedName:
    zh: str
    en: str
    ja: Optional[str] = None
    ko: Optional[str] = None

    def get(self, language: str) -> str:
        if language == "en":
            return self.en or self.zh
        if language == "ja":
            return self.ja or self.zh or self.en
        if language == "ko":
            return self.ko or self.zh or self.en
        return self.zh or self.en

@dataclass(frozen=True)
class DistrictContext:
    """Resolved once per request; never mutated during the run."""
    district_id: int
    district: LocalizedName
    region_id: int
    region: LocalizedName
    country_id: int
    country: LocalizedName
    centroid: Optional[Coordinates] = None

    @property
    def district_name(self) -> str:
        return self.district.zh

    @property
    def region_name(self) -> str:
        return self.region.zh

    @property
    def country_name(self) -> str:
        return self.country.zh

# ----------------------------
# Planning
# ----------------------------

@dataclass(frozen=True)
class Slot:
    macro_category: str
    subcategory: str
    time_of_day: TimeSlot
    suggested_time: str
    energy_level: Energy
    assigned_worker: Optional[Worker] = None
    meal: Optional[Meal] = None

# ----------------------------
# Resolution
# ----------------------------

@dataclass(frozen=True)
class Candidate:
    name: str
    description: str
    category: str
    subcategory: str
    origin: Origin
    verified: bool = False
    address: Optional[str] = None
    place_id: Optional[str] = None
    rating: Optional[float] = None
    coordinates: Optional[Coordinates] = None
    warning: Optional[str] = None
    placeholder: bool = False

@dataclass(frozen=True)
class PlaceMatch:
    """One hit from the place search service."""
    place_id: str
    name: str
    address: Optional[str]
    coordinates: Optional[Coordinates]
    rating: Optional[float] = None
    types: Tuple[str, ...] = ()
    business_status: Optional[str] = None

@dataclass(frozen=True)
class GenerationResult:
    """Tagged AI outcome: ok with a (name, description) proposal, or a failure reason."""
    ok: bool
    name: Optional[str] = None
    description: Optional[str] = None
    reason: Optional[Literal["templated", "unparseable", "timeout", "error"]] = None

    @classmethod
    def success(cls, name: str, description: str) -> "GenerationResult":
        return cls(ok=True, name=name, description=description)

    @classmethod
    def failure(cls, reason: str, name: Optional[str] = None) -> "GenerationResult":
        return cls(ok=False, name=name, reason=reason)  # type: ignore[arg-type]

@dataclass(frozen=True)
class CacheEntry:
    subcategory: str
    category: str
    district: str
    city: str
    country: str
    name: str
    description: str
    verified: bool
    place_id: Optional[str] = None
    address: Optional[str] = None
    rating: Optional[float] = None
    coordinates: Optional[Coordinates] = None

    def to_candidate(self) -> Candidate:
        return Candidate(
            name=self.name,
            description=self.description,
            category=self.category,
            subcategory=self.subcategory,
            origin="cache",
            verified=self.verified,
            address=self.address,
            place_id=self.place_id,
            rating=self.rating,
            coordinates=self.coordinates,
            warning=None if self.verified else "Location not verified",
        )

@dataclass(frozen=True)
class ResolvedSlot:
    slot: Slot
    candidate: Candidate

# ----------------------------
# Rewards
# ----------------------------

@dataclass(frozen=True)
class PromoLink:
    link_id: str
    merchant_id: str
    place_name: str
    is_promo_active: bool
    promo_title: Optional[str] = None
    promo_description: Optional[str] = None
    place_id: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None

@dataclass(frozen=True)
class RewardTemplate:
    template_id: str
    merchant_id: str
    tier: str
    name: str
    content: str = ""
    terms: Optional[str] = None
    valid_until: Optional[datetime] = None

@dataclass(frozen=True)
class RewardRecord:
    tier: str
    owner_user: str
    merchant_id: str
    template_id: str
    name: str
    place_name: str
    valid_until: datetime
    slot_index: Optional[int] = None
    record_id: Optional[str] = None

# ----------------------------
# Output
# ----------------------------

@dataclass(frozen=True)
class ItineraryItem:
    order: int
    candidate: Candidate
    slot: Slot
    color_tag: str
    promo: Optional[PromoLink] = None
    reward: Optional[RewardRecord] = None

    @property
    def reward_tier(self) -> Optional[str]:
        return self.reward.tier if self.reward else None

