from __future__ import annotations

import re
from typing import List, Literal, Optional
from pydantic import (
    BaseModel,
    Field,
    ConfigDict,
    field_validator,
    conint,
    confloat,
    AliasChoices,
)

USER_ID_RE = re.compile(r"^[A-Za-z0-9_\-:.@]{1,128}$")

Language = Literal["zh-TW", "en", "ja", "ko"]

# -----------------------------
# Shared atoms
# -----------------------------

class Coordinates(BaseModel):
    model_config = ConfigDict(extra="forbid")
    lat: confloat(ge=-90, le=90)
    lng: confloat(ge=-180, le=180)

class DistrictOut(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str
    region: str
    country: str

class PromoOut(BaseModel):
    model_config = ConfigDict(extra="forbid")
    merchant_id: str
    title: Optional[str] = None
    description: Optional[str] = None

# -----------------------------
# Request
# -----------------------------

class ItineraryRequest(BaseModel):
    # camelCase aliases accepted for mobile clients
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    region_id: Optional[conint(ge=1)] = Field(
        default=None, validation_alias=AliasChoices("region_id", "regionId")
    )
    country_id: Optional[conint(ge=1)] = Field(
        default=None, validation_alias=AliasChoices("country_id", "countryId")
    )
    item_count: conint(ge=5, le=12) = Field(
        default=8, validation_alias=AliasChoices("item_count", "itemCount")
    )
    language: Language = "zh-TW"
    user_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("user_id", "userId"),
        description="Authenticated user; rewards are only rolled when present.",
    )

    @field_validator("user_id")
    @classmethod
    def _validate_user_id(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            return None
        if not USER_ID_RE.match(v):
            raise ValueError("user_id contains unsupported characters")
        return v

# -----------------------------
# Response
# -----------------------------

class ItineraryItemOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    order: conint(ge=1)
    name: str
    description: str = ""
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    category: str
    category_label: Optional[str] = None
    subcategory: str
    subcategory_label: Optional[str] = None
    time_slot: str
    suggested_time: str
    energy_level: Literal["high", "medium", "low"]
    color_tag: str
    verified: bool
    warning: Optional[str] = None
    source: Literal["cache", "generated"]
    worker: Optional[str] = None
    place_id: Optional[str] = None
    rating: Optional[confloat(ge=0, le=5)] = None
    reward_tier: Optional[str] = None
    reward_id: Optional[str] = None
    promo: Optional[PromoOut] = None

class Meta(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: str = "1.0.0"
    requested_count: int
    returned_count: int
    cache_hits: int = 0
    ai_generated: int = 0
    verified_count: int = 0
    rewards_won: int = 0
    shortage_warning: Optional[str] = None
    duration_ms: Optional[int] = None
    generated_at_iso: Optional[str] = None

class ItineraryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    district: DistrictOut
    items: List[ItineraryItemOut] = Field(default_factory=list)
    meta: Meta

    @field_validator("items", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return [] if v is None else v
