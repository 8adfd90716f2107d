import json
import random
from typing import Callable, Dict, List, Optional

import pytest

from config import settings as base_settings
from services.domain import Coordinates, DistrictContext, LocalizedName, PlaceMatch
from services.memory_store import (
    InMemoryInventory,
    InMemoryKnowledgeCache,
    InMemoryMerchantPromotions,
    InMemoryUserCollections,
)
from services.taxonomy import load_taxonomy

WANHUA_CENTER = Coordinates(lat=25.0286, lng=121.4979)

def answer(name: str, description: str = "好地方") -> str:
    return json.dumps({"place_name": name, "description": description}, ensure_ascii=False)

class ScriptedGenerator:
    """Returns canned completions in order; after the script runs out, keeps minting unique names."""

    def __init__(self, script: Optional[List[str]] = None, prefix: str = "在地好店") -> None:
        self.script = list(script or [])
        self.prompts: List[str] = []
        self.prefix = prefix

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.script:
            return self.script.pop(0)
        return answer(f"{self.prefix}{len(self.prompts)}號")

    @property
    def calls(self) -> int:
        return len(self.prompts)

class FakePlaces:
    """Every query matches a place at `center` unless `misses` says otherwise."""

    def __init__(self, center: Coordinates = WANHUA_CENTER,
                 misses: Optional[Callable[[str], bool]] = None,
                 overrides: Optional[Dict[str, List[PlaceMatch]]] = None,
                 geocode_result: Optional[Coordinates] = None) -> None:
        self.center = center
        self.misses = misses or (lambda q: False)
        self.overrides = overrides or {}
        self.geocode_result = geocode_result
        self.queries: List[str] = []

    async def search_text(self, query: str) -> List[PlaceMatch]:
        self.queries.append(query)
        name = query.split(" ")[0]
        if name in self.overrides:
            return self.overrides[name]
        if self.misses(query):
            return []
        offset = (len(self.queries) % 7) * 0.001
        return [PlaceMatch(
            place_id=f"pid-{name}",
            name=name,
            address=f"台北市萬華區 {name}",
            coordinates=Coordinates(lat=self.center.lat + offset, lng=self.center.lng + offset),
            rating=4.2,
            types=("tourist_attraction",),
            business_status="OPERATIONAL",
        )]

    async def geocode(self, address: str) -> Optional[Coordinates]:
        return self.geocode_result

@pytest.fixture
def taxonomy():
    return load_taxonomy(base_settings.TAXONOMY_PATH)

@pytest.fixture
def settings():
    return base_settings.model_copy(update={
        "GOOGLE_MAPS_API_KEY": "test-maps-key",
        "RETRY_BACKOFF_S": 0.0,
        "CACHE_USE_PROBABILITY": 0.0,
    })

@pytest.fixture
def district():
    return DistrictContext(
        district_id=101,
        district=LocalizedName(zh="萬華區", en="Wanhua District"),
        region_id=10,
        region=LocalizedName(zh="台北市", en="Taipei City"),
        country_id=1,
        country=LocalizedName(zh="台灣", en="Taiwan"),
        centroid=WANHUA_CENTER,
    )

@pytest.fixture
def rng():
    return random.Random(1234)

@pytest.fixture
def cache():
    return InMemoryKnowledgeCache()

@pytest.fixture
def inventory():
    return InMemoryInventory()

@pytest.fixture
def collections():
    return InMemoryUserCollections()

@pytest.fixture
def promotions():
    return InMemoryMerchantPromotions()

def make_engine(settings, taxonomy, generator=None, places=None, seed_rng=None):
    """Engine over the bundled seed stores with fake AI and place search."""
    from services.itinerary_engine import ItineraryEngine
    from services.memory_store import load_seed

    stores = load_seed(settings.SEED_PATH, rng=seed_rng or random.Random(7))
    engine = ItineraryEngine(
        taxonomy=taxonomy,
        settings=settings,
        locations=stores.locations,
        cache=stores.cache,
        generator=generator or ScriptedGenerator(),
        collections=stores.collections,
        inventory=stores.inventory,
        promotions=stores.promotions,
        places=places if places is not None else FakePlaces(),
    )
    return engine, stores
