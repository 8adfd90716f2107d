import asyncio
import random

import httpx
import pytest

from errors import ConfigurationError, NoDistrictFound
from models import ItineraryRequest
from services.places_service import GooglePlacesClient

from conftest import FakePlaces, answer, make_engine

class SameAnswer:
    """A model that only ever knows one place."""

    def __init__(self, name="青山宮"):
        self.name = name
        self.calls = 0

    async def generate(self, prompt):
        self.calls += 1
        return answer(self.name)

def _generate(engine, **kwargs):
    req = ItineraryRequest(**{"region_id": 10, **kwargs})
    return asyncio.run(engine.generate(req, rng=random.Random(99)))

@pytest.mark.parametrize("n", [5, 8, 12])
def test_full_run_returns_requested_count(settings, taxonomy, n):
    engine, _ = make_engine(settings, taxonomy)

    resp = _generate(engine, item_count=n)

    assert resp.meta.requested_count == n
    assert resp.meta.returned_count == n == len(resp.items)
    assert [i.order for i in resp.items] == list(range(1, n + 1))
    assert len({i.name for i in resp.items}) == n
    assert resp.meta.shortage_warning is None
    assert resp.district.region == "台北市"
    assert resp.meta.verified_count == n
    assert resp.meta.ai_generated + resp.meta.cache_hits == n

def test_items_carry_taxonomy_fields(settings, taxonomy):
    engine, _ = make_engine(settings, taxonomy)

    resp = _generate(engine, language="en")

    for item in resp.items:
        assert item.color_tag == taxonomy.color_for(item.category)
        assert item.category_label == taxonomy.category(item.category).label.get("en")
        assert item.suggested_time
        assert item.coordinates is not None
    assert resp.district.name.endswith("District")

def test_stay_slot_appears_for_large_itinerary(settings, taxonomy):
    engine, _ = make_engine(settings, taxonomy)
    resp = _generate(engine, item_count=12)
    assert any(i.category == "stay" for i in resp.items)

def test_small_district_gets_shortage_warning(settings, taxonomy):
    engine, _ = make_engine(settings, taxonomy, generator=SameAnswer())

    resp = _generate(engine, item_count=6, language="en")

    assert resp.meta.returned_count == 1
    assert resp.items[0].name == "青山宮"
    assert resp.meta.shortage_warning is not None
    assert "1" in resp.meta.shortage_warning

def test_unverifiable_district_still_answers(settings, taxonomy):
    engine, _ = make_engine(settings, taxonomy, places=FakePlaces(misses=lambda q: True))

    resp = _generate(engine, item_count=5)

    assert resp.meta.returned_count == 5
    assert resp.meta.verified_count == 0
    assert all(i.warning for i in resp.items)

def test_cache_first_run_uses_seeded_entries(settings, taxonomy):
    cfg = settings.model_copy(update={"CACHE_USE_PROBABILITY": 1.0})
    engine, stores = make_engine(cfg, taxonomy)

    resp = _generate(engine, region_id=11, item_count=12)

    hits = [i for i in resp.items if i.source == "cache"]
    assert resp.meta.cache_hits == len(hits)
    assert all(i.name == "湯圍溝溫泉公園" for i in hits)

def test_generated_places_are_remembered(settings, taxonomy):
    engine, stores = make_engine(settings, taxonomy)
    before = len(stores.cache)

    resp = _generate(engine)

    assert len(stores.cache) > before
    assert resp.meta.ai_generated > 0

def test_missing_ids_is_configuration_error(settings, taxonomy):
    engine, _ = make_engine(settings, taxonomy)
    with pytest.raises(ConfigurationError):
        _generate(engine, region_id=None)

def test_unknown_region_raises_no_district(settings, taxonomy):
    engine, _ = make_engine(settings, taxonomy)
    with pytest.raises(NoDistrictFound):
        _generate(engine, region_id=999)

def test_without_place_search_items_are_unverified(settings, taxonomy):
    cfg = settings.model_copy(update={"GOOGLE_MAPS_API_KEY": ""})
    engine, _ = make_engine(cfg, taxonomy)

    resp = _generate(engine, item_count=5)

    assert resp.meta.returned_count == 5
    assert resp.meta.verified_count == 0

def test_broken_place_search_still_returns_itinerary(settings, taxonomy):
    def handler(request):
        return httpx.Response(200, text="<html>quota page</html>")

    places = GooglePlacesClient("k", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    engine, _ = make_engine(settings, taxonomy, places=places)

    resp = _generate(engine, item_count=6)

    assert resp.meta.returned_count == 6
    assert resp.meta.verified_count == 0
    assert all(i.warning for i in resp.items)
