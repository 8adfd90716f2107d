import pytest

from errors import ConfigurationError
from services.taxonomy import FILLABLE_CATEGORIES, load_taxonomy, parse_taxonomy

MINIMAL = """
time_slots:
  - {code: breakfast, time: "08:00"}
  - {code: morning, time: "10:00"}
  - {code: overnight, time: "23:00"}
worker_exclusions:
  morning: [bar]
categories:
  - {code: food, zh: 美食, en: Food, time_slots: [breakfast], subcategories: [{code: cafe, zh: 咖啡廳, en: Cafe, meals: [breakfast]}]}
  - {code: stay, zh: 住宿, en: Stay, time_slots: [overnight], subcategories: [{code: hotel, zh: 飯店, en: Hotel}]}
"""

def _with_fillables(body: str) -> str:
    extra = "".join(
        f"  - {{code: {c}, zh: {c}, en: {c}, time_slots: [morning], subcategories: [{{code: {c}_x, zh: x, en: x}}]}}\n"
        for c in FILLABLE_CATEGORIES
    )
    return body + extra

def test_bundled_catalog_loads(taxonomy):
    assert {c.code for c in taxonomy.categories} == {"food", "stay", *FILLABLE_CATEGORIES}
    assert taxonomy.suggested_time("dinner") == "18:30"
    assert taxonomy.time_rank("breakfast") < taxonomy.time_rank("overnight")
    assert "bar" in taxonomy.excluded_for("morning")
    assert taxonomy.excluded_for(None) == frozenset()

def test_meal_options(taxonomy):
    breakfast = {s.code for s in taxonomy.meal_options("breakfast")}
    assert "local_breakfast" in breakfast and "barbecue" not in breakfast
    assert {s.category for s in taxonomy.meal_options("stay")} == {"stay"}

def test_localized_labels(taxonomy):
    assert taxonomy.category("scenery").label.get("ja") == "観光スポット"
    # subcategories without a Japanese label fall back to Chinese
    assert taxonomy.subcategory("temple").label.get("ja") == "寺廟宗教"
    assert taxonomy.subcategory("temple").label.get("en") == "Temple"

def test_unknown_codes_raise(taxonomy):
    with pytest.raises(ConfigurationError):
        taxonomy.category("nope")
    with pytest.raises(ConfigurationError):
        taxonomy.subcategory("nope")

def test_load_from_yaml_file(tmp_path):
    path = tmp_path / "taxonomy.yml"
    path.write_text(_with_fillables(MINIMAL), encoding="utf-8")

    tax = load_taxonomy(str(path))

    assert tax.subcategory("cafe").meals == ("breakfast",)
    assert tax.anti_fatigue.max_consecutive == 2

def test_missing_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        load_taxonomy(str(tmp_path / "missing.yml"))

def test_missing_categories_rejected():
    import yaml
    with pytest.raises(ConfigurationError):
        parse_taxonomy(yaml.safe_load(MINIMAL))

def test_unknown_time_slot_rejected():
    import yaml
    raw = yaml.safe_load(_with_fillables(MINIMAL))
    raw["categories"][0]["time_slots"] = ["brunch_hour"]
    with pytest.raises(ConfigurationError):
        parse_taxonomy(raw)
