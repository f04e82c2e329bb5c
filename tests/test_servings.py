"""
Tests for batch-size and serving-count heuristics.

Run: pytest tests/test_servings.py -v
"""
import pytest

from nutripal.models.schemas import Ingredient
from nutripal.utils.servings import (
    batch_confirmation_prompt, calculate_batch_size, detect_servings, estimate_servings,
    parse_batch_size_reply, parse_servings_reply,
)

PANCAKES = [
    Ingredient(name="flour", quantity=2, unit="cups"),
    Ingredient(name="egg", quantity=1),
    Ingredient(name="butter", quantity=100, unit="g"),
]


class TestCalculateBatchSize:

    def test_mixed_units_convert_to_grams(self):
        batch = calculate_batch_size(PANCAKES)
        # 2 cups flour at 0.53 g/ml + one egg + 100g butter
        assert batch.total_grams == pytest.approx(400.8, abs=0.1)
        assert batch.total_ml == 0
        assert batch.confidence == "high"
        assert batch.unconverted_ingredients == []

    def test_liquids_count_as_volume_and_weight(self):
        batch = calculate_batch_size([
            Ingredient(name="vegetable broth", quantity=1, unit="l"),
            Ingredient(name="carrots", quantity=2),
        ])
        assert batch.total_ml == 1000
        assert batch.total_grams == 1122

    def test_mass_units(self):
        batch = calculate_batch_size([
            Ingredient(name="chicken thighs", quantity=1, unit="kg"),
            Ingredient(name="rice", quantity=8, unit="oz"),
        ])
        assert batch.total_grams == pytest.approx(1226.8, abs=0.1)

    def test_unmeasurable_ingredients_lower_confidence(self):
        batch = calculate_batch_size([
            Ingredient(name="some stock"),
            Ingredient(name="bunch of herbs"),
            Ingredient(name="water", quantity=2, unit="cups"),
        ])
        assert batch.confidence == "low"
        assert batch.unconverted_ingredients == ["some stock", "bunch of herbs"]
        assert "some stock" in batch_confirmation_prompt(batch)

    def test_half_converted_is_medium(self):
        batch = calculate_batch_size([Ingredient(name="mystery spice"), Ingredient(name="egg", quantity=2)])
        assert batch.confidence == "medium"


class TestDetectServings:

    def test_small_simple_recipe_is_one_serving(self):
        detection = detect_servings(PANCAKES, "Pancakes")
        assert detection.is_single_serving
        assert detection.suggested_servings == 1
        assert detection.confidence == "high"

    def test_large_soup_is_a_batch(self):
        ingredients = [
            Ingredient(name="broth", quantity=2, unit="l"),
            Ingredient(name="lentils", quantity=500, unit="g"),
        ]
        detection = detect_servings(ingredients, "Lentil soup", "big batch for the week")
        assert not detection.is_single_serving
        assert detection.suggested_servings > 1

    def test_keywords_push_towards_single(self):
        ingredients = [Ingredient(name="oats", quantity=80, unit="g"), Ingredient(name="milk", quantity=1, unit="cup")]
        detection = detect_servings(ingredients, "Oat bowl", "my breakfast")
        assert detection.is_single_serving

    @pytest.mark.parametrize("grams,expected", [(0, 4), (300, 1), (600, 2), (1200, 4), (1800, 6), (2700, 8), (4500, 16)])
    def test_estimate_servings(self, grams, expected):
        assert estimate_servings(grams) == expected


class TestReplies:

    @pytest.mark.parametrize("reply,grams,ml,confirmed", [
        ("about 1.5kg", 1500, None, False),
        ("2 liters", None, 2000, False),
        ("500 g", 500, None, False),
        ("yes", None, None, True),
        ("that's right", None, None, True),
        ("no idea", None, None, False),
    ])
    def test_batch_size_reply(self, reply, grams, ml, confirmed):
        answer = parse_batch_size_reply(reply)
        assert (answer.grams, answer.ml, answer.confirmed) == (grams, ml, confirmed)

    @pytest.mark.parametrize("reply,servings,confirmed", [
        ("4", 4, False),
        ("it makes four", 4, False),
        ("2.5 servings", 2.5, False),
        ("half", 0.5, False),
        ("yes", None, True),
        ("sure, that works", None, True),
        ("hmm", None, False),
    ])
    def test_servings_reply(self, reply, servings, confirmed):
        answer = parse_servings_reply(reply)
        assert (answer.servings, answer.confirmed) == (servings, confirmed)
