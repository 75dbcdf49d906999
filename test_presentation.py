"""
Unit tests for building the client-facing recipe.
"""

from app_models import Finalist
from app_presentation import (
    FALLBACK_STEP,
    build_ingredient_list,
    build_recipe_result,
    build_steps,
    build_title,
    build_variation,
    build_why,
    extract_steps_from_html,
    order_ingredients_for_hero,
)
from app_ranking import score_candidates
from conftest import candidate, detail, line


class TestTitle:
    def test_prefixes_used_user_ingredients(self):
        hit = candidate(1, used=["chicken", "rice"])
        title = build_title("Fried Rice", ["chicken", "Rice", "garlic"], ["chicken", "rice", "garlic"], hit)
        assert title == "Chicken • Rice — Fried Rice"

    def test_no_prefix_without_matches(self):
        hit = candidate(1, used=["beef"])
        assert build_title("Stew", ["tofu"], ["tofu"], hit) == "Stew"


class TestIngredientOrdering:
    """Test hero-first ingredient ordering."""

    def test_user_ingredients_first_in_user_spelling(self):
        hit = candidate(
            1,
            used=[line("chicken", "1 lb chicken thighs"), line("rice", "2 cups rice")],
            missed=[line("peas", "1 cup peas")],
        )
        info = detail(1, extended_ingredients=[
            line("chicken", "1 lb chicken thighs"),
            line("soy sauce", "2 tbsp soy sauce"),
        ])
        lines = build_ingredient_list(hit, info)
        assert [l.label for l in lines] == [
            "1 lb chicken thighs", "2 cups rice", "1 cup peas", "2 tbsp soy sauce"
        ]
        ordered = order_ingredients_for_hero(lines, ["Rice", "chicken"], ["rice", "chicken"])
        assert ordered == ["chicken", "Rice", "1 cup peas", "2 tbsp soy sauce"]

    def test_heroes_are_deduplicated(self):
        hit = candidate(1, used=[line("garlic", "2 cloves garlic"), line("garlic", "1 tsp garlic, minced")])
        ordered = order_ingredients_for_hero(build_ingredient_list(hit, None), ["garlic"], ["garlic"])
        assert ordered == ["garlic"]

    def test_no_detail(self):
        hit = candidate(1, missed=["butter"])
        assert order_ingredients_for_hero(build_ingredient_list(hit, None), ["tofu"], ["tofu"]) == ["butter"]


class TestSteps:
    """Test step derivation from unstructured text."""

    def test_step_markers(self):
        html = "<p>Step 1: Boil the water. Step 2: Add pasta and cook.</p>"
        assert extract_steps_from_html(html) == ["Boil the water.", "Add pasta and cook."]

    def test_sentence_split_drops_short_pieces(self):
        assert extract_steps_from_html("Heat oil. Add onions and fry. Ok.") == [
            "Heat oil.", "Add onions and fry."
        ]

    def test_other_languages(self):
        assert extract_steps_from_html("Paso 1) Cortar la cebolla. Étape 2- Mélanger") == [
            "Cortar la cebolla.", "Mélanger"
        ]

    def test_capped_at_ten(self):
        text = " ".join(f"Sentence number {i}." for i in range(15))
        assert len(extract_steps_from_html(text)) == 10

    def test_empty(self):
        assert extract_steps_from_html("") == []
        assert extract_steps_from_html("<br/>") == []

    def test_structured_steps_win(self):
        info = detail(1, summary="Mix everything together.")
        assert build_steps([" Chop.  ", ""], info) == ["Chop."]

    def test_summary_then_fallback(self):
        assert build_steps([], detail(1, summary="Mix everything together.")) == ["Mix everything together."]
        assert build_steps([], detail(1, instructions="<ol><li>Whisk the eggs.</li></ol>")) == ["Whisk the eggs."]
        assert build_steps([], None) == [FALLBACK_STEP]


class TestWhy:
    """Test the explanation text."""

    def test_minimal(self):
        hit = score_candidates(["chicken", "rice", "garlic"], [candidate(1, used=["chicken", "rice", "garlic"])])[0]
        why = build_why("cozy", 25, "chicken,rice,garlic", None, hit, 3, False)
        assert why == (
            "Matches your mood: cozy. Fits your time (~25 min). "
            "Uses 3/3 of your ingredients: chicken, rice, garlic."
        )

    def test_all_clauses(self):
        hit = score_candidates(["a"], [candidate(1, used=["a"])])[0]
        why = build_why("lazy", 10, "a,b,c,d,e,f", "vegan", hit, 6, True)
        assert "Uses 1/6 of your ingredients: a, b, c, d, e…." in why
        assert why.endswith("Diet preference: vegan. Only-these mode: allowing pantry staples only.")


class TestVariation:
    """Test variation suggestions in priority order."""

    def test_missing_ingredients_first(self):
        hit = candidate(1, missed=[line("peas", "1 cup peas"), line("carrot", "2 carrots"), line("leek", "1 leek")])
        info = detail(1, cuisines=["Italian"])
        assert build_variation(hit, info) == "Try adding 1 cup peas, 2 carrots for extra flavor."

    def test_cuisine_and_dish_type(self):
        hit = candidate(1)
        assert "pasta water" in build_variation(hit, detail(1, cuisines=["Italian"]))
        assert "lime juice" in build_variation(hit, detail(1, cuisines=["Mexican"]))
        assert "toasted nuts" in build_variation(hit, detail(1, dish_types=["salad"]))
        assert build_variation(hit, None).startswith("Variation: adjust herbs/spices")


class TestRecipeResult:
    """Test assembling the full result."""

    def test_time_never_exceeds_budget(self):
        hit = score_candidates(["chicken"], [candidate(1, used=["chicken"])])[0]
        result = build_recipe_result(
            Finalist(hit, detail(1, ready=45, servings=4, title="Roast Chicken")),
            ["Roast it."], "hungry", 30, "chicken", None, False,
        )
        assert result.time_minutes == 30
        assert result.serves == 4
        assert result.title == "Chicken — Roast Chicken"
        assert result.steps == ["Roast it."]

    def test_unenriched_fallback(self):
        hit = score_candidates(["tofu"], [candidate(9, used=["beef"], title="Beef Stew")])[0]
        result = build_recipe_result(Finalist(hit, None), [], "cozy", 40, "tofu", None, False)
        assert result.title == "Beef Stew"
        assert result.time_minutes == 40
        assert result.serves == 2
        assert result.steps == [FALLBACK_STEP]
        assert result.to_dict()["ingredients_list"] == ["beef"]
