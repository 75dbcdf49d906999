"""
Shared test helpers for MoodChef: in-memory DB setup and fake collaborators.
"""

import os

# Must be set before app_models creates its engine
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("SECRET_KEY", "test_secret")

from app_models import Candidate, ExternalAPIError, IngredientLine, RecipeDetail


def line(name, original=None):
    return IngredientLine(name=name, original=original if original is not None else name)


def candidate(id, used=(), missed=(), title=None, used_count=None, missed_count=None, ready=None):
    used_lines = [line(u) if isinstance(u, str) else u for u in used]
    missed_lines = [line(m) if isinstance(m, str) else m for m in missed]
    return Candidate(
        id=id,
        title=title or f"Recipe {id}",
        used_ingredients=used_lines,
        missed_ingredients=missed_lines,
        used_ingredient_count=len(used_lines) if used_count is None else used_count,
        missed_ingredient_count=len(missed_lines) if missed_count is None else missed_count,
        ready_in_minutes=ready,
    )


def detail(id, ready=20, **kwargs):
    kwargs.setdefault("title", f"Recipe {id}")
    return RecipeDetail(id=id, ready_in_minutes=ready, **kwargs)


class FakeSpoonacular:
    """In-memory stand-in for SpoonacularService."""

    def __init__(self, candidates=None, details=None, steps=None, configured=True, search_error=None):
        self.candidates = candidates or []
        self.details = details or {}
        self.steps = steps or {}
        self.configured = configured
        self.search_error = search_error
        self.searches = []
        self.lookups = []

    @property
    def is_configured(self):
        return self.configured

    def search_by_ingredients(self, ingredients, number=20):
        self.searches.append((ingredients, number))
        if self.search_error:
            raise self.search_error
        return list(self.candidates)

    def get_recipe_information(self, recipe_id):
        self.lookups.append(recipe_id)
        found = self.details.get(recipe_id)
        if found is None:
            raise ExternalAPIError("Failed to fetch recipe details", upstream_status=404)
        return found

    def get_analyzed_instructions(self, recipe_id):
        return list(self.steps.get(recipe_id, []))


class FakeGemini:
    """Stand-in for GeminiService that returns canned recipes."""

    def __init__(self, recipes=None, error=None, configured=True):
        self.recipes = recipes or []
        self.error = error
        self.configured = configured
        self.briefs = []

    @property
    def is_configured(self):
        return self.configured

    def generate_recipes(self, brief):
        self.briefs.append(brief)
        if self.error:
            raise self.error
        return list(self.recipes)
