"""
Service layer for external API calls and the recipe pipeline.
Handles Spoonacular search/enrichment, Gemini generation, and orchestration.
"""

import json
import logging
import re
from typing import List, Dict, Any, Optional, Union
import requests
from google import genai
from app_models import (
    Candidate, RecipeDetail, RecipeRequest, RecipeResult, GenerationBrief, PipelineConfig,
    ConfigurationError, ExternalAPIError, NoCandidatesError, GenerationError
)
from app_matching import map_diet, normalize_ingredient, normalize_ingredients_csv, split_csv
from app_ranking import rank_candidates, select_finalists, pick_finalist, only_these_active
from app_presentation import build_recipe_result

logger = logging.getLogger(__name__)


class SpoonacularService:
    """Handle all Spoonacular API calls."""

    BASE_URL = "https://api.spoonacular.com"
    REQUEST_TIMEOUT = 10

    def __init__(self, api_key: Optional[str]):
        """Initialize Spoonacular service."""
        self.api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self):
        if not self.api_key:
            raise ConfigurationError("SPOONACULAR_API_KEY missing")

    def search_by_ingredients(self, ingredients: str, number: int = 20) -> List[Candidate]:
        """
        Search recipes by ingredients.

        Args:
            ingredients: Comma-separated ingredient list
            number: Number of recipes to return

        Returns:
            Candidates in Spoonacular's order (empty if nothing matched)

        Raises:
            ConfigurationError: If no API key is set
            ExternalAPIError: If the API call fails or returns a non-success status
        """
        self._require_key()
        url = f"{self.BASE_URL}/recipes/findByIngredients"
        params = {
            "ingredients": ingredients,
            "number": number,
            "ranking": 1,
            "ignorePantry": "true",
            "apiKey": self.api_key
        }

        try:
            response = requests.get(url, params=params, timeout=self.REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            logger.error(f"Spoonacular search error: {str(e)}")
            raise ExternalAPIError("Recipe search is unavailable right now.")

        if not response.ok:
            raise ExternalAPIError(
                f"Recipe search failed with status {response.status_code}.",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            raise ExternalAPIError(
                "Recipe search returned an unreadable response.",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )

        if not isinstance(data, list):
            logger.warning("Spoonacular search returned a non-list body; treating as no results")
            return []

        candidates = [Candidate.from_spoonacular(r) for r in data if isinstance(r, dict)]
        logger.info(f"Spoonacular found {len(candidates)} recipes")
        return candidates

    def get_recipe_information(self, recipe_id: int) -> RecipeDetail:
        """
        Get detailed information for a recipe.

        Args:
            recipe_id: Spoonacular recipe ID

        Returns:
            RecipeDetail for the recipe

        Raises:
            ExternalAPIError: If API call fails
        """
        self._require_key()
        url = f"{self.BASE_URL}/recipes/{recipe_id}/information"
        params = {
            "includeNutrition": "false",
            "apiKey": self.api_key
        }

        try:
            response = requests.get(url, params=params, timeout=self.REQUEST_TIMEOUT)
            response.raise_for_status()
            return RecipeDetail.from_spoonacular(response.json())
        except requests.exceptions.RequestException as e:
            logger.warning(f"Spoonacular info error for recipe {recipe_id}: {str(e)}")
            status = e.response.status_code if getattr(e, "response", None) is not None else None
            raise ExternalAPIError("Failed to fetch recipe details", upstream_status=status)
        except ValueError:
            raise ExternalAPIError("Recipe details were not valid JSON")

    def get_analyzed_instructions(self, recipe_id: int) -> List[str]:
        """
        Get the structured steps of a recipe.

        Steps are optional: any failure returns an empty list.
        """
        if not self.api_key:
            return []
        url = f"{self.BASE_URL}/recipes/{recipe_id}/analyzedInstructions"
        params = {"apiKey": self.api_key}

        try:
            response = requests.get(url, params=params, timeout=self.REQUEST_TIMEOUT)
            response.raise_for_status()
            blocks = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.info(f"No structured instructions for recipe {recipe_id}: {str(e)}")
            return []

        if not isinstance(blocks, list) or not blocks or not isinstance(blocks[0], dict):
            return []
        steps = blocks[0].get("steps")
        if not isinstance(steps, list):
            return []
        return [
            str(s.get("step") or "").strip()
            for s in steps
            if isinstance(s, dict) and str(s.get("step") or "").strip()
        ]


_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_EMPHASIS = re.compile(r"\*\*|__")
_LIST_MARKER = re.compile(r"^\s*(?:[-*•]\s+|(?:step\s*)?\d+\s*[.):-]\s+)", re.IGNORECASE)


def extract_json_fragment(text: str) -> Optional[str]:
    """
    Return the first balanced {...} or [...] substring of text.

    Brackets inside JSON strings are ignored.
    """
    start = None
    stack = []
    in_string = False
    escaped = False
    pairs = {"{": "}", "[": "]"}

    for i, ch in enumerate(text):
        if start is None:
            if ch in pairs:
                start = i
                stack.append(pairs[ch])
            continue
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in pairs:
            stack.append(pairs[ch])
        elif stack and ch == stack[-1]:
            stack.pop()
            if not stack:
                return text[start:i + 1]
    return None


def _clean_text(value: Any) -> str:
    return _EMPHASIS.sub("", str(value or "")).strip()


def _clean_list(value: Any) -> List[str]:
    if isinstance(value, str):
        value = value.splitlines()
    if not isinstance(value, list):
        return []
    items = [_LIST_MARKER.sub("", _clean_text(v)) for v in value]
    return [i.strip() for i in items if i.strip()]


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        match = re.search(r"\d+", str(value or ""))
        if not match:
            return default
        number = int(match.group())
    return number if number > 0 else default


def _recipe_from_generated(data: Dict[str, Any], default_minutes: int) -> Optional[RecipeResult]:
    title = _clean_text(data.get("title"))
    if not title:
        return None
    return RecipeResult(
        title=title,
        time_minutes=_positive_int(data.get("time_minutes"), default_minutes),
        serves=_positive_int(data.get("serves"), 2),
        ingredients_list=_clean_list(data.get("ingredients_list")),
        steps=_clean_list(data.get("steps")),
        why_it_fits=_clean_text(data.get("why_it_fits")),
        variation=_clean_text(data.get("variation")),
    )


def parse_generated_recipes(text: str, default_minutes: int = 30) -> List[RecipeResult]:
    """
    Parse a model reply into recipes.

    Accepts {"recipes": [...]}, a bare list, or a single recipe object, with or
    without markdown fences or surrounding prose.

    Raises:
        GenerationError: If no recipe could be recovered
    """
    cleaned = _CODE_FENCE.sub("", (text or "").strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        fragment = extract_json_fragment(cleaned)
        if fragment is None:
            raise GenerationError()
        try:
            data = json.loads(fragment)
        except json.JSONDecodeError:
            raise GenerationError()

    if isinstance(data, dict):
        items = data.get("recipes") if isinstance(data.get("recipes"), list) else [data]
    elif isinstance(data, list):
        items = data
    else:
        raise GenerationError()

    recipes = [
        recipe for recipe in (
            _recipe_from_generated(item, default_minutes) for item in items if isinstance(item, dict)
        )
        if recipe is not None
    ]
    if not recipes:
        raise GenerationError()
    return recipes


class GeminiService:
    """Handle all Gemini AI API calls."""

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.0-flash"):
        """Initialize Gemini client."""
        self.client = genai.Client(api_key=api_key) if api_key else None
        self.model = model

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    @staticmethod
    def build_prompt(brief: GenerationBrief) -> str:
        ingredients = ", ".join(brief.ingredients)
        constraint = (
            "Use ONLY the listed ingredients plus basic pantry staples (salt, pepper, oil, water, spices)."
            if brief.only_these else
            "You may add a few common ingredients if needed."
        )
        return f"""You are MoodChef, a friendly home-cooking assistant. Suggest {brief.count} different recipes.

Mood: {brief.mood}
Time available: {brief.minutes} minutes (total time must not exceed this)
Ingredients on hand: {ingredients}
Dietary preference: {brief.diet or "none"}
Cuisine: {brief.cuisine or "any"}
{constraint}

Return ONLY valid JSON, no additional text, with this EXACT structure:
{{
  "recipes": [
    {{
      "title": "recipe name",
      "time_minutes": 25,
      "serves": 2,
      "ingredients_list": ["200g chicken", "1 cup rice"],
      "steps": ["first step", "second step"],
      "why_it_fits": "one or two sentences",
      "variation": "one suggested twist"
    }}
  ]
}}"""

    def generate_recipes(self, brief: GenerationBrief) -> List[RecipeResult]:
        """
        Ask Gemini for complete recipes matching the brief.

        Raises:
            ConfigurationError: If no API key is set
            ExternalAPIError: If the Gemini call fails
            GenerationError: If the reply cannot be parsed
        """
        if self.client is None:
            raise ConfigurationError("GOOGLE_API_KEY missing")

        try:
            chat = self.client.chats.create(model=self.model)
            response = chat.send_message(self.build_prompt(brief))
            text = response.text or ""
        except Exception as e:
            logger.error(f"Gemini API error: {str(e)}")
            raise ExternalAPIError("Recipe generation is unavailable right now.")

        try:
            recipes = parse_generated_recipes(text, default_minutes=brief.minutes)
        except GenerationError:
            logger.error(f"Unparseable Gemini reply: {text[:200]}")
            raise
        logger.info(f"Gemini generated {len(recipes)} recipes")
        return recipes[:brief.count]


class RecipeService:
    """High-level recipe orchestration."""

    def __init__(
        self,
        spoonacular_service: SpoonacularService,
        gemini_service: GeminiService,
        config: Optional[PipelineConfig] = None
    ):
        """Initialize with dependencies."""
        self.spoonacular = spoonacular_service
        self.gemini = gemini_service
        self.config = config or PipelineConfig()

    def suggest(self, request: RecipeRequest) -> Union[RecipeResult, List[RecipeResult]]:
        """Route a validated request to the search or generative path."""
        if request.source == "generate":
            return self.generate(request)
        return self.search(request)

    def search(self, request: RecipeRequest) -> RecipeResult:
        """
        Complete search workflow: normalize → search → rank → filter → present.

        Args:
            request: Validated recipe request

        Returns:
            RecipeResult for the best matching recipe

        Raises:
            ConfigurationError: If Spoonacular is not configured
            ExternalAPIError: If the search call fails
            NoCandidatesError: If the search returns nothing
            FilterExhaustedError: If only-these mode rejects every candidate
        """
        if not self.spoonacular.is_configured:
            raise ConfigurationError("SPOONACULAR_API_KEY missing")

        ingredients_csv = normalize_ingredients_csv(request.ingredients, self.config.max_ingredients)
        user_ingredients = [normalize_ingredient(i) for i in split_csv(ingredients_csv)]
        profile = map_diet(request.diet)
        strict = only_these_active(request.only_these, self.config)
        logger.info(
            f"Searching recipes for {len(user_ingredients)} ingredients, "
            f"diet={profile.diet_tag}, intolerances={profile.intolerances}, only_these={strict}"
        )

        # Step 1: Find candidates
        candidates = self.spoonacular.search_by_ingredients(
            ingredients_csv,
            number=self.config.candidate_fetch_count
        )
        if not candidates:
            raise NoCandidatesError()

        # Step 2: Rank by overlap
        ranked = rank_candidates(user_ingredients, candidates)

        # Step 3: Enrich and filter
        finalists = select_finalists(
            ranked,
            self.spoonacular.get_recipe_information,
            request.minutes,
            profile,
            only_these=request.only_these,
            config=self.config,
        )
        pick = pick_finalist(finalists, ranked, only_these=request.only_these, config=self.config)

        # Step 4: Instructions and presentation
        steps = []
        if pick.candidate.id is not None:
            steps = self.spoonacular.get_analyzed_instructions(pick.candidate.id)

        result = build_recipe_result(
            pick,
            steps,
            mood=request.mood,
            minutes=request.minutes,
            ingredients_csv=ingredients_csv,
            diet=request.diet,
            only_these=strict,
        )
        logger.info(f"Picked recipe {pick.candidate.id}: {result.title}")
        return result

    def generate(self, request: RecipeRequest) -> List[RecipeResult]:
        """Ask the generative model for recipes; no local ranking applies."""
        ingredients_csv = normalize_ingredients_csv(request.ingredients, self.config.max_ingredients)
        brief = GenerationBrief(
            mood=request.mood,
            minutes=request.minutes,
            ingredients=split_csv(ingredients_csv),
            diet=request.diet,
            cuisine=request.cuisine,
            only_these=only_these_active(request.only_these, self.config),
            count=self.config.generated_recipe_count,
        )
        return self.gemini.generate_recipes(brief)
