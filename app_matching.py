"""
Text heuristics for matching user ingredients against recipes.
Normalization, pantry staples, diet mapping and the diet/allergen check.
"""

import re
from typing import List, Optional

from app_models import DietProfile, RecipeDetail

_NON_LETTERS = re.compile(r"[^a-z\s]")
_PLURAL_SUFFIX = re.compile(r"(es|s)\b")
_INGEST_DELIMITERS = re.compile(r"[,;\n ]+")
_WORD_START = re.compile(r"\b[a-z]")

# Staples that never count as a missing ingredient in only-these mode
PANTRY_STAPLES = frozenset(s.lower() for s in (
    "salt", "sea salt", "kosher salt", "pepper", "black pepper", "chilli", "chili",
    "chilli flakes", "red pepper flakes",
    "oil", "olive oil", "vegetable oil", "canola oil", "sunflower oil", "ghee",
    "sugar", "brown sugar", "caster sugar", "granulated sugar",
    "vinegar", "white vinegar", "apple cider vinegar", "balsamic vinegar", "rice vinegar",
    "soy sauce", "tamari", "fish sauce", "oyster sauce",
    "garlic", "ginger",
    "flour", "all purpose flour", "cornstarch", "baking powder", "baking soda",
    "butter", "water", "stock", "broth", "lemon", "lime",
))

# Checked in order, first hit wins
DIET_KEYWORDS = (
    ("vegan", ("vegan",)),
    ("vegetarian", ("vegetarian",)),
    ("pescetarian", ("pescatarian", "pescetarian")),
    ("ketogenic", ("keto",)),
    ("paleo", ("paleo",)),
    ("low FODMAP", ("low fodmap",)),
    ("whole30", ("whole30",)),
)

INTOLERANCE_KEYWORDS = (
    ("gluten", ("gluten",)),
    ("dairy", ("dairy", "lactose")),
    ("peanut", ("peanut",)),
    ("sesame", ("sesame",)),
    ("soy", ("soy",)),
    ("sulfite", ("sulfite",)),
    ("egg", ("egg",)),
    ("wheat", ("wheat",)),
    ("shellfish", ("shellfish",)),
    ("tree nut", ("treenut", "tree nut")),
)

# Diet tags we cannot infer from ingredients; the recipe's own diet list must carry them
DIET_ANNOTATIONS = {
    "pescetarian": "pescatarian",
    "ketogenic": "ketogenic",
    "paleo": "paleo",
    "low FODMAP": "low fodmap",
    "whole30": "whole 30",
}

# sulfite has no pattern
INTOLERANCE_PATTERNS = {
    "gluten": re.compile(r"(wheat|barley|rye|farro|spelt|semolina|bulgur)"),
    "dairy": re.compile(r"(milk|cheese|butter|cream|yogurt)"),
    "peanut": re.compile(r"\bpeanut\b"),
    "sesame": re.compile(r"\bsesame\b"),
    "soy": re.compile(r"\bsoy\b|\bsoya\b|\btofu\b"),
    "egg": re.compile(r"\begg\b"),
    "wheat": re.compile(r"\bwheat\b"),
    "shellfish": re.compile(r"(shrimp|prawn|crab|lobster|clam|mussel|oyster)"),
    "tree nut": re.compile(r"(almond|walnut|cashew|pistachio|pecan|hazelnut|macadamia)"),
}


def normalize_ingredient(text: str) -> str:
    """
    Canonicalize an ingredient for comparison.

    Lowercases, drops everything but letters and whitespace, and strips a
    trailing "es"/"s" from each word until nothing more comes off. Naive on
    purpose: "cheeses" and "chees" both end up as "chee".

    Args:
        text: Free-text ingredient, e.g. "3 ripe Tomatoes"

    Returns:
        Normalized token, possibly empty
    """
    s = _NON_LETTERS.sub("", (text or "").lower())
    while True:
        stripped = _PLURAL_SUFFIX.sub("", s)
        if stripped == s:
            break
        s = stripped
    return s.strip()


def normalize_ingredients_csv(text: str, limit: int = 20) -> str:
    """Split raw user input on commas, semicolons, newlines and spaces; keep the first `limit` items."""
    pieces = [p.strip() for p in _INGEST_DELIMITERS.split(text or "")]
    return ",".join([p for p in pieces if p][:limit])


def split_csv(csv: str) -> List[str]:
    """Comma-only split for re-reading an already normalized list."""
    return [p.strip() for p in (csv or "").split(",") if p.strip()]


def title_case(text: str) -> str:
    return _WORD_START.sub(lambda m: m.group(0).upper(), text)


def is_pantry(name: str) -> bool:
    """
    Whether an ingredient phrase is an assumed-available staple.

    Substring matches count, so "extra virgin olive oil" is pantry.
    """
    n = (name or "").lower()
    if n in PANTRY_STAPLES:
        return True
    return any(staple in n for staple in PANTRY_STAPLES)


def map_diet(raw: Optional[str]) -> DietProfile:
    """
    Map a free-text diet preference to a diet tag and intolerance tags.

    Args:
        raw: User text such as "vegetarian, no dairy"

    Returns:
        DietProfile; unrecognized text maps to an empty profile
    """
    if not raw or not raw.strip():
        return DietProfile()
    s = raw.lower()

    diet_tag = None
    for tag, keywords in DIET_KEYWORDS:
        if any(k in s for k in keywords):
            diet_tag = tag
            break

    intolerances = [
        tag for tag, keywords in INTOLERANCE_KEYWORDS
        if any(k in s for k in keywords)
    ]
    return DietProfile(diet_tag=diet_tag, intolerances=intolerances)


def _has_diet(detail: RecipeDetail, key: str) -> bool:
    return any(str(d).lower() == key.lower() for d in (detail.diets or []))


def passes_diet(detail: Optional[RecipeDetail], profile: DietProfile) -> bool:
    """
    Best-effort check of a recipe against a diet profile.

    Trusts the recipe's vegan/vegetarian flags and diet annotations, and scans
    ingredient lines for allergen keywords. Missing detail passes.
    """
    if detail is None:
        return True

    tag = profile.diet_tag
    if tag == "vegan" and detail.vegan is False:
        return False
    if tag == "vegetarian" and detail.vegetarian is False:
        return False
    if tag in DIET_ANNOTATIONS and not _has_diet(detail, DIET_ANNOTATIONS[tag]):
        return False

    if detail.extended_ingredients and profile.intolerances:
        lines = [line.label.lower() for line in detail.extended_ingredients]
        for intolerance in profile.intolerances:
            pattern = INTOLERANCE_PATTERNS.get(intolerance)
            if pattern and any(pattern.search(line) for line in lines):
                return False
    return True
