"""
Turns the chosen recipe into the response shown to the user.
"""

import re
from typing import List, Optional

from app_matching import normalize_ingredient, split_csv, title_case
from app_models import Candidate, Finalist, IngredientLine, RecipeDetail, RecipeResult
from app_ranking import used_names

DEFAULT_SERVINGS = 2
MAX_DERIVED_STEPS = 10
MIN_STEP_LENGTH = 7
FALLBACK_STEP = "Open the linked recipe page and follow the instructions."

_TAGS = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_STEP_BREAK = re.compile(r"(?:(?:Step|Étape|Paso)\s*\d+[:.)-]\s*)|(?<=\.)\s+", re.IGNORECASE)


def build_title(base_title: str, user_raw: List[str], user_norm: List[str], candidate: Candidate) -> str:
    """Prefix the recipe title with the user's ingredients it actually uses."""
    used = used_names(candidate)
    heroes = [title_case(raw) for raw, norm in zip(user_raw, user_norm) if norm in used]
    if not heroes:
        return base_title
    return f"{' • '.join(heroes)} — {base_title}"


def build_ingredient_list(candidate: Candidate, detail: Optional[RecipeDetail]) -> List[IngredientLine]:
    """Used, missed, then detail lines, without repeating the same text."""
    lines = list(candidate.used_ingredients) + list(candidate.missed_ingredients)
    if detail is not None:
        lines += detail.extended_ingredients

    seen = set()
    out: List[IngredientLine] = []
    for line in lines:
        label = line.label
        if label and label not in seen:
            seen.add(label)
            out.append(line)
    return out


def order_ingredients_for_hero(lines: List[IngredientLine], user_raw: List[str], user_norm: List[str]) -> List[str]:
    """
    Put the user's own ingredients first, spelled the way the user typed them.

    Lines are matched on their normalized name, then on their full text. Each
    user ingredient appears once; everything else keeps collaborator order.
    """
    spelling = {}
    for raw, norm in zip(user_raw, user_norm):
        spelling.setdefault(norm, raw)

    heroes: List[str] = []
    others: List[str] = []
    for line in lines:
        match = None
        for text in (line.name, line.original):
            if text and normalize_ingredient(text) in spelling:
                match = spelling[normalize_ingredient(text)]
                break
        if match is None:
            others.append(line.label)
        elif match not in heroes:
            heroes.append(match)
    return heroes + [o for o in others if o not in heroes]


def extract_steps_from_html(html: str) -> List[str]:
    """
    Derive rough steps from a summary or instructions blob.

    Splits on "Step 1:"-style markers (English, French, Spanish) and sentence
    ends. Best effort only.
    """
    if not html:
        return []
    text = _WHITESPACE.sub(" ", _TAGS.sub(" ", html)).strip()
    parts = [p.strip() for p in _STEP_BREAK.split(text) if p]
    return [p for p in parts if len(p) >= MIN_STEP_LENGTH][:MAX_DERIVED_STEPS]


def build_steps(structured: List[str], detail: Optional[RecipeDetail]) -> List[str]:
    steps = [s.strip() for s in structured if s and s.strip()]
    if steps:
        return steps
    blob = ""
    if detail is not None:
        blob = detail.summary or detail.instructions
    return extract_steps_from_html(blob) or [FALLBACK_STEP]


def build_why(
    mood: str,
    time_minutes: int,
    ingredients_csv: str,
    diet: Optional[str],
    candidate: Candidate,
    total_provided: int,
    only_these: bool
) -> str:
    """Explain, clause by clause, why this recipe fits the request."""
    items = split_csv(ingredients_csv)
    top = ", ".join(items[:5])
    more = "…" if len(items) > 5 else ""
    used = candidate.overlap_count

    clauses = [
        f"Matches your mood: {mood}." if mood else "",
        f"Fits your time (~{time_minutes} min).",
        f"Uses {used}/{total_provided} of your ingredients: {top}{more}." if items else "",
        f"Diet preference: {diet}." if diet else "",
        "Only-these mode: allowing pantry staples only." if only_these else "",
    ]
    return " ".join(c for c in clauses if c)


def build_variation(candidate: Candidate, detail: Optional[RecipeDetail]) -> str:
    missed = [line.original for line in candidate.missed_ingredients if line.original]
    if missed:
        return f"Try adding {', '.join(missed[:2])} for extra flavor."
    cuisines = detail.cuisines if detail else []
    dish_types = detail.dish_types if detail else []
    if "Italian" in cuisines:
        return "Variation: add chilli flakes and a splash of pasta water for gloss."
    if "Mexican" in cuisines:
        return "Variation: finish with lime juice and fresh coriander."
    if "salad" in dish_types:
        return "Variation: toss with toasted nuts or seeds for crunch."
    return "Variation: adjust herbs/spices to match your mood (smoky paprika, zesty lemon, or fresh herbs)."


def build_recipe_result(
    pick: Finalist,
    steps: List[str],
    mood: str,
    minutes: int,
    ingredients_csv: str,
    diet: Optional[str],
    only_these: bool
) -> RecipeResult:
    """
    Assemble the client-facing recipe.

    Args:
        pick: Chosen finalist (detail may be None for the unfiltered fallback)
        steps: Structured steps from the collaborator, possibly empty
        mood: User's mood
        minutes: User's time budget
        ingredients_csv: Ingestion-normalized ingredient CSV
        diet: Raw diet text, if any
        only_these: Whether only-these mode was applied

    Returns:
        RecipeResult
    """
    candidate, detail = pick.candidate, pick.detail
    user_raw = split_csv(ingredients_csv)
    user_norm = [normalize_ingredient(i) for i in user_raw]

    base_title = (detail.title if detail else "") or candidate.title or "Recipe"

    ready = detail.ready_in_minutes if detail else None
    if ready is None:
        ready = candidate.ready_in_minutes
    if ready is None:
        ready = minutes

    serves = detail.servings if detail and detail.servings else DEFAULT_SERVINGS

    return RecipeResult(
        title=build_title(base_title, user_raw, user_norm, candidate),
        time_minutes=min(ready, minutes),
        serves=serves,
        ingredients_list=order_ingredients_for_hero(
            build_ingredient_list(candidate, detail), user_raw, user_norm
        ),
        steps=build_steps(steps, detail),
        why_it_fits=build_why(
            mood, min(ready, minutes), ingredients_csv, diet, candidate, len(user_norm), only_these
        ),
        variation=build_variation(candidate, detail),
    )
