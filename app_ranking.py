"""
Candidate ranking and finalist selection for the search path.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from app_matching import is_pantry, normalize_ingredient, passes_diet
from app_models import (
    Candidate, DietProfile, ExternalAPIError, FilterExhaustedError, Finalist,
    NoCandidatesError, PipelineConfig, RecipeDetail
)

logger = logging.getLogger(__name__)

# Ready time assumed when neither the search nor the detail reports one
UNKNOWN_READY_MINUTES = 999

ONLY_THESE_HINT = "Try unchecking 'only these ingredients' or add one more ingredient."

DetailLookup = Callable[[int], RecipeDetail]


def used_names(candidate: Candidate) -> set:
    """Normalized names of the ingredients a candidate uses from the pantry."""
    return {normalize_ingredient(i.name or i.original) for i in candidate.used_ingredients}


def score_candidates(user_ingredients: Iterable[str], candidates: List[Candidate]) -> List[Candidate]:
    """
    Attach overlap counts to candidates.

    Args:
        user_ingredients: Normalized user ingredients (duplicates are ignored)
        candidates: Search results in collaborator order

    Returns:
        New Candidate objects with overlap_count set, same order
    """
    user_set = set(user_ingredients)
    return [
        replace(c, overlap_count=len(user_set & used_names(c)))
        for c in candidates
    ]


def select_tier(scored: List[Candidate], total: int) -> List[Candidate]:
    """Prefer recipes using everything, then at least two of the user's ingredients, then anything."""
    tier = [c for c in scored if c.overlap_count == total]
    if not tier:
        tier = [c for c in scored if c.overlap_count >= min(2, total)]
    if not tier:
        tier = list(scored)
    return tier


def rank_candidates(user_ingredients: Iterable[str], candidates: List[Candidate]) -> List[Candidate]:
    """
    Score, tier and sort candidates by ingredient overlap.

    Sort order is overlap (desc), missed count (asc), used count (desc); full
    ties keep the search collaborator's order.
    """
    user_set = set(user_ingredients)
    scored = score_candidates(user_set, candidates)
    tier = select_tier(scored, len(user_set))
    return sorted(
        tier,
        key=lambda c: (-c.overlap_count, c.missed_ingredient_count, -c.used_ingredient_count),
    )


def _safe_lookup(lookup: DetailLookup, candidate: Candidate) -> Optional[RecipeDetail]:
    if candidate.id is None:
        return None
    try:
        return lookup(candidate.id)
    except ExternalAPIError as e:
        logger.warning(f"Skipping recipe {candidate.id}: detail lookup failed ({e.message})")
        return None


def _enriched(
    window: List[Candidate],
    lookup: DetailLookup,
    workers: int
) -> Iterator[Tuple[Candidate, Optional[RecipeDetail]]]:
    if workers <= 1:
        for candidate in window:
            yield candidate, _safe_lookup(lookup, candidate)
        return
    # map() yields in submission order, whatever order lookups finish in
    with ThreadPoolExecutor(max_workers=workers) as executor:
        details = executor.map(lambda c: _safe_lookup(lookup, c), window)
        for candidate, detail in zip(window, details):
            yield candidate, detail


def only_these_active(only_these: bool, config: PipelineConfig) -> bool:
    return bool(only_these and config.only_these_enabled)


def missing_non_pantry(candidate: Candidate) -> List[str]:
    """Missed ingredients the user would have to buy."""
    labels = [line.label.lower() for line in candidate.missed_ingredients]
    return [name for name in labels if not is_pantry(name)]


def select_finalists(
    ranked: List[Candidate],
    lookup: DetailLookup,
    minutes: int,
    profile: DietProfile,
    only_these: bool = False,
    config: Optional[PipelineConfig] = None
) -> List[Finalist]:
    """
    Enrich ranked candidates and keep those that pass every filter.

    Args:
        ranked: Output of rank_candidates
        lookup: Fetches the detail record for a recipe id; ExternalAPIError skips the candidate
        minutes: User's time budget
        profile: Mapped diet preference
        only_these: Reject candidates missing anything beyond pantry staples
        config: Look-ahead, finalist cap and worker settings

    Returns:
        Up to config.finalist_cap finalists, in ranked order
    """
    config = config or PipelineConfig()
    strict = only_these_active(only_these, config)
    window = ranked[:config.look_ahead]
    finalists: List[Finalist] = []

    for candidate, detail in _enriched(window, lookup, config.enrichment_workers):
        if detail is None:
            continue

        ready = detail.ready_in_minutes
        if ready is None:
            ready = candidate.ready_in_minutes
        if ready is None:
            ready = UNKNOWN_READY_MINUTES
        if ready > minutes:
            logger.debug(f"Recipe {candidate.id} rejected: {ready} min > {minutes} min")
            continue

        if not passes_diet(detail, profile):
            logger.debug(f"Recipe {candidate.id} rejected by diet filter")
            continue

        if strict:
            extras = missing_non_pantry(candidate)
            if extras:
                logger.debug(f"Recipe {candidate.id} rejected in only-these mode: needs {extras}")
                continue

        finalists.append(Finalist(candidate=candidate, detail=detail))
        if len(finalists) >= config.finalist_cap:
            break

    logger.info(f"{len(finalists)} finalists from {len(window)} enriched candidates")
    return finalists


def pick_finalist(
    finalists: List[Finalist],
    ranked: List[Candidate],
    only_these: bool = False,
    config: Optional[PipelineConfig] = None
) -> Finalist:
    """
    Choose the recipe to present.

    Falls back to the top-ranked candidate (unenriched) when nothing passed the
    filters, except in only-these mode.

    Raises:
        NoCandidatesError: If there is nothing ranked at all
        FilterExhaustedError: If only-these mode rejected every candidate
    """
    config = config or PipelineConfig()
    if finalists:
        return finalists[0]
    if not ranked:
        raise NoCandidatesError()
    if only_these_active(only_these, config):
        raise FilterExhaustedError(hint=ONLY_THESE_HINT)
    logger.info(f"No finalists; falling back to top-ranked recipe {ranked[0].id}")
    return Finalist(candidate=ranked[0], detail=None)
