"""
Data models and validation for the MoodChef recipe service.
Handles input validation, request-scoped recipe types, and persistence.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
import os
import re
import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, create_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
import bcrypt

Base = declarative_base()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///moodchef.db")


def _make_engine(url: str):
    # In-memory SQLite must share one connection or every session sees an empty DB
    if url.startswith("sqlite") and ":memory:" in url:
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=False)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine)


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    last_login = Column(DateTime, nullable=True)
    favorites = relationship('Favorite', back_populates='user', cascade='all, delete-orphan')

    def verify_password(self, password: str) -> bool:
        return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


class Favorite(Base):
    __tablename__ = 'favorites'
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    title = Column(String(500), nullable=False)
    data = Column(Text)  # JSON of the saved recipe
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    user = relationship('User', back_populates='favorites')

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "data": self.data,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


def init_db():
    Base.metadata.create_all(bind=engine)


class ValidationError(Exception):
    """Custom exception for validation errors."""
    def __init__(self, message: str, field: str = None):
        self.message = message
        self.field = field
        super().__init__(self.message)


class APIError(Exception):
    """Base exception for API errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ConfigurationError(APIError):
    """A collaborator is missing its credentials."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class ExternalAPIError(APIError):
    """Exception for external API (Gemini, Spoonacular) failures."""
    def __init__(
        self,
        message: str,
        status_code: int = 502,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class NoCandidatesError(APIError):
    """The recipe search returned nothing to rank."""
    def __init__(self, message: str = "No recipes found with your ingredients."):
        super().__init__(message, status_code=404)


class FilterExhaustedError(APIError):
    """Candidates existed but none survived the active filters."""
    def __init__(self, message: str = "No suitable recipe matched your filters.", hint: Optional[str] = None):
        super().__init__(message, status_code=404)
        self.hint = hint


class GenerationError(APIError):
    """The generative model returned output we could not parse."""
    def __init__(self, message: str = "Could not generate a recipe right now."):
        super().__init__(message, status_code=500)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


RECIPE_SOURCES = ("search", "generate")


@dataclass(frozen=True)
class PipelineConfig:
    """Knobs for the recipe pipeline, read once at startup."""
    candidate_fetch_count: int = 20
    look_ahead: int = 10
    finalist_cap: int = 3
    only_these_enabled: bool = True
    enrichment_workers: int = 1
    max_ingredients: int = 20
    max_minutes: int = 240
    generated_recipe_count: int = 3
    recipe_source: str = "search"

    @staticmethod
    def from_env() -> "PipelineConfig":
        source = os.getenv("RECIPE_SOURCE", "search").strip().lower()
        if source not in RECIPE_SOURCES:
            source = "search"
        return PipelineConfig(
            candidate_fetch_count=_env_int("CANDIDATE_FETCH_COUNT", 20),
            look_ahead=_env_int("LOOK_AHEAD", 10),
            finalist_cap=_env_int("FINALIST_CAP", 3),
            only_these_enabled=_env_bool("ONLY_THESE_ENABLED", True),
            enrichment_workers=max(1, _env_int("ENRICHMENT_WORKERS", 1)),
            max_ingredients=_env_int("MAX_INGREDIENTS", 20),
            max_minutes=_env_int("MAX_MINUTES", 240),
            generated_recipe_count=_env_int("GENERATED_RECIPE_COUNT", 3),
            recipe_source=source,
        )


@dataclass
class RecipeRequest:
    """Validated recipe request from the frontend."""
    mood: str
    minutes: int
    ingredients: str
    diet: Optional[str] = None
    only_these: bool = False
    source: str = "search"
    cuisine: Optional[str] = None

    @staticmethod
    def from_dict(data: Dict[str, Any], config: Optional[PipelineConfig] = None) -> "RecipeRequest":
        """
        Create RecipeRequest from dictionary with full validation.

        Args:
            data: Dictionary from JSON request
            config: Pipeline limits (defaults when omitted)

        Returns:
            RecipeRequest object with validated fields

        Raises:
            ValidationError: If any field fails validation
        """
        config = config or PipelineConfig()

        # Validate mood
        mood = data.get("mood")
        if not isinstance(mood, str) or not mood.strip():
            raise ValidationError("mood is required", "mood")
        mood = mood.strip()
        if len(mood) > 200:
            raise ValidationError("mood must be at most 200 characters", "mood")

        # Validate minutes
        minutes_raw = data.get("minutes")
        if isinstance(minutes_raw, bool) or minutes_raw is None:
            raise ValidationError("minutes must be an integer", "minutes")
        try:
            minutes = int(str(minutes_raw).strip())
        except (TypeError, ValueError):
            raise ValidationError("minutes must be an integer", "minutes")

        if not (1 <= minutes <= config.max_minutes):
            raise ValidationError(
                f"minutes must be between 1-{config.max_minutes}",
                "minutes"
            )

        # Validate ingredients
        ingredients = data.get("ingredients")
        if not isinstance(ingredients, str) or not ingredients.strip():
            raise ValidationError("ingredients are required", "ingredients")
        ingredients = ingredients.strip()
        if len(ingredients) > 1000:
            raise ValidationError("ingredients must be at most 1000 characters", "ingredients")
        if not any(piece.strip() for piece in re.split(r"[,;\n ]+", ingredients)):
            raise ValidationError("ingredients must list at least one item", "ingredients")

        # Validate diet
        diet = data.get("diet")
        if diet is not None and not isinstance(diet, str):
            raise ValidationError("diet must be a string", "diet")
        diet = diet.strip() if diet else None
        diet = diet or None

        # Validate onlyThese
        only_these = data.get("onlyThese", data.get("only_these", False))
        if only_these is None:
            only_these = False
        if not isinstance(only_these, bool):
            raise ValidationError("onlyThese must be a boolean", "onlyThese")

        # Validate source
        source = data.get("source") or config.recipe_source
        if source not in RECIPE_SOURCES:
            raise ValidationError(
                f"source must be one of: {', '.join(RECIPE_SOURCES)}",
                "source"
            )

        cuisine = data.get("cuisine")
        cuisine = cuisine.strip() if isinstance(cuisine, str) and cuisine.strip() else None

        return RecipeRequest(
            mood=mood,
            minutes=minutes,
            ingredients=ingredients,
            diet=diet,
            only_these=only_these,
            source=source,
            cuisine=cuisine,
        )


@dataclass
class DietProfile:
    """Structured view of a free-text diet preference."""
    diet_tag: Optional[str] = None
    intolerances: List[str] = field(default_factory=list)


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class IngredientLine:
    """One ingredient line as reported by the recipe search."""
    name: str = ""
    original: str = ""

    @property
    def label(self) -> str:
        return self.original or self.name

    @staticmethod
    def from_spoonacular(data: Any) -> "IngredientLine":
        if not isinstance(data, dict):
            return IngredientLine()
        original = data.get("original") or data.get("originalString") or data.get("originalName")
        return IngredientLine(name=_as_text(data.get("name")), original=_as_text(original))


@dataclass
class Candidate:
    """Recipe returned by the ingredient search, before enrichment."""
    id: Optional[int]
    title: str
    used_ingredients: List[IngredientLine] = field(default_factory=list)
    missed_ingredients: List[IngredientLine] = field(default_factory=list)
    used_ingredient_count: int = 0
    missed_ingredient_count: int = 0
    ready_in_minutes: Optional[int] = None
    overlap_count: int = 0

    @staticmethod
    def from_spoonacular(data: Dict[str, Any]) -> "Candidate":
        """
        Build a Candidate from a findByIngredients result.

        Missing counts fall back to the length of the matching ingredient list.
        """
        used = [IngredientLine.from_spoonacular(i) for i in _as_list(data.get("usedIngredients"))]
        missed = [IngredientLine.from_spoonacular(i) for i in _as_list(data.get("missedIngredients"))]
        used_count = _as_int(data.get("usedIngredientCount"))
        missed_count = _as_int(data.get("missedIngredientCount"))
        return Candidate(
            id=_as_int(data.get("id")),
            title=_as_text(data.get("title")),
            used_ingredients=used,
            missed_ingredients=missed,
            used_ingredient_count=used_count if used_count is not None else len(used),
            missed_ingredient_count=missed_count if missed_count is not None else len(missed),
            ready_in_minutes=_as_int(data.get("readyInMinutes")),
        )


@dataclass
class RecipeDetail:
    """Full recipe information used to filter and present a candidate."""
    id: Optional[int] = None
    title: str = ""
    ready_in_minutes: Optional[int] = None
    servings: Optional[int] = None
    vegan: Optional[bool] = None
    vegetarian: Optional[bool] = None
    diets: List[str] = field(default_factory=list)
    cuisines: List[str] = field(default_factory=list)
    dish_types: List[str] = field(default_factory=list)
    extended_ingredients: List[IngredientLine] = field(default_factory=list)
    summary: str = ""
    instructions: str = ""

    @staticmethod
    def from_spoonacular(data: Any) -> "RecipeDetail":
        """
        Extract the fields we use from a recipe information response.

        Args:
            data: Raw data from the Spoonacular information endpoint

        Returns:
            RecipeDetail with malformed fields replaced by empty defaults
        """
        if not isinstance(data, dict):
            return RecipeDetail()

        def flag(key):
            value = data.get(key)
            return value if isinstance(value, bool) else None

        return RecipeDetail(
            id=_as_int(data.get("id")),
            title=_as_text(data.get("title")),
            ready_in_minutes=_as_int(data.get("readyInMinutes")),
            servings=_as_int(data.get("servings")),
            vegan=flag("vegan"),
            vegetarian=flag("vegetarian"),
            diets=[_as_text(d) for d in _as_list(data.get("diets"))],
            cuisines=[_as_text(c) for c in _as_list(data.get("cuisines"))],
            dish_types=[_as_text(d) for d in _as_list(data.get("dishTypes"))],
            extended_ingredients=[
                IngredientLine.from_spoonacular(i) for i in _as_list(data.get("extendedIngredients"))
            ],
            summary=_as_text(data.get("summary")),
            instructions=_as_text(data.get("instructions")),
        )


@dataclass
class Finalist:
    """A ranked candidate that passed every active filter."""
    candidate: Candidate
    detail: Optional[RecipeDetail] = None


@dataclass(frozen=True)
class RecipeResult:
    """Recipe as returned to the client."""
    title: str
    time_minutes: int
    serves: int
    ingredients_list: List[str]
    steps: List[str]
    why_it_fits: str
    variation: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "title": self.title,
            "time_minutes": self.time_minutes,
            "serves": self.serves,
            "ingredients_list": list(self.ingredients_list),
            "steps": list(self.steps),
            "why_it_fits": self.why_it_fits,
            "variation": self.variation,
        }


@dataclass
class GenerationBrief:
    """Structured brief sent to the generative recipe model."""
    mood: str
    minutes: int
    ingredients: List[str]
    diet: Optional[str] = None
    cuisine: Optional[str] = None
    only_these: bool = False
    count: int = 3
