"""Flask app entrypoint for MoodChef.

This file wires up the Flask app, JWT helpers, DB session handling,
the recipe endpoint, and the favorites endpoints used by the frontend.
"""

import os
import logging
import json
import uuid
from datetime import datetime, timedelta
from flask import Flask, request, jsonify, g
from flask_cors import CORS
from dotenv import load_dotenv
import jwt
from app_models import (
    RecipeRequest,
    PipelineConfig,
    ValidationError,
    APIError,
    ConfigurationError,
    ExternalAPIError,
    NoCandidatesError,
    FilterExhaustedError,
    GenerationError,
    User,
    Favorite,
    SessionLocal,
    init_db,
)
from app_services import SpoonacularService, GeminiService, RecipeService

load_dotenv()
init_db()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev_secret")

CORS_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
cors_config = {
    "origins": "*",
    "methods": CORS_METHODS,
    "allow_headers": ["Content-Type", "Authorization"],
    "expose_headers": ["X-Request-ID"],
    "max_age": 3600,
}
CORS(app, resources={r"/api/*": cors_config})

# Initialize services
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
SPOONACULAR_API_KEY = os.getenv("SPOONACULAR_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

if not SPOONACULAR_API_KEY:
    logger.warning("SPOONACULAR_API_KEY not set - recipe search will return configuration errors")

pipeline_config = PipelineConfig.from_env()
spoonacular_service = SpoonacularService(SPOONACULAR_API_KEY)
gemini_service = GeminiService(GOOGLE_API_KEY, model=GEMINI_MODEL)
recipe_service = RecipeService(spoonacular_service, gemini_service, pipeline_config)

start_time = datetime.now()


@app.before_request
def assign_request_id():
    g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex


@app.after_request
def echo_request_id(response):
    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


def error_response(message, status, error_type, **extra):
    body = {
        "success": False,
        "error": message,
        "type": error_type,
        "request_id": getattr(g, "request_id", None),
    }
    body.update({k: v for k, v in extra.items() if v is not None})
    return jsonify(body), status


# JWT helpers
def create_access_token(user_id, expires_delta=None):
    # Default expiration: 2 days (if not provided)
    if expires_delta is None:
        expires_delta = timedelta(days=2)
    payload = {
        "user_id": user_id,
        "exp": datetime.utcnow() + expires_delta,
    }
    return jwt.encode(payload, app.config["SECRET_KEY"], algorithm="HS256")


def decode_access_token(token):
    try:
        return jwt.decode(token, app.config["SECRET_KEY"], algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def get_db():
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


@app.teardown_appcontext
def remove_db(exception=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def get_current_user():
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1]
    payload = decode_access_token(token)
    if not payload:
        return None
    db = get_db()
    return db.query(User).filter(User.id == payload.get("user_id")).first()


# --- AUTH ENDPOINTS ---
@app.route("/api/auth/register", methods=["POST"])
def register():
    db = get_db()
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "Email and password required"}), 400

    if db.query(User).filter(User.email == email).first():
        return jsonify({"error": "Email already exists"}), 409

    user = User(email=email, password_hash=User.hash_password(password))
    db.add(user)
    db.commit()
    db.refresh(user)

    access_token = create_access_token(user.id)
    return jsonify({
        "user": {"id": user.id, "email": user.email},
        "accessToken": access_token,
    }), 201


@app.route("/api/auth/login", methods=["POST"])
def login():
    db = get_db()
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "Email and password required"}), 400

    user = db.query(User).filter(User.email == email).first()
    if not user or not user.verify_password(password):
        return jsonify({"error": "Incorrect credentials"}), 401

    access_token = create_access_token(user.id)
    user.last_login = datetime.utcnow()
    db.commit()

    return jsonify({
        "user": {"id": user.id, "email": user.email},
        "accessToken": access_token,
    }), 200


@app.route("/api/auth/me", methods=["GET"])
def get_current_user_info():
    """Get current authenticated user's info."""
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    db = get_db()
    favorite_count = db.query(Favorite).filter(Favorite.user_id == user.id).count()
    return jsonify({
        "user": {"id": user.id, "email": user.email},
        "favoriteCount": favorite_count,
    }), 200


@app.route("/api/auth/logout", methods=["POST"])
def logout():
    # Tokens are stateless; the client drops its copy
    return jsonify({"message": "Logged out successfully"}), 200


# --- RECIPE ENDPOINT ---
@app.route("/api/recipe", methods=["POST"])
def get_recipe():
    """
    Main endpoint: accept mood, time and ingredients and return a recipe.

    Request JSON:
    {
        "mood": "cozy",
        "minutes": 30,
        "ingredients": "chicken, rice, garlic",
        "diet": "gluten-free",
        "onlyThese": false,
        "source": "search"
    }

    Response (search):
    {"success": true, "source": "search", "recipe": {...}}

    Response (generate):
    {"success": true, "source": "generate", "recipes": [...]}
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or not data:
            logger.warning(f"[{g.request_id}] Empty request body")
            return error_response("Request body must be JSON", 400, "validation_error")

        try:
            recipe_request = RecipeRequest.from_dict(data, pipeline_config)
        except ValidationError as e:
            logger.warning(f"[{g.request_id}] Validation error: {e.message}")
            return error_response(e.message, 400, "validation_error", field=e.field)

        logger.info(
            f"[{g.request_id}] Processing recipe request - source: {recipe_request.source}, "
            f"minutes: {recipe_request.minutes}, only_these: {recipe_request.only_these}"
        )

        try:
            result = recipe_service.suggest(recipe_request)
        except ConfigurationError as e:
            logger.error(f"[{g.request_id}] Configuration error: {e.message}")
            return error_response("Recipe service is not configured", 500, "configuration_error")
        except ExternalAPIError as e:
            logger.error(
                f"[{g.request_id}] External API error: {e.message} "
                f"(upstream status: {e.upstream_status}, body: {(e.upstream_body or '')[:500]})"
            )
            return error_response(
                e.message, e.status_code, "external_api_error", upstream_status=e.upstream_status
            )
        except NoCandidatesError as e:
            logger.info(f"[{g.request_id}] {e.message}")
            return error_response(e.message, 404, "not_found")
        except FilterExhaustedError as e:
            logger.info(f"[{g.request_id}] {e.message}")
            return error_response(e.message, 404, "filters_exhausted", hint=e.hint)
        except GenerationError as e:
            logger.error(f"[{g.request_id}] Generation error: {e.message}")
            return error_response(e.message, 500, "generation_error")

        if isinstance(result, list):
            logger.info(f"[{g.request_id}] Returning {len(result)} generated recipes")
            return jsonify({
                "success": True,
                "source": "generate",
                "recipe_count": len(result),
                "recipes": [r.to_dict() for r in result],
            }), 200

        logger.info(f"[{g.request_id}] Returning recipe: {result.title}")
        return jsonify({
            "success": True,
            "source": "search",
            "recipe": result.to_dict(),
        }), 200

    except APIError as e:
        logger.error(f"[{g.request_id}] API error: {e.message}")
        return error_response(e.message, e.status_code, "api_error")
    except Exception as e:
        logger.exception(f"[{g.request_id}] Unexpected error in /api/recipe: {str(e)}")
        return error_response("Internal server error", 500, "internal_error")


# --- FAVORITES ENDPOINTS ---
@app.route("/api/favorites", methods=["GET"])
def list_favorites():
    """List the user's saved recipes, newest first."""
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized", "needsAuth": True}), 401

    db = get_db()
    favorites = (
        db.query(Favorite)
        .filter(Favorite.user_id == user.id)
        .order_by(Favorite.created_at.desc(), Favorite.id.desc())
        .all()
    )
    return jsonify({
        "favorites": [f.to_dict() for f in favorites]
    }), 200


@app.route("/api/favorites", methods=["POST"])
def save_favorite():
    """Save a recipe (the full response object) to the user's favorites."""
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized", "needsAuth": True}), 401

    recipe = request.get_json(silent=True)
    if not isinstance(recipe, dict):
        return jsonify({"error": "Recipe object required"}), 400
    title = recipe.get("title")
    if not isinstance(title, str) or not title.strip():
        return jsonify({"error": "Recipe title required"}), 400

    db = get_db()
    favorite = Favorite(
        user_id=user.id,
        title=title.strip(),
        data=json.dumps(recipe),
    )
    db.add(favorite)
    db.commit()
    logger.info(f"[{g.request_id}] User {user.id} saved favorite {favorite.id}")

    return jsonify({
        "ok": True,
        "favorite": favorite.to_dict(),
    }), 201


@app.route("/api/favorites/count", methods=["GET"])
def count_favorites():
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized", "needsAuth": True}), 401

    db = get_db()
    count = db.query(Favorite).filter(Favorite.user_id == user.id).count()
    return jsonify({"count": count}), 200


@app.route("/api/favorites/<int:favorite_id>", methods=["DELETE"])
def delete_favorite(favorite_id):
    """Delete one of the user's favorites."""
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized", "needsAuth": True}), 401

    db = get_db()
    favorite = db.query(Favorite).filter(
        Favorite.id == favorite_id,
        Favorite.user_id == user.id
    ).first()

    if not favorite:
        return jsonify({"error": "Favorite not found"}), 404

    db.delete(favorite)
    db.commit()
    return jsonify({"message": "Favorite deleted"}), 200


# --- UTILITY ENDPOINTS ---
@app.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint for deployment monitoring."""
    uptime_seconds = (datetime.now() - start_time).total_seconds()
    return jsonify({
        "status": "ok",
        "uptime_seconds": int(uptime_seconds),
        "timestamp": datetime.now().isoformat(),
        "spoonacular_configured": spoonacular_service.is_configured,
        "gemini_configured": gemini_service.is_configured,
        "recipe_source": pipeline_config.recipe_source,
    }), 200


@app.errorhandler(400)
def handle_bad_request(e):
    """Handle 400 errors."""
    logger.warning(f"Bad request: {str(e)}")
    return jsonify({
        "success": False,
        "error": "Bad request"
    }), 400


@app.errorhandler(404)
def handle_not_found(e):
    """Handle 404 errors."""
    return jsonify({
        "success": False,
        "error": "Endpoint not found"
    }), 404


@app.errorhandler(500)
def handle_server_error(e):
    """Handle 500 errors."""
    logger.error(f"Server error: {str(e)}")
    return jsonify({
        "success": False,
        "error": "Internal server error"
    }), 500


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5001))
    debug = os.getenv("FLASK_ENV", "production") == "development"

    logger.info(f"Starting Flask app on port {port} (debug={debug})")
    logger.info(f"Recipe source: {pipeline_config.recipe_source}")
    logger.info(f"Gemini API: {'configured' if GOOGLE_API_KEY else 'NOT SET'}")
    logger.info(f"Spoonacular API: {'configured' if SPOONACULAR_API_KEY else 'NOT SET'}")

    app.run(host="0.0.0.0", port=port, debug=debug)
