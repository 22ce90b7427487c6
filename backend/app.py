import os
import re
import secrets
import unicodedata
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Dict, Iterable, List, Optional, Tuple

import bcrypt
from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
    verify_jwt_in_request,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_pymongo import PyMongo
from jwt.exceptions import PyJWTError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.utils import secure_filename

from backend import mailer, media
from backend.commands import register_commands

load_dotenv()

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

VERIFICATION_CODE_LENGTH = 6
MAX_FAILED_CODE_ATTEMPTS = 5
SECRET_KEY_MAX_LENGTH = 6
SECRET_IMAGES_LIMIT = 1000
ADMIN_COOKIE_NAME = "admin_token"

PRODUCT_SCHEMA = {
    "title": str,
    "description": str,
    "shortDescription": str,
    "coverImage": str,
    "galleryImages": list,
    "amazonLink": str,
    "aPlusContent": list,
    "bulletPoints": list,
    "theme": str,
    "difficulty": str,
    "rating": float,
    "reviewCount": int,
    "price": str,
    "featured": bool,
    "showRating": bool,
    "editions": list,
}
PRODUCT_REQUIRED = ("title", "description", "coverImage", "amazonLink")
PRODUCT_DEFAULTS = {
    "galleryImages": [],
    "aPlusContent": [],
    "featured": False,
    "showRating": True,
    "editions": [],
}
PRODUCT_IMAGE_FIELDS = ("coverImage", "galleryImages")
PRODUCT_SORTS = {
    "newest": [("createdAt", DESCENDING)],
    "popular": [("reviewCount", DESCENDING)],
    "rating": [("rating", DESCENDING)],
}

BLOG_SCHEMA = {
    "title": str,
    "excerpt": str,
    "content": str,
    "thumbnail": str,
    "category": str,
    "tags": list,
    "published": bool,
}
BLOG_REQUIRED = ("title", "excerpt", "content", "thumbnail")
BLOG_DEFAULTS = {"category": "General", "tags": [], "published": True}

SECRET_BOOK_SCHEMA = {
    "title": str,
    "coverImage": str,
    "secretKey": str,
    "amazonUrl": str,
    "amazonUrlStandard": str,
    "amazonUrlPremium": str,
    "isActive": bool,
}
SECRET_BOOK_REQUIRED = ("title", "coverImage")

SECRET_IMAGE_SCHEMA = {
    "colorImageUrl": str,
    "uncolorImageUrl": str,
    "originalImageUrl": str,
    "order": int,
    "isActive": bool,
}
SECRET_IMAGE_REQUIRED = ("colorImageUrl", "uncolorImageUrl")
SECRET_IMAGE_FILES = ("colorImageUrl", "uncolorImageUrl")

FOLDER_SCHEMA = {
    "name": str,
    "description": str,
    "thumbnail": str,
    "order": int,
    "isActive": bool,
}

GIFT_LINK_SCHEMA = {
    "title": str,
    "description": str,
    "url": str,
    "thumbnail": str,
    "order": int,
    "isActive": bool,
}
GIFT_LINK_REQUIRED = ("title", "url")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back for stored dates."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slugify(value: Optional[str]) -> str:
    condensed = " ".join(str(value or "").split()).lower()
    ascii_value = (
        unicodedata.normalize("NFKD", condensed)
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    return re.sub(r"[^a-z0-9]+", "-", ascii_value).strip("-")


def generate_verification_code(length: int = VERIFICATION_CODE_LENGTH) -> str:
    upper_bound = 10**length
    return f"{secrets.randbelow(upper_bound):0{length}d}"


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def parse_limit(value) -> int:
    try:
        limit = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return max(limit, 0)


def parse_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def clean_fields(payload, schema: Dict[str, type]) -> Tuple[Dict, Optional[str]]:
    """Keep only the schema's fields from ``payload`` and coerce their types."""
    if not isinstance(payload, dict):
        return {}, "Request body must be a JSON object."

    cleaned: Dict[str, object] = {}
    for field, kind in schema.items():
        if field not in payload:
            continue
        value = payload[field]
        if value is None:
            cleaned[field] = None
        elif kind is str:
            if isinstance(value, (dict, list)):
                return {}, f"{field} must be a string."
            cleaned[field] = str(value).strip()
        elif kind is bool:
            cleaned[field] = parse_bool(value)
        elif kind in (int, float):
            if isinstance(value, bool):
                return {}, f"{field} must be a number."
            try:
                cleaned[field] = kind(value)
            except (TypeError, ValueError):
                return {}, f"{field} must be a number."
        elif kind is list:
            if not isinstance(value, list):
                return {}, f"{field} must be a list."
            cleaned[field] = value
        else:
            cleaned[field] = value
    return cleaned, None


def missing_fields(data: Dict, required: Iterable[str], partial: bool = False) -> List[str]:
    if partial:
        return [field for field in required if field in data and not data[field]]
    return [field for field in required if not data.get(field)]


def collect_urls(document, fields: Iterable[str]) -> List[str]:
    urls: List[str] = []
    if not document:
        return urls
    for field in fields:
        value = document.get(field)
        if isinstance(value, str) and value:
            urls.append(value)
        elif isinstance(value, list):
            urls.extend(item for item in value if isinstance(item, str) and item)
    return urls


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat() + "Z"
    if isinstance(value, dict):
        return {key: serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def secret_key_matches(expected: Optional[str], provided: Optional[str]) -> bool:
    expected_key = str(expected or "").strip().upper()
    if not expected_key:
        return True
    provided_key = str(provided or "").strip().upper()
    return secrets.compare_digest(
        expected_key.encode("utf-8"), provided_key.encode("utf-8")
    )


def create_app(test_config: Optional[Dict] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Honor proxy headers so cookies and redirects keep the public HTTPS origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["FLASK_ENV"] = (
        os.getenv("FLASK_ENV", "production") or "production"
    ).strip().lower()
    is_production = app.config["FLASK_ENV"] == "production"
    app.config["JWT_SECRET_KEY"] = os.getenv(
        "JWT_SECRET_KEY", "change-me-in-production"
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=24)
    app.config["JWT_TOKEN_LOCATION"] = ["cookies"]
    app.config["JWT_ACCESS_COOKIE_NAME"] = ADMIN_COOKIE_NAME
    app.config["JWT_ACCESS_COOKIE_PATH"] = "/"
    app.config["JWT_COOKIE_SECURE"] = is_production
    app.config["JWT_COOKIE_SAMESITE"] = "Lax"
    app.config["JWT_COOKIE_CSRF_PROTECT"] = False
    app.config["JWT_SESSION_COOKIE"] = False
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/noble-mosaic"
    )
    app.config["ADMIN_USERNAME"] = (os.getenv("ADMIN_USERNAME") or "").strip()
    app.config["ADMIN_PASSWORD"] = os.getenv("ADMIN_PASSWORD") or ""
    app.config["ADMIN_PASSWORD_HASH"] = (os.getenv("ADMIN_PASSWORD_HASH") or "").strip()
    app.config["RESEND_API_KEY"] = (os.getenv("RESEND_API_KEY") or "").strip()
    app.config["MAIL_SENDER"] = (
        os.getenv("MAIL_SENDER", "hello@noblemosaic.com") or "hello@noblemosaic.com"
    ).strip()
    app.config["CONTACT_NOTIFY_EMAIL"] = (os.getenv("CONTACT_NOTIFY_EMAIL") or "").strip()
    app.config["CLOUDINARY_CLOUD_NAME"] = os.getenv("CLOUDINARY_CLOUD_NAME", "")
    app.config["CLOUDINARY_API_KEY"] = os.getenv("CLOUDINARY_API_KEY", "")
    app.config["CLOUDINARY_API_SECRET"] = os.getenv("CLOUDINARY_API_SECRET", "")
    app.config["VERIFICATION_CODE_EXPIRY_MINUTES"] = int(
        os.getenv("VERIFICATION_CODE_EXPIRY_MINUTES", "10")
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024

    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
        os.getenv("PUBLIC_FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    jwt = JWTManager(app)

    db = app.config.get("DATABASE")
    if db is None:
        mongo = PyMongo(app)
        db = mongo.db

    if not media.configure(app.config):
        app.logger.warning("Cloudinary credentials are not configured.")

    code_expiration_minutes = app.config["VERIFICATION_CODE_EXPIRY_MINUTES"]

    def ensure_indexes():
        index_plan = [
            (db.products, [("slug", ASCENDING)], {"unique": True}),
            (db.blogposts, [("slug", ASCENDING)], {"unique": True}),
            (db.blogposts, [("category", ASCENDING)], {}),
            (db.blogposts, [("published", ASCENDING)], {}),
            (db.secretbooks, [("slug", ASCENDING)], {"unique": True}),
            (db.secretbooks, [("isActive", ASCENDING)], {}),
            (db.secretimages, [("secretBook", ASCENDING), ("order", ASCENDING)], {}),
            (db.coloringfolders, [("slug", ASCENDING)], {"unique": True}),
            (db.coloringfolders, [("order", ASCENDING)], {}),
            (db.coloringpages, [("folder", ASCENDING), ("order", ASCENDING)], {}),
            (db.giftlinks, [("order", ASCENDING)], {}),
            (db.giftlinks, [("isActive", ASCENDING)], {}),
            (db.contacts, [("read", ASCENDING)], {}),
            (db.contacts, [("createdAt", DESCENDING)], {}),
            (db.subscribers, [("email", ASCENDING)], {"unique": True}),
            (db.subscribers, [("createdAt", DESCENDING)], {}),
            (db.verificationtokens, [("email", ASCENDING)], {"unique": True}),
            (db.verificationtokens, [("expiresAt", ASCENDING)], {"expireAfterSeconds": 0}),
        ]
        for collection, keys, options in index_plan:
            try:
                collection.create_index(keys, **options)
            except PyMongoError as exc:
                app.logger.warning(
                    "Unable to ensure index %s on %s: %s", keys, collection.name, exc
                )

    ensure_indexes()

    # --- Helpers ---

    def error_response(message: str, status: int, **extra):
        return jsonify({"error": message, **extra}), status

    def failure_message(message: str):
        """Turn unexpected errors inside a handler into a logged, generic 500."""

        def decorator(view):
            @wraps(view)
            def wrapper(*args, **kwargs):
                try:
                    return view(*args, **kwargs)
                except HTTPException:
                    raise
                except Exception:
                    app.logger.exception(message)
                    return error_response(message, 500)

            return wrapper

        return decorator

    def admin_required(view):
        @wraps(view)
        @jwt_required()
        def wrapper(*args, **kwargs):
            if get_jwt().get("role") != "admin":
                return error_response("Forbidden", 403)
            return view(*args, **kwargs)

        return wrapper

    def is_admin_request() -> bool:
        try:
            verify_jwt_in_request(optional=True)
        except (JWTExtendedException, PyJWTError):
            return False
        return get_jwt().get("role") == "admin"

    def verify_admin_credentials(username: str, password: str) -> bool:
        expected_username = app.config.get("ADMIN_USERNAME") or ""
        if not expected_username or not username:
            return False
        if not secrets.compare_digest(
            username.encode("utf-8"), expected_username.encode("utf-8")
        ):
            return False

        password_hash = app.config.get("ADMIN_PASSWORD_HASH") or ""
        if password_hash:
            try:
                return bcrypt.checkpw(
                    password.encode("utf-8"), password_hash.encode("utf-8")
                )
            except ValueError:
                app.logger.error("ADMIN_PASSWORD_HASH is not a valid bcrypt hash.")
                return False

        expected_password = app.config.get("ADMIN_PASSWORD") or ""
        if not expected_password:
            app.logger.error("Admin login attempted but ADMIN_PASSWORD is not set.")
            return False
        return secrets.compare_digest(
            password.encode("utf-8"), expected_password.encode("utf-8")
        )

    def stamp_new(document: Dict) -> Dict:
        now = utcnow()
        document["createdAt"] = now
        document["updatedAt"] = now
        return document

    def next_order(collection, query: Optional[Dict] = None) -> int:
        latest = collection.find_one(
            query or {}, projection={"order": 1}, sort=[("order", DESCENDING)]
        )
        try:
            current = int((latest or {}).get("order") or 0)
        except (TypeError, ValueError):
            current = 0
        return current + 1

    def slug_taken(collection, slug: str, exclude_id=None) -> bool:
        query: Dict[str, object] = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        return collection.find_one(query, projection={"_id": 1}) is not None

    def fetch_document(collection, identifier: str, label: str):
        object_id = parse_object_id(identifier)
        if not object_id:
            return None, error_response(f"Invalid {label} identifier", 400)

        document = collection.find_one({"_id": object_id})
        if not document:
            return None, error_response(f"{label.capitalize()} not found", 404)

        return document, None

    def insert_document(collection, document: Dict, conflict_message: str):
        try:
            result = collection.insert_one(stamp_new(document))
        except DuplicateKeyError:
            return None, error_response(conflict_message, 409)
        return collection.find_one({"_id": result.inserted_id}), None

    def update_document(collection, document_id, updates: Dict):
        updates["updatedAt"] = utcnow()
        return collection.find_one_and_update(
            {"_id": document_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )

    def cleanup_replaced_images(before, after, fields: Iterable[str]):
        kept = set(collect_urls(after, fields))
        stale = [url for url in collect_urls(before, fields) if url not in kept]
        if stale:
            media.delete_image_urls(stale)

    def populate(documents: List[Dict], field: str, collection, projection: Dict):
        reference_ids = {
            document.get(field)
            for document in documents
            if isinstance(document.get(field), ObjectId)
        }
        related = {}
        if reference_ids:
            related = {
                item["_id"]: item
                for item in collection.find(
                    {"_id": {"$in": list(reference_ids)}}, projection=projection
                )
            }
        for document in documents:
            document[field] = related.get(document.get(field))
        return documents

    def persist_verification_code(email: str, code: str) -> datetime:
        now = utcnow()
        expires_at = now + timedelta(minutes=code_expiration_minutes)
        hashed_code = bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt())

        db.verificationtokens.update_one(
            {"email": email},
            {
                "$set": {
                    "email": email,
                    "codeHash": hashed_code,
                    "expiresAt": expires_at,
                    "used": False,
                    "failedAttempts": 0,
                    "updatedAt": now,
                },
                "$setOnInsert": {"createdAt": now},
            },
            upsert=True,
        )
        return expires_at

    def redeem_verification_code(email: str, code: str) -> Optional[str]:
        """Consume the stored code for ``email``; returns an error message on failure."""
        rejection = "Invalid or expired verification code"
        token = db.verificationtokens.find_one({"email": email})
        if not token or token.get("used"):
            return rejection

        now = utcnow()
        expires_at = token.get("expiresAt")
        if not isinstance(expires_at, datetime) or expires_at <= now:
            return rejection

        stored_hash = token.get("codeHash")
        code_is_valid = (
            code.isdigit()
            and len(code) == VERIFICATION_CODE_LENGTH
            and bool(stored_hash)
            and bcrypt.checkpw(code.encode("utf-8"), stored_hash)
        )
        if not code_is_valid:
            counted = db.verificationtokens.find_one_and_update(
                {"_id": token["_id"]},
                {"$inc": {"failedAttempts": 1}},
                return_document=ReturnDocument.AFTER,
            )
            failed_attempts = int((counted or {}).get("failedAttempts", 0) or 0)
            if counted and failed_attempts >= MAX_FAILED_CODE_ATTEMPTS:
                db.verificationtokens.delete_one({"_id": token["_id"]})
                app.logger.warning(
                    "Verification token for %s removed after %s failed attempts",
                    email,
                    failed_attempts,
                )
            return rejection

        consumed = db.verificationtokens.update_one(
            {"_id": token["_id"], "used": False},
            {"$set": {"used": True, "usedAt": now, "updatedAt": now}},
        )
        if consumed.modified_count == 0:
            return rejection
        return None

    def serialize_book_summary(book, preview_image: Optional[str]) -> Dict:
        return {
            "title": book.get("title"),
            "slug": book.get("slug"),
            "coverImage": book.get("coverImage"),
            "amazonUrl": book.get("amazonUrl"),
            "amazonUrlStandard": book.get("amazonUrlStandard"),
            "amazonUrlPremium": book.get("amazonUrlPremium"),
            "previewImage": preview_image,
        }

    def clean_secret_key(data: Dict) -> Optional[str]:
        if "secretKey" not in data:
            return None
        key = (data.get("secretKey") or "").upper()
        if len(key) > SECRET_KEY_MAX_LENGTH:
            return "Secret Key must be exactly 6 characters or less"
        data["secretKey"] = key
        return None

    # --- Errors ---

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return error_response(exc.description or exc.name, exc.code or 500)

    @jwt.unauthorized_loader
    def handle_missing_token(reason: str):
        return error_response("Unauthorized", 401)

    @jwt.invalid_token_loader
    def handle_invalid_token(reason: str):
        return error_response("Invalid token", 401)

    @jwt.expired_token_loader
    def handle_expired_token(jwt_header, jwt_payload):
        return error_response("Invalid token", 401)

    # --- ROUTES ---

    # Auth
    @app.route("/api/auth", methods=["POST"])
    @failure_message("Failed to login")
    def login():
        payload = request.get_json(silent=True) or {}
        username = str(payload.get("username", "")).strip()
        password = str(payload.get("password", ""))

        if not verify_admin_credentials(username, password):
            app.logger.warning(
                "Rejected admin login for %r from %s", username, request.remote_addr
            )
            return error_response("Invalid username or password", 401)

        token = create_access_token(identity=username, additional_claims={"role": "admin"})
        response = jsonify(
            {
                "message": "Logged in successfully",
                "user": {"username": username, "role": "admin"},
            }
        )
        set_access_cookies(response, token)
        return response

    @app.route("/api/auth", methods=["GET"])
    def auth_status():
        try:
            verify_jwt_in_request(optional=True)
        except (JWTExtendedException, PyJWTError):
            return jsonify({"authenticated": False})

        claims = get_jwt()
        if not claims:
            return jsonify({"authenticated": False})
        return jsonify({"authenticated": True, "user": claims})

    @app.route("/api/auth", methods=["DELETE"])
    def logout():
        response = jsonify({"message": "Logged out successfully"})
        unset_jwt_cookies(response)
        return response

    # Products
    @app.route("/api/products", methods=["GET"])
    @failure_message("Failed to fetch products")
    def list_products():
        query: Dict[str, object] = {}
        theme = (request.args.get("theme") or "").strip()
        difficulty = (request.args.get("difficulty") or "").strip()
        if theme:
            query["theme"] = theme
        if difficulty:
            query["difficulty"] = difficulty
        if request.args.get("featured") == "true":
            query["featured"] = True

        sort_option = PRODUCT_SORTS.get(
            request.args.get("sort") or "newest", PRODUCT_SORTS["newest"]
        )
        cursor = db.products.find(query).sort(sort_option)
        limit = parse_limit(request.args.get("limit"))
        if limit:
            cursor = cursor.limit(limit)

        return jsonify({"products": serialize_value(list(cursor))})

    @app.route("/api/products", methods=["POST"])
    @admin_required
    @failure_message("Failed to create product")
    def create_product():
        data, error = clean_fields(request.get_json(silent=True) or {}, PRODUCT_SCHEMA)
        if error:
            return error_response(error, 400)

        missing = missing_fields(data, PRODUCT_REQUIRED)
        if missing:
            return error_response(f"Missing required fields: {', '.join(missing)}", 400)

        slug = slugify(data["title"])
        if not slug:
            return error_response("Title must contain letters or numbers", 400)
        if slug_taken(db.products, slug):
            return error_response("A product with this title already exists", 409)

        product, insert_error = insert_document(
            db.products,
            {**PRODUCT_DEFAULTS, **data, "slug": slug},
            "A product with this title already exists",
        )
        if insert_error:
            return insert_error

        app.logger.info("Created product %s", slug)
        return jsonify({"product": serialize_value(product)}), 201

    @app.route("/api/products/<slug>", methods=["GET"])
    @failure_message("Failed to fetch product")
    def get_product(slug: str):
        product = db.products.find_one({"slug": slug})
        if not product:
            return error_response("Product not found", 404)
        return jsonify({"product": serialize_value(product)})

    @app.route("/api/products/<slug>", methods=["PUT"])
    @admin_required
    @failure_message("Failed to update product")
    def update_product(slug: str):
        product = db.products.find_one({"slug": slug})
        if not product:
            return error_response("Product not found", 404)

        payload = request.get_json(silent=True) or {}
        updates, error = clean_fields(payload, PRODUCT_SCHEMA)
        if error:
            return error_response(error, 400)

        blank = missing_fields(updates, PRODUCT_REQUIRED, partial=True)
        if blank:
            return error_response(f"Fields cannot be empty: {', '.join(blank)}", 400)

        if payload.get("slug"):
            new_slug = slugify(payload["slug"])
            if not new_slug:
                return error_response("Slug must contain letters or numbers", 400)
            if slug_taken(db.products, new_slug, exclude_id=product["_id"]):
                return error_response("A product with this slug already exists", 409)
            updates["slug"] = new_slug

        updated = update_document(db.products, product["_id"], updates)
        if not updated:
            return error_response("Product not found", 404)

        cleanup_replaced_images(product, updated, PRODUCT_IMAGE_FIELDS)
        return jsonify({"product": serialize_value(updated)})

    @app.route("/api/products/<slug>", methods=["DELETE"])
    @admin_required
    @failure_message("Failed to delete product")
    def delete_product(slug: str):
        product = db.products.find_one_and_delete({"slug": slug})
        if not product:
            return error_response("Product not found", 404)

        media.delete_image_urls(collect_urls(product, PRODUCT_IMAGE_FIELDS))
        app.logger.info("Deleted product %s", slug)
        return jsonify({"message": "Product deleted successfully"})

    # Blog
    @app.route("/api/blog", methods=["GET"])
    @failure_message("Failed to fetch blog posts")
    def list_blog_posts():
        query: Dict[str, object] = {}
        if not (request.args.get("all") == "true" and is_admin_request()):
            query["published"] = True

        category = (request.args.get("category") or "").strip()
        if category:
            query["category"] = category

        cursor = db.blogposts.find(query).sort("createdAt", DESCENDING)
        limit = parse_limit(request.args.get("limit"))
        if limit:
            cursor = cursor.limit(limit)

        return jsonify({"posts": serialize_value(list(cursor))})

    @app.route("/api/blog", methods=["POST"])
    @admin_required
    @failure_message("Failed to create blog post")
    def create_blog_post():
        data, error = clean_fields(request.get_json(silent=True) or {}, BLOG_SCHEMA)
        if error:
            return error_response(error, 400)

        missing = missing_fields(data, BLOG_REQUIRED)
        if missing:
            return error_response(f"Missing required fields: {', '.join(missing)}", 400)

        slug = slugify(data["title"])
        if not slug:
            return error_response("Title must contain letters or numbers", 400)
        if slug_taken(db.blogposts, slug):
            return error_response("A blog post with this title already exists", 409)

        post, insert_error = insert_document(
            db.blogposts,
            {**BLOG_DEFAULTS, **data, "slug": slug},
            "A blog post with this title already exists",
        )
        if insert_error:
            return insert_error

        return jsonify({"post": serialize_value(post)}), 201

    @app.route("/api/blog/<slug>", methods=["GET"])
    @failure_message("Failed to fetch blog post")
    def get_blog_post(slug: str):
        query: Dict[str, object] = {"slug": slug}
        if not is_admin_request():
            query["published"] = True

        post = db.blogposts.find_one(query)
        if not post:
            return error_response("Blog post not found", 404)
        return jsonify({"post": serialize_value(post)})

    @app.route("/api/blog/<slug>", methods=["PUT"])
    @admin_required
    @failure_message("Failed to update blog post")
    def update_blog_post(slug: str):
        post = db.blogposts.find_one({"slug": slug})
        if not post:
            return error_response("Blog post not found", 404)

        payload = request.get_json(silent=True) or {}
        updates, error = clean_fields(payload, BLOG_SCHEMA)
        if error:
            return error_response(error, 400)

        blank = missing_fields(updates, BLOG_REQUIRED, partial=True)
        if blank:
            return error_response(f"Fields cannot be empty: {', '.join(blank)}", 400)

        if payload.get("slug"):
            new_slug = slugify(payload["slug"])
            if not new_slug:
                return error_response("Slug must contain letters or numbers", 400)
            if slug_taken(db.blogposts, new_slug, exclude_id=post["_id"]):
                return error_response("A blog post with this slug already exists", 409)
            updates["slug"] = new_slug

        updated = update_document(db.blogposts, post["_id"], updates)
        if not updated:
            return error_response("Blog post not found", 404)

        cleanup_replaced_images(post, updated, ("thumbnail",))
        return jsonify({"post": serialize_value(updated)})

    @app.route("/api/blog/<slug>", methods=["DELETE"])
    @admin_required
    @failure_message("Failed to delete blog post")
    def delete_blog_post(slug: str):
        post = db.blogposts.find_one_and_delete({"slug": slug})
        if not post:
            return error_response("Blog post not found", 404)

        media.delete_image_urls(collect_urls(post, ("thumbnail",)))
        return jsonify({"message": "Blog post deleted successfully"})

    # Secrets (public)
    @app.route("/api/secrets", methods=["GET"])
    @failure_message("Failed to fetch secret books")
    def list_public_secret_books():
        books = serialize_value(
            list(
                db.secretbooks.find(
                    {"isActive": True},
                    projection={"title": 1, "slug": 1, "coverImage": 1},
                ).sort("createdAt", DESCENDING)
            )
        )
        return jsonify({"books": books, "products": books})

    @app.route("/api/secrets/<slug>", methods=["GET"])
    @failure_message("Failed to fetch book secrets")
    def get_secret_book(slug: str):
        book = db.secretbooks.find_one({"slug": slug, "isActive": True})
        if not book:
            return error_response("Secret Book not found", 404)

        first_secret = db.secretimages.find_one(
            {"secretBook": book["_id"], "isActive": True},
            sort=[("order", ASCENDING)],
        )
        preview_image = first_secret.get("uncolorImageUrl") if first_secret else None
        summary = serialize_book_summary(book, preview_image)

        if not secret_key_matches(book.get("secretKey"), request.args.get("key")):
            return error_response(
                "Unauthorized", 403, requiresKey=True, product=summary
            )

        secrets_cursor = (
            db.secretimages.find({"secretBook": book["_id"], "isActive": True})
            .sort([("order", ASCENDING), ("createdAt", DESCENDING)])
            .limit(SECRET_IMAGES_LIMIT)
        )
        return jsonify(
            {"product": summary, "secrets": serialize_value(list(secrets_cursor))}
        )

    # Secret books (admin)
    @app.route("/api/admin/secret-books", methods=["GET"])
    @admin_required
    @failure_message("Failed to fetch secret books")
    def admin_list_secret_books():
        cursor = db.secretbooks.find().sort("createdAt", DESCENDING)
        limit = parse_limit(request.args.get("limit"))
        if limit:
            cursor = cursor.limit(limit)
        return jsonify({"books": serialize_value(list(cursor))})

    @app.route("/api/admin/secret-books", methods=["POST"])
    @admin_required
    @failure_message("Failed to create secret book")
    def admin_create_secret_book():
        payload = request.get_json(silent=True) or {}
        data, error = clean_fields(payload, SECRET_BOOK_SCHEMA)
        if error:
            return error_response(error, 400)

        missing = missing_fields(data, SECRET_BOOK_REQUIRED)
        if missing:
            return error_response(f"Missing required fields: {', '.join(missing)}", 400)

        key_error = clean_secret_key(data)
        if key_error:
            return error_response(key_error, 400)

        slug = slugify(payload.get("slug") or data["title"])
        if not slug:
            return error_response("Title must contain letters or numbers", 400)
        if slug_taken(db.secretbooks, slug):
            return error_response("A secret book with this slug already exists", 409)

        book, insert_error = insert_document(
            db.secretbooks,
            {"isActive": True, **data, "slug": slug},
            "A secret book with this slug already exists",
        )
        if insert_error:
            return insert_error

        return jsonify({"book": serialize_value(book)}), 201

    @app.route("/api/admin/secret-books/<book_id>", methods=["PUT"])
    @admin_required
    @failure_message("Failed to update secret book")
    def admin_update_secret_book(book_id: str):
        book, load_error = fetch_document(db.secretbooks, book_id, "secret book")
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        updates, error = clean_fields(payload, SECRET_BOOK_SCHEMA)
        if error:
            return error_response(error, 400)

        blank = missing_fields(updates, SECRET_BOOK_REQUIRED, partial=True)
        if blank:
            return error_response(f"Fields cannot be empty: {', '.join(blank)}", 400)

        key_error = clean_secret_key(updates)
        if key_error:
            return error_response(key_error, 400)

        slug_source = payload.get("slug") or updates.get("title")
        if slug_source:
            new_slug = slugify(slug_source)
            if not new_slug:
                return error_response("Title must contain letters or numbers", 400)
            if slug_taken(db.secretbooks, new_slug, exclude_id=book["_id"]):
                return error_response("A secret book with this slug already exists", 409)
            updates["slug"] = new_slug

        updated = update_document(db.secretbooks, book["_id"], updates)
        if not updated:
            return error_response("Secret Book not found", 404)

        cleanup_replaced_images(book, updated, ("coverImage",))
        return jsonify({"book": serialize_value(updated)})

    @app.route("/api/admin/secret-books/<book_id>", methods=["DELETE"])
    @admin_required
    @failure_message("Failed to delete secret book")
    def admin_delete_secret_book(book_id: str):
        object_id = parse_object_id(book_id)
        if not object_id:
            return error_response("Invalid secret book identifier", 400)

        book = db.secretbooks.find_one_and_delete({"_id": object_id})
        if not book:
            return error_response("Secret Book not found", 404)

        removed = db.secretimages.delete_many({"secretBook": object_id})
        media.delete_image_urls(collect_urls(book, ("coverImage",)))
        if book.get("slug"):
            media.delete_folder(f"secrets/{book['slug']}")

        app.logger.info(
            "Deleted secret book %s with %s images", book.get("slug"), removed.deleted_count
        )
        return jsonify(
            {
                "message": "Secret book deleted successfully",
                "deletedSecrets": removed.deleted_count,
            }
        )

    # Secret images (admin)
    @app.route("/api/admin/secrets", methods=["GET"])
    @admin_required
    @failure_message("Failed to fetch secrets")
    def admin_list_secrets():
        query: Dict[str, object] = {}
        book_param = request.args.get("book")
        if book_param:
            book_object_id = parse_object_id(book_param)
            if not book_object_id:
                return error_response("Invalid secret book identifier", 400)
            query["secretBook"] = book_object_id

        secret_documents = list(
            db.secretimages.find(query).sort(
                [("order", ASCENDING), ("createdAt", DESCENDING)]
            )
        )
        populate(
            secret_documents,
            "secretBook",
            db.secretbooks,
            {"title": 1, "slug": 1},
        )
        return jsonify({"secrets": serialize_value(secret_documents)})

    @app.route("/api/admin/secrets", methods=["POST"])
    @admin_required
    @failure_message("Failed to create secret")
    def admin_create_secret():
        payload = request.get_json(silent=True) or {}
        # Older admin builds still send the parent as "product".
        book_reference = payload.get("secretBook") or payload.get("product")
        book, load_error = fetch_document(db.secretbooks, book_reference, "secret book")
        if load_error:
            return load_error

        data, error = clean_fields(payload, SECRET_IMAGE_SCHEMA)
        if error:
            return error_response(error, 400)

        missing = missing_fields(data, SECRET_IMAGE_REQUIRED)
        if missing:
            return error_response(f"Missing required fields: {', '.join(missing)}", 400)

        if data.get("order") is None:
            data["order"] = next_order(db.secretimages, {"secretBook": book["_id"]})

        secret, insert_error = insert_document(
            db.secretimages,
            {"isActive": True, **data, "secretBook": book["_id"]},
            "Secret already exists",
        )
        if insert_error:
            return insert_error

        return jsonify({"secret": serialize_value(secret)}), 201

    @app.route("/api/admin/secrets", methods=["DELETE"])
    @admin_required
    @failure_message("Failed to delete secrets")
    def admin_delete_book_secrets():
        book_param = request.args.get("bookId")
        if not book_param:
            return error_response("bookId is required", 400)

        book_object_id = parse_object_id(book_param)
        if not book_object_id:
            return error_response("Invalid secret book identifier", 400)

        removed = db.secretimages.delete_many({"secretBook": book_object_id})
        return jsonify(
            {
                "message": "All secrets deleted successfully",
                "deleted": removed.deleted_count,
            }
        )

    @app.route("/api/admin/secrets/<secret_id>", methods=["PUT"])
    @admin_required
    @failure_message("Failed to update secret")
    def admin_update_secret(secret_id: str):
        secret, load_error = fetch_document(db.secretimages, secret_id, "secret")
        if load_error:
            return load_error

        updates, error = clean_fields(request.get_json(silent=True) or {}, SECRET_IMAGE_SCHEMA)
        if error:
            return error_response(error, 400)

        blank = missing_fields(updates, SECRET_IMAGE_REQUIRED, partial=True)
        if blank:
            return error_response(f"Fields cannot be empty: {', '.join(blank)}", 400)

        updated = update_document(db.secretimages, secret["_id"], updates)
        if not updated:
            return error_response("Secret not found", 404)

        cleanup_replaced_images(secret, updated, SECRET_IMAGE_FILES)
        return jsonify({"secret": serialize_value(updated)})

    @app.route("/api/admin/secrets/<secret_id>", methods=["DELETE"])
    @admin_required
    @failure_message("Failed to delete secret")
    def admin_delete_secret(secret_id: str):
        object_id = parse_object_id(secret_id)
        if not object_id:
            return error_response("Invalid secret identifier", 400)

        secret = db.secretimages.find_one_and_delete({"_id": object_id})
        if not secret:
            return error_response("Secret not found", 404)

        media.delete_image_urls(collect_urls(secret, SECRET_IMAGE_FILES))
        return jsonify({"message": "Secret deleted successfully"})

    # Coloring folders
    @app.route("/api/coloring-folders", methods=["GET"])
    @failure_message("Failed to fetch folders")
    def list_coloring_folders():
        query: Dict[str, object] = {"isActive": True}
        if request.args.get("all") == "true" and is_admin_request():
            query = {}

        folders = list(
            db.coloringfolders.find(query).sort(
                [("order", ASCENDING), ("createdAt", DESCENDING)]
            )
        )
        folder_ids = [folder["_id"] for folder in folders]
        page_counts = {}
        if folder_ids:
            page_counts = {
                entry["_id"]: entry["count"]
                for entry in db.coloringpages.aggregate(
                    [
                        {"$match": {"folder": {"$in": folder_ids}}},
                        {"$group": {"_id": "$folder", "count": {"$sum": 1}}},
                    ]
                )
            }

        for folder in folders:
            folder["pageCount"] = page_counts.get(folder["_id"], 0)

        return jsonify({"folders": serialize_value(folders)})

    @app.route("/api/coloring-folders", methods=["POST"])
    @admin_required
    @failure_message("Failed to create folder")
    def create_coloring_folder():
        data, error = clean_fields(request.get_json(silent=True) or {}, FOLDER_SCHEMA)
        if error:
            return error_response(error, 400)

        name = data.get("name") or ""
        if not name:
            return error_response("Folder name is required", 400)

        slug = slugify(name)
        if not slug:
            return error_response("Folder name must contain letters or numbers", 400)
        if slug_taken(db.coloringfolders, slug):
            return error_response("A folder with this name already exists", 409)

        folder, insert_error = insert_document(
            db.coloringfolders,
            {
                "name": name,
                "slug": slug,
                "description": data.get("description") or "",
                "thumbnail": data.get("thumbnail") or "",
                "order": next_order(db.coloringfolders),
                "isActive": True,
            },
            "A folder with this name already exists",
        )
        if insert_error:
            return insert_error

        return jsonify({"folder": serialize_value(folder)}), 201

    @app.route("/api/coloring-folders/<folder_id>", methods=["GET"])
    @failure_message("Failed to fetch folder")
    def get_coloring_folder(folder_id: str):
        folder, load_error = fetch_document(db.coloringfolders, folder_id, "folder")
        if load_error:
            return load_error

        pages = db.coloringpages.find({"folder": folder["_id"]}).sort(
            [("order", ASCENDING), ("createdAt", ASCENDING)]
        )
        return jsonify(
            {"folder": serialize_value(folder), "pages": serialize_value(list(pages))}
        )

    @app.route("/api/coloring-folders/<folder_id>", methods=["PUT"])
    @admin_required
    @failure_message("Failed to update folder")
    def update_coloring_folder(folder_id: str):
        folder, load_error = fetch_document(db.coloringfolders, folder_id, "folder")
        if load_error:
            return load_error

        updates, error = clean_fields(request.get_json(silent=True) or {}, FOLDER_SCHEMA)
        if error:
            return error_response(error, 400)

        if "name" in updates:
            if not updates["name"]:
                return error_response("Folder name is required", 400)
            new_slug = slugify(updates["name"])
            if not new_slug:
                return error_response("Folder name must contain letters or numbers", 400)
            if slug_taken(db.coloringfolders, new_slug, exclude_id=folder["_id"]):
                return error_response("A folder with this name already exists", 409)
            updates["slug"] = new_slug

        updated = update_document(db.coloringfolders, folder["_id"], updates)
        if not updated:
            return error_response("Folder not found", 404)
        return jsonify({"folder": serialize_value(updated)})

    @app.route("/api/coloring-folders/<folder_id>", methods=["DELETE"])
    @admin_required
    @failure_message("Failed to delete folder")
    def delete_coloring_folder(folder_id: str):
        folder, load_error = fetch_document(db.coloringfolders, folder_id, "folder")
        if load_error:
            return load_error

        pages = list(
            db.coloringpages.find({"folder": folder["_id"]}, projection={"publicId": 1})
        )
        removed = db.coloringpages.delete_many({"folder": folder["_id"]})
        db.coloringfolders.delete_one({"_id": folder["_id"]})

        for page in pages:
            media.delete_image(page.get("publicId"))

        app.logger.info(
            "Deleted folder %s with %s pages", folder.get("slug"), removed.deleted_count
        )
        return jsonify({"success": True, "deletedPages": removed.deleted_count})

    # Coloring pages
    @app.route("/api/coloring-pages", methods=["GET"])
    @failure_message("Failed to fetch pages")
    def list_coloring_pages():
        query: Dict[str, object] = {}
        folder_param = request.args.get("folder")
        if folder_param:
            folder_object_id = parse_object_id(folder_param)
            if not folder_object_id:
                return error_response("Invalid folder identifier", 400)
            query["folder"] = folder_object_id

        pages = list(
            db.coloringpages.find(query).sort(
                [("order", ASCENDING), ("createdAt", ASCENDING)]
            )
        )
        populate(pages, "folder", db.coloringfolders, {"name": 1, "slug": 1})
        return jsonify({"pages": serialize_value(pages)})

    def resolve_upload_folder():
        folder_param = (request.form.get("folder") or "").strip()
        if not folder_param:
            return None, error_response("Folder ID is required", 400)
        return fetch_document(db.coloringfolders, folder_param, "folder")

    def upload_coloring_page(image_file, folder, order: int, title: Optional[str] = None):
        original_name = image_file.filename or ""
        if not media.allowed_image_extension(secure_filename(original_name)):
            raise ValueError(f"Unsupported image format: {original_name}")

        url, public_id = media.upload_image(
            image_file, f"{media.DEFAULT_FOLDER}/coloring/{folder['_id']}"
        )
        page_title = title or os.path.splitext(original_name)[0].strip() or "Untitled"
        page, insert_error = insert_document(
            db.coloringpages,
            {
                "title": page_title,
                "imageUrl": url,
                "publicId": public_id,
                "folder": folder["_id"],
                "order": order,
            },
            "Page already exists",
        )
        if insert_error:
            media.delete_image(public_id)
            raise ValueError(f"Could not store page for {original_name}")
        return page

    @app.route("/api/coloring-pages", methods=["POST"])
    @admin_required
    @failure_message("Failed to create page")
    def create_coloring_page():
        image_file = request.files.get("file")
        if not image_file or not image_file.filename:
            return error_response("No file provided", 400)

        folder, load_error = resolve_upload_folder()
        if load_error:
            return load_error

        if not media.allowed_image_extension(secure_filename(image_file.filename)):
            return error_response(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, WEBP or SVG files.",
                400,
            )

        page = upload_coloring_page(
            image_file,
            folder,
            next_order(db.coloringpages, {"folder": folder["_id"]}),
            title=(request.form.get("title") or "").strip(),
        )
        return jsonify({"page": serialize_value(page)}), 201

    @app.route("/api/coloring-pages/batch", methods=["POST"])
    @admin_required
    @failure_message("Failed to batch upload")
    def batch_upload_coloring_pages():
        folder, load_error = resolve_upload_folder()
        if load_error:
            return load_error

        image_files = [
            image_file
            for image_file in request.files.getlist("files")
            if image_file and image_file.filename
        ]
        if not image_files:
            return error_response("No files provided", 400)

        current_order = next_order(db.coloringpages, {"folder": folder["_id"]})
        created_pages = []
        errors: List[str] = []

        for image_file in image_files:
            try:
                page = upload_coloring_page(image_file, folder, current_order)
            except Exception:
                app.logger.exception("Error uploading %s", image_file.filename)
                errors.append(image_file.filename)
                continue
            created_pages.append(page)
            current_order += 1

        return (
            jsonify(
                {
                    "pages": serialize_value(created_pages),
                    "uploaded": len(created_pages),
                    "failed": len(errors),
                    "errors": errors,
                }
            ),
            201,
        )

    @app.route("/api/coloring-pages/<page_id>", methods=["DELETE"])
    @admin_required
    @failure_message("Failed to delete page")
    def delete_coloring_page(page_id: str):
        page, load_error = fetch_document(db.coloringpages, page_id, "page")
        if load_error:
            return load_error

        media.delete_image(page.get("publicId"))
        db.coloringpages.delete_one({"_id": page["_id"]})
        return jsonify({"success": True})

    # Gift links
    @app.route("/api/gift-links", methods=["GET"])
    @failure_message("Failed to fetch gift links")
    def list_gift_links():
        links = db.giftlinks.find({"isActive": True}).sort(
            [("order", ASCENDING), ("createdAt", DESCENDING)]
        )
        return jsonify({"links": serialize_value(list(links))})

    @app.route("/api/gift-links", methods=["POST"])
    @admin_required
    @failure_message("Failed to create gift link")
    def create_gift_link():
        data, error = clean_fields(request.get_json(silent=True) or {}, GIFT_LINK_SCHEMA)
        if error:
            return error_response(error, 400)
        if not data.get("title"):
            return error_response("Title is required", 400)
        if not data.get("url"):
            return error_response("URL is required", 400)

        link, insert_error = insert_document(
            db.giftlinks,
            {
                "title": data["title"],
                "description": data.get("description") or "",
                "url": data["url"],
                "thumbnail": data.get("thumbnail") or "",
                "order": next_order(db.giftlinks),
                "isActive": True,
            },
            "Gift link already exists",
        )
        if insert_error:
            return insert_error

        return jsonify({"link": serialize_value(link)}), 201

    @app.route("/api/gift-links/<link_id>", methods=["GET"])
    @failure_message("Failed to fetch gift link")
    def get_gift_link(link_id: str):
        link, load_error = fetch_document(db.giftlinks, link_id, "gift link")
        if load_error:
            return load_error
        return jsonify({"link": serialize_value(link)})

    @app.route("/api/gift-links/<link_id>", methods=["PUT"])
    @admin_required
    @failure_message("Failed to update gift link")
    def update_gift_link(link_id: str):
        link, load_error = fetch_document(db.giftlinks, link_id, "gift link")
        if load_error:
            return load_error

        updates, error = clean_fields(request.get_json(silent=True) or {}, GIFT_LINK_SCHEMA)
        if error:
            return error_response(error, 400)

        blank = missing_fields(updates, GIFT_LINK_REQUIRED, partial=True)
        if blank:
            return error_response(f"Fields cannot be empty: {', '.join(blank)}", 400)

        updated = update_document(db.giftlinks, link["_id"], updates)
        if not updated:
            return error_response("Gift link not found", 404)

        cleanup_replaced_images(link, updated, ("thumbnail",))
        return jsonify({"link": serialize_value(updated)})

    @app.route("/api/gift-links/<link_id>", methods=["DELETE"])
    @admin_required
    @failure_message("Failed to delete gift link")
    def delete_gift_link(link_id: str):
        object_id = parse_object_id(link_id)
        if not object_id:
            return error_response("Invalid gift link identifier", 400)

        link = db.giftlinks.find_one_and_delete({"_id": object_id})
        if not link:
            return error_response("Gift link not found", 404)

        media.delete_image_urls(collect_urls(link, ("thumbnail",)))
        return jsonify({"message": "Gift link deleted successfully"})

    # Contact
    @app.route("/api/contact", methods=["POST"])
    @failure_message("Failed to submit contact form")
    def submit_contact():
        payload = request.get_json(silent=True) or {}
        name = str(payload.get("name") or "").strip()
        email = str(payload.get("email") or "").strip()
        message = str(payload.get("message") or "").strip()

        if not name or not email or not message:
            return error_response("All fields are required", 400)
        if not is_valid_email(email):
            return error_response("Invalid email format", 400)

        contact, insert_error = insert_document(
            db.contacts,
            {"name": name, "email": email, "message": message, "read": False},
            "Message already received",
        )
        if insert_error:
            return insert_error

        if app.config.get("CONTACT_NOTIFY_EMAIL"):
            sent, error_details = mailer.send_contact_notification(contact)
            if not sent:
                app.logger.error(
                    "Contact notification delivery failed for %s: %s",
                    email,
                    error_details or "Unknown delivery error",
                )

        return (
            jsonify(
                {
                    "message": "Thank you for contacting us! We will get back to you soon.",
                    "contact": serialize_value(contact),
                }
            ),
            201,
        )

    @app.route("/api/contact", methods=["GET"])
    @admin_required
    @failure_message("Failed to fetch contacts")
    def list_contacts():
        query: Dict[str, object] = {}
        if request.args.get("unread") == "true":
            query["read"] = False

        contacts = db.contacts.find(query).sort("createdAt", DESCENDING)
        return jsonify({"contacts": serialize_value(list(contacts))})

    @app.route("/api/contact", methods=["PATCH"])
    @admin_required
    @failure_message("Failed to update contact")
    def update_contact():
        payload = request.get_json(silent=True) or {}
        contact_id = payload.get("id")
        if not contact_id:
            return error_response("Contact ID is required", 400)

        contact, load_error = fetch_document(db.contacts, contact_id, "contact")
        if load_error:
            return load_error

        updated = update_document(
            db.contacts, contact["_id"], {"read": parse_bool(payload.get("read"))}
        )
        if not updated:
            return error_response("Contact not found", 404)
        return jsonify({"contact": serialize_value(updated)})

    # Verification codes & subscribers
    @app.route("/api/send-code", methods=["POST"])
    @failure_message("Failed to send code")
    def send_verification_code():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))

        if not email:
            return error_response("Email is required", 400)
        if not is_valid_email(email):
            return error_response("Invalid email format", 400)

        code = generate_verification_code()
        persist_verification_code(email, code)

        sent, error_details = mailer.send_verification_code(
            email, code, code_expiration_minutes
        )
        if not sent:
            db.verificationtokens.delete_one({"email": email})
            app.logger.error(
                "Verification code dispatch failed for %s: %s",
                email,
                error_details or "Unknown Resend error",
            )
            return error_response(
                "We could not send the verification email. Please try again in a moment.",
                502,
            )

        return jsonify(
            {
                "message": "Code sent successfully",
                "expiresInSeconds": code_expiration_minutes * 60,
                "codeLength": VERIFICATION_CODE_LENGTH,
            }
        )

    @app.route("/api/subscribers", methods=["POST"])
    @failure_message("Failed to subscribe")
    def subscribe():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        source = str(payload.get("source") or "gift").strip() or "gift"

        if not email:
            return error_response("Email is required", 400)
        if not is_valid_email(email):
            return error_response("Invalid email format", 400)

        if source == "gift":
            code = str(payload.get("code") or "").strip()
            if not code:
                return error_response("Verification code is required", 400)
            redemption_error = redeem_verification_code(email, code)
            if redemption_error:
                return error_response(redemption_error, 400)

        existing = db.subscribers.find_one({"email": email})
        if not existing:
            subscriber, insert_error = insert_document(
                db.subscribers,
                {"email": email, "source": source, "downloadedPages": []},
                "Already subscribed",
            )
            if not insert_error:
                app.logger.info("New subscriber via %s", source)
                return (
                    jsonify(
                        {
                            "message": "Successfully subscribed!",
                            "subscriber": serialize_value(subscriber),
                            "isNew": True,
                        }
                    ),
                    201,
                )
            existing = db.subscribers.find_one({"email": email})

        return jsonify(
            {
                "message": "Already subscribed",
                "subscriber": serialize_value(existing),
                "isNew": False,
            }
        )

    @app.route("/api/subscribers", methods=["GET"])
    @failure_message("Failed to fetch subscribers")
    def list_subscribers():
        email = normalize_email(request.args.get("email"))
        if email:
            subscriber = db.subscribers.find_one({"email": email})
            return jsonify(
                {
                    "subscribed": subscriber is not None,
                    "subscriber": serialize_value(subscriber),
                }
            )

        if not is_admin_request():
            return error_response("Unauthorized", 401)

        subscribers = db.subscribers.find().sort("createdAt", DESCENDING)
        return jsonify({"subscribers": serialize_value(list(subscribers))})

    # Media
    @app.route("/api/upload", methods=["POST"])
    @admin_required
    @failure_message("Failed to upload image")
    def upload_media():
        image_file = request.files.get("file")
        if not image_file or not image_file.filename:
            return error_response("No file provided", 400)

        if not media.allowed_image_extension(secure_filename(image_file.filename)):
            return error_response(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, WEBP or SVG files.",
                400,
            )

        folder = (request.form.get("folder") or "").strip() or media.DEFAULT_FOLDER
        url, public_id = media.upload_image(image_file, folder)
        return jsonify({"url": url, "publicId": public_id}), 201

    # Dashboard
    @app.route("/api/admin/dashboard", methods=["GET"])
    @admin_required
    @failure_message("Failed to load dashboard")
    def admin_dashboard():
        week_ago = utcnow() - timedelta(days=7)
        active_folder_ids = [
            folder["_id"]
            for folder in db.coloringfolders.find({"isActive": True}, projection={"_id": 1})
        ]
        recent_subscribers = db.subscribers.find().sort("createdAt", DESCENDING).limit(2)
        recent_messages = db.contacts.find().sort("createdAt", DESCENDING).limit(2)

        return jsonify(
            {
                "products": db.products.count_documents({}),
                "blogPosts": db.blogposts.count_documents({}),
                "subscribers": db.subscribers.count_documents({}),
                "newSubscribersThisWeek": db.subscribers.count_documents(
                    {"createdAt": {"$gte": week_ago}}
                ),
                "messages": db.contacts.count_documents({}),
                "unreadMessages": db.contacts.count_documents({"read": False}),
                "freePages": db.coloringpages.count_documents(
                    {"folder": {"$in": active_folder_ids}}
                ),
                "recentSubscribers": serialize_value(list(recent_subscribers)),
                "recentMessages": serialize_value(list(recent_messages)),
            }
        )

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    register_commands(app, db)

    return app
