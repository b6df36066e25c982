"""
Input sanitization, form validation, token hashing and session tokens.
"""

import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

from jose import JWTError, jwt
from passlib.context import CryptContext

from schemas import (
    AuthUser,
    FieldError,
    ProjectInput,
    Session,
    SiteSettingsUpdate,
    WritingCategoryInput,
    WritingItemInput,
)

# Use pbkdf2_sha256 to avoid external bcrypt dependency issues
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ALGORITHM = "HS256"
AUDIENCE = "authenticated"
ACCESS_TOKEN_EXPIRE_MINUTES = 60

INPUT_LIMITS = {
    "title": 200,
    "slug": 100,
    "label": 100,
    "name": 100,
    "summary": 500,
    "description": 1000,
    "content": 50000,
    "url": 2048,
    "tags": 20,
    "tag_length": 50,
    "caption": 500,
}

ALLOWED_SCHEMES = ("http", "https", "mailto", "tel")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_SENSITIVE_PATTERNS = [
    re.compile(r"key[=:]\s*[a-zA-Z0-9_-]{20,}", re.IGNORECASE),
    re.compile(r"token[=:]\s*[a-zA-Z0-9_.-]{20,}", re.IGNORECASE),
    re.compile(r"password[=:]\s*\S+", re.IGNORECASE),
    re.compile(r"secret[=:]\s*\S+", re.IGNORECASE),
    re.compile(r"Bearer\s+[a-zA-Z0-9_.-]+", re.IGNORECASE),
    re.compile(r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+(\.[a-zA-Z0-9_-]+)?"),
]

MAX_ERROR_LENGTH = 500
GENERIC_ERROR = "An error occurred"


# =========
# Text
# =========

def safe_text(text: Any, max_length: int = 10000) -> str:
    if not isinstance(text, str) or not text:
        return ""
    return text.strip()[:max_length]


def safe_slug(text: Any, max_length: int = 100) -> str:
    """Lower-case, [a-z0-9-] only, single hyphens, no edge hyphens."""
    if not isinstance(text, str) or not text:
        return ""
    slug = re.sub(r"[^a-z0-9-]", "-", text.lower().strip())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:max_length].rstrip("-")


# =========
# URLs
# =========

def sanitize_url(url: Any) -> Optional[str]:
    """Return a normalized URL, or None when the URL is unsafe or malformed."""
    if not isinstance(url, str):
        return None
    trimmed = url.strip()
    if not trimmed:
        return None

    try:
        parts = urlsplit(trimmed)
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if not scheme:
        # root-relative paths only; "//host" would leave the site
        if trimmed.startswith("/") and not trimmed.startswith("//"):
            return trimmed
        return None
    if scheme not in ALLOWED_SCHEMES:
        return None
    if scheme in ("http", "https"):
        if not parts.netloc:
            return None
        return urlunsplit((scheme, parts.netloc.lower(), parts.path or "/", parts.query, parts.fragment))
    if not parts.path:
        return None
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


def is_valid_url(url: Any) -> bool:
    return sanitize_url(url) is not None


def is_external_url(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


def is_valid_email(email: Any) -> bool:
    if not isinstance(email, str):
        return False
    return bool(_EMAIL_RE.match(email.strip()))


# =========
# Errors
# =========

def sanitize_error_message(error: Any) -> str:
    """Strip secrets and cap the length of any error text shown or logged."""
    if not error:
        return GENERIC_ERROR
    if isinstance(error, BaseException):
        message = str(error)
    elif isinstance(error, str):
        message = error
    else:
        return GENERIC_ERROR

    for pattern in _SENSITIVE_PATTERNS:
        message = pattern.sub("[REDACTED]", message)

    if len(message) > MAX_ERROR_LENGTH:
        message = message[:MAX_ERROR_LENGTH] + "..."
    return message or GENERIC_ERROR


# ===========
# Validation
# ===========

def validate_required(value: Optional[str], field: str) -> Optional[FieldError]:
    if not value or not value.strip():
        return FieldError(field=field, message=f"{field} is required")
    return None


def validate_max_length(value: Optional[str], field: str, max_length: int) -> Optional[FieldError]:
    if value and len(value) > max_length:
        return FieldError(field=field, message=f"{field} must be {max_length} characters or less")
    return None


def validate_url(value: Optional[str], field: str, required: bool = False) -> Optional[FieldError]:
    if not value or not value.strip():
        if required:
            return FieldError(field=field, message=f"{field} is required")
        return None
    if not is_valid_url(value):
        return FieldError(field=field, message=f"{field} must be a valid URL")
    return None


def _collect(*checks: Optional[FieldError]) -> List[FieldError]:
    return [c for c in checks if c is not None]


def validate_project_input(project: ProjectInput) -> List[FieldError]:
    errors = _collect(
        validate_required(project.title, "title"),
        validate_max_length(project.title, "title", INPUT_LIMITS["title"]),
        validate_required(project.slug, "slug"),
        validate_max_length(project.slug, "slug", INPUT_LIMITS["slug"]),
        validate_max_length(project.summary, "summary", INPUT_LIMITS["summary"]),
        validate_url(project.content.links.live, "content.links.live"),
        validate_url(project.content.links.github, "content.links.github"),
    )
    if project.slug and not safe_slug(project.slug):
        errors.append(FieldError(field="slug", message="slug must contain letters or digits"))
    if len(project.tags) > INPUT_LIMITS["tags"]:
        errors.append(FieldError(field="tags", message=f"tags must have {INPUT_LIMITS['tags']} entries or fewer"))
    for i, tag in enumerate(project.tags):
        err = validate_max_length(tag, f"tags[{i}]", INPUT_LIMITS["tag_length"])
        if err:
            errors.append(err)
    for i, item in enumerate(project.media):
        errors.extend(_collect(
            validate_url(item.url, f"media[{i}].url", required=True),
            validate_max_length(item.caption, f"media[{i}].caption", INPUT_LIMITS["caption"]),
        ))
    return errors


def validate_writing_item_input(item: WritingItemInput) -> List[FieldError]:
    return _collect(
        validate_required(item.title, "title"),
        validate_max_length(item.title, "title", INPUT_LIMITS["title"]),
        validate_url(item.url, "url", required=True),
        validate_max_length(item.url, "url", INPUT_LIMITS["url"]),
        validate_max_length(item.platform_label, "platform_label", INPUT_LIMITS["label"]),
        validate_max_length(item.why_this_matters, "why_this_matters", INPUT_LIMITS["description"]),
    )


def validate_category_input(category: WritingCategoryInput) -> List[FieldError]:
    return _collect(
        validate_required(category.name, "name"),
        validate_max_length(category.name, "name", INPUT_LIMITS["name"]),
    )


def validate_settings_update(update: SiteSettingsUpdate) -> List[FieldError]:
    errors: List[FieldError] = []
    if update.nav_config is not None:
        links = list(update.nav_config.links)
        if update.nav_config.cta_button is not None:
            links.append(update.nav_config.cta_button)
        for i, link in enumerate(links):
            errors.extend(_collect(
                validate_required(link.label, f"nav_config.links[{i}].label"),
                validate_max_length(link.label, f"nav_config.links[{i}].label", INPUT_LIMITS["label"]),
                validate_url(link.href, f"nav_config.links[{i}].href", required=True),
            ))
    if update.seo is not None:
        errors.extend(_collect(
            validate_max_length(update.seo.title, "seo.title", INPUT_LIMITS["title"]),
            validate_max_length(update.seo.description, "seo.description", INPUT_LIMITS["description"]),
            validate_url(update.seo.og_image, "seo.og_image"),
            validate_url(update.seo.canonical_url, "seo.canonical_url"),
            validate_url(update.seo.favicon_url, "seo.favicon_url"),
        ))
    if update.pages is not None:
        contact = update.pages.contact
        if contact.email and not is_valid_email(contact.email):
            errors.append(FieldError(field="pages.contact.email", message="pages.contact.email must be a valid email"))
        errors.extend(_collect(
            validate_url(update.pages.resume.pdf_url, "pages.resume.pdf_url"),
            validate_url(contact.linkedin, "pages.contact.linkedin"),
            validate_url(contact.github, "pages.contact.github"),
            validate_url(contact.calendar, "pages.contact.calendar"),
        ))
    return errors


# ===============
# Tokens
# ===============

def hash_bootstrap_token(token: str) -> str:
    return pwd_context.hash(token)


def verify_bootstrap_token(token: str, hashed: Optional[str]) -> bool:
    if not token or not hashed:
        return False
    try:
        return pwd_context.verify(token, hashed)
    except (ValueError, TypeError):
        return False


def create_access_token(data: Dict[str, Any], secret: str, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": int(expire.timestamp()), "aud": AUDIENCE})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Verify the token when a secret is known; otherwise read its claims and
    leave verification to the backend, which checks every request anyway.
    """
    try:
        if secret:
            return jwt.decode(token, secret, algorithms=[ALGORITHM], audience=AUDIENCE)
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, (int, float)) and time.time() >= exp:
        return None
    return claims


def session_from_token(token: Optional[str], secret: Optional[str] = None) -> Optional[Session]:
    if not token:
        return None
    claims = decode_access_token(token, secret)
    if not claims or not claims.get("sub"):
        return None
    exp = claims.get("exp")
    return Session(
        access_token=token,
        expires_at=int(exp) if isinstance(exp, (int, float)) else None,
        user=AuthUser(id=str(claims["sub"]), email=claims.get("email")),
    )


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None
