"""
Slug rules shared by checkout, trial signup and the availability check.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional


# System routes, language prefixes and common reserved names
RESERVED_SLUGS = frozenset({
    "admin",
    "api",
    "demo",
    "demo_gallery",
    "demo_livre-or",
    "connexion",
    "pricing",
    "offline",
    "account",
    "god",
    "test",
    "signup",
    "inscription",
    "registro",
    "fr",
    "es",
    "en",
    "www",
    "app",
    "static",
    "assets",
    "images",
    "css",
    "js",
    "_next",
    ".well-known",
})

SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 50

_SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$")
_SHORT_SLUG_PATTERN = re.compile(r"^[a-z0-9]{3}$")


def normalize_slug(slug: str) -> str:
    return slug.strip().lower()


def is_valid_slug_format(slug: str) -> bool:
    """
    3-50 characters of lowercase letters, digits and hyphens,
    starting and ending with a letter or digit.
    """
    if len(slug) < SLUG_MIN_LENGTH or len(slug) > SLUG_MAX_LENGTH:
        return False
    if len(slug) == SLUG_MIN_LENGTH:
        return bool(_SHORT_SLUG_PATTERN.match(slug))
    return bool(_SLUG_PATTERN.match(slug))


def is_reserved_slug(slug: str) -> bool:
    return slug in RESERVED_SLUGS


def slug_rejection_reason(slug: str) -> Optional[str]:
    """Return why a normalized slug cannot be used, or None if it is acceptable."""
    if not is_valid_slug_format(slug):
        return "invalid_format"
    if is_reserved_slug(slug):
        return "reserved"
    return None


def generate_slug_suggestions(base_slug: str, now: Optional[datetime] = None) -> List[str]:
    """Alternatives for a taken slug: with the current year, then numbered."""
    now = now or datetime.now(timezone.utc)
    candidates = [f"{base_slug}-{now.year}"]
    candidates.extend(f"{base_slug}-{i}" for i in range(2, 5))
    return [c for c in candidates if is_valid_slug_format(c) and not is_reserved_slug(c)]
