"""Slug helpers: shape validation, base derivation and collision-free allocation."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable

# 1-50 chars, lowercase alphanumerics, interior hyphens only
SLUG_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,48}[a-z0-9])?$")

FALLBACK_SLUG = "user"
MAX_BASE_LENGTH = 44

_SEPARATORS = re.compile(r"[^a-z0-9]+")


def is_valid_slug(slug: str) -> bool:
    """Return True if ``slug`` can be routed to an owner."""
    return bool(SLUG_PATTERN.match(slug))


def normalize(display_name: str | None, email: str | None) -> str:
    """Derive a base slug from a display name, falling back to the email local part.

    >>> normalize("John", "john@x.com")
    'john'
    >>> normalize("", "Jane.Doe+1@x.com")
    'jane-doe-1'
    """
    local_part = (email or "").split("@")[0]
    source = display_name or local_part or FALLBACK_SLUG
    base = _SEPARATORS.sub("-", source.strip().lower()).strip("-")
    # leave room for a numeric suffix within the 50-char routing limit
    base = base[:MAX_BASE_LENGTH].rstrip("-")
    return base or FALLBACK_SLUG


def _candidates(base_slug: str):
    yield base_slug
    n = 2
    while True:
        yield f"{base_slug}{n}"
        n += 1


def allocate(base_slug: str, exists: Callable[[str], bool]) -> str:
    """Return ``base_slug`` if free, else the first free ``base_slug{n}`` for n >= 2."""
    return next(c for c in _candidates(base_slug) if not exists(c))


async def allocate_async(base_slug: str, exists: Callable[[str], Awaitable[bool]]) -> str:
    """Same as :func:`allocate` with an async existence check (e.g. a repository lookup)."""
    candidates = _candidates(base_slug)
    while True:
        candidate = next(candidates)
        if not await exists(candidate):
            return candidate
