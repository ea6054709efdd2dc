import re

from permission_engine.core.errors import ValidationError


_SLUG_RE = re.compile(r"^[a-z0-9]+(?:[_.:-][a-z0-9]+)*$")


def slugify(name: str) -> str:
    slug = name.strip().lower()
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug


def normalize_slug(value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError("Slug is required")
    slug = str(value).strip().lower()
    if not _SLUG_RE.match(slug):
        raise ValidationError(f"Invalid slug: {value!r}")
    return slug
