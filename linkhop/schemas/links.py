"""Link Pydantic schemas."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _validate_slug(v: str | None) -> str | None:
    if v is None:
        return v
    if not SLUG_PATTERN.match(v):
        raise ValueError("Slug can only contain letters, numbers, hyphens and underscores")
    return v


class LinkRecord(BaseModel):
    """Read-only snapshot of a link, as served from the redirect cache.

    Instances are frozen so the cache and the collector can share them
    between tasks without copying.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    slug: str
    domain: str
    destination: str
    title: str = ""
    tags: str = ""
    notes: str = ""
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def short_url(self) -> str:
        """Public short URL for this link."""
        return f"https://{self.domain}/{self.slug}"


class LinkCreate(BaseModel):
    """Schema for creating a new link."""

    slug: str = Field(min_length=1, max_length=64)
    domain: str = Field(min_length=1, max_length=255)
    destination: str = Field(min_length=1, description="URL to redirect to")
    title: str = Field(default="", max_length=255)
    tags: str = Field(default="", description="Comma-separated labels")
    notes: str = ""

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        return _validate_slug(v)

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, v: str) -> str:
        return v.strip().lower()


class LinkUpdate(BaseModel):
    """Schema for updating a link. Only fields that are set are applied."""

    slug: str | None = Field(default=None, min_length=1, max_length=64)
    domain: str | None = Field(default=None, min_length=1, max_length=255)
    destination: str | None = Field(default=None, min_length=1)
    title: str | None = Field(default=None, max_length=255)
    tags: str | None = None
    notes: str | None = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str | None) -> str | None:
        return _validate_slug(v)

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, v: str | None) -> str | None:
        return v.strip().lower() if v is not None else v
