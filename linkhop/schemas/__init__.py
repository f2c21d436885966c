"""Pydantic schemas for links and click events."""

from linkhop.schemas.clicks import EnrichedClickRecord, RawClickEvent
from linkhop.schemas.links import LinkCreate, LinkRecord, LinkUpdate

__all__ = [
    "EnrichedClickRecord",
    "RawClickEvent",
    "LinkCreate",
    "LinkRecord",
    "LinkUpdate",
]
