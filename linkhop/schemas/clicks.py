"""Click event schemas passed from the redirect path to analytics storage."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawClickEvent(BaseModel):
    """A click as seen by the redirect handler, before enrichment."""

    model_config = ConfigDict(frozen=True)

    link_id: int = Field(description="ID of the link that was followed")
    clicked_at: datetime = Field(
        default_factory=_utcnow,
        description="Timestamp when the redirect was served",
    )
    ip: str = Field(default="", description="Client IP address")
    user_agent: str = Field(default="", description="HTTP User-Agent header")
    referer: str = Field(default="", description="HTTP Referer header")


class EnrichedClickRecord(BaseModel):
    """A click ready for durable storage.

    Field names match the columns of the ``clicks`` table so a batch can be
    handed to a bulk insert as ``model_dump()`` rows.
    """

    model_config = ConfigDict(frozen=True)

    link_id: int
    clicked_at: datetime
    ip: str = ""
    user_agent: str = ""
    referer: str = ""
    referer_domain: str = ""
    country: str = ""
    city: str = ""
    region: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    browser: str = ""
    browser_version: str = ""
    os: str = ""
    os_version: str = ""
    device_type: str = "desktop"
