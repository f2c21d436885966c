"""Click SQLAlchemy model for storing enriched click events."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from linkhop.core.database import Base


class Click(Base):
    """One recorded (human) click on a short link.

    Rows are written in batches by the analytics collector and never
    updated afterwards.
    """

    __tablename__ = "clicks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    link_id: Mapped[int] = mapped_column(
        ForeignKey("links.id"),
        nullable=False,
        index=True,
    )
    clicked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        comment="Timestamp when the redirect was served",
    )
    ip: Mapped[str] = mapped_column(String(45), default="", comment="Client IP address")
    user_agent: Mapped[str] = mapped_column(Text, default="")
    referer: Mapped[str] = mapped_column(Text, default="")
    referer_domain: Mapped[str] = mapped_column(String(255), default="")
    country: Mapped[str] = mapped_column(
        String(2),
        default="",
        comment="ISO 3166-1 alpha-2 country code (from GeoIP)",
    )
    city: Mapped[str] = mapped_column(String(255), default="")
    region: Mapped[str] = mapped_column(String(255), default="")
    latitude: Mapped[float] = mapped_column(Float, default=0.0)
    longitude: Mapped[float] = mapped_column(Float, default=0.0)
    browser: Mapped[str] = mapped_column(String(100), default="")
    browser_version: Mapped[str] = mapped_column(String(50), default="")
    os: Mapped[str] = mapped_column(String(100), default="")
    os_version: Mapped[str] = mapped_column(String(50), default="")
    device_type: Mapped[str] = mapped_column(
        String(10),
        default="desktop",
        comment="desktop, mobile or bot",
    )

    __table_args__ = (
        Index("ix_clicks_link_id_clicked_at", "link_id", "clicked_at"),
    )

    def __repr__(self) -> str:
        return f"<Click {self.id} link={self.link_id} at={self.clicked_at}>"
