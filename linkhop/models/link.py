"""Link SQLAlchemy model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from linkhop.core.database import Base


class Link(Base):
    """Link model for shortened URLs.

    A link is addressed by its (domain, slug) pair; the same slug may exist
    on several domains.
    """

    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Short path segment (case-sensitive)",
    )
    domain: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Short domain the slug lives on (lower-case)",
    )
    destination: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="The URL to redirect to",
    )
    title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    tags: Mapped[str] = mapped_column(Text, default="", nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Whether the link is active (soft delete)",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("slug", "domain", name="uq_links_slug_domain"),
        Index("ix_links_domain_slug", "domain", "slug"),
    )

    def __repr__(self) -> str:
        return f"<Link {self.domain}/{self.slug} -> {self.destination[:50]}>"
