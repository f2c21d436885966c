"""Link store and the cache-aware link write path."""

from collections.abc import Sequence

import structlog
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from linkhop.core.config import get_settings
from linkhop.core.database import async_session_factory
from linkhop.models import Click, Link
from linkhop.schemas import EnrichedClickRecord, LinkCreate, LinkRecord, LinkUpdate
from linkhop.services.link_cache import RedirectCache

logger = structlog.get_logger()


class LinkStore:
    """Database access for links and recorded clicks.

    Returns ``LinkRecord`` snapshots rather than ORM objects so results can
    be cached and shared across tasks. Also serves as the analytics sink:
    ``batch_insert`` writes a batch of clicks in one transaction.

    Usage:
        store = LinkStore()
        link = await store.find_by_key("go.example.com", "launch")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or async_session_factory

    async def find_by_key(self, domain: str, slug: str) -> LinkRecord | None:
        """Get a link (active or not) by domain and slug."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Link).where(Link.domain == domain.lower(), Link.slug == slug)
            )
            link = result.scalar_one_or_none()
            return LinkRecord.model_validate(link) if link else None

    async def find_by_id(self, link_id: int) -> LinkRecord | None:
        """Get a link by its ID."""
        async with self._session_factory() as session:
            link = await session.get(Link, link_id)
            return LinkRecord.model_validate(link) if link else None

    async def create(self, link_data: LinkCreate) -> LinkRecord:
        """Insert a new link.

        Raises ValueError if the slug is already taken on that domain.
        """
        async with self._session_factory() as session:
            link = Link(**link_data.model_dump())
            session.add(link)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValueError(
                    f"Slug '{link_data.slug}' already exists on {link_data.domain}"
                ) from e
            await session.refresh(link)
            return LinkRecord.model_validate(link)

    async def update(self, link_id: int, link_data: LinkUpdate) -> LinkRecord | None:
        """Apply the fields set on ``link_data``. Returns None if not found."""
        async with self._session_factory() as session:
            link = await session.get(Link, link_id)
            if link is None:
                return None

            update_data = link_data.model_dump(exclude_unset=True, exclude_none=True)
            for field, value in update_data.items():
                setattr(link, field, value)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValueError("Slug already exists for this domain") from e
            await session.refresh(link)
            return LinkRecord.model_validate(link)

    async def soft_delete(self, link_id: int) -> bool:
        """Mark a link inactive. Returns False if not found."""
        async with self._session_factory() as session:
            link = await session.get(Link, link_id)
            if link is None:
                return False
            link.is_active = False
            await session.commit()
            return True

    async def batch_insert(self, records: Sequence[EnrichedClickRecord]) -> None:
        """Insert a batch of clicks; all rows are written or none are."""
        if not records:
            return

        async with self._session_factory() as session:
            try:
                await session.execute(insert(Click), [r.model_dump() for r in records])
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error("Batch insert failed", count=len(records), error=str(e))
                raise


def _check_domain(domain: str, allowed_domains: Sequence[str] | None) -> None:
    """Reject domains outside the allowlist.

    Without an explicit list the configured ``DOMAINS`` setting applies; an
    empty setting allows every domain.
    """
    if allowed_domains is None:
        settings = get_settings()
        allowed = not settings.allowed_domains or settings.is_domain_allowed(domain)
    else:
        allowed = domain.lower() in allowed_domains
    if not allowed:
        raise ValueError(f"Domain '{domain}' is not allowed")


async def create_link(
    store: LinkStore,
    link_data: LinkCreate,
    allowed_domains: Sequence[str] | None = None,
) -> LinkRecord:
    """Create a link on an allowed domain.

    Nothing is cached here: misses are never cached, so a new key cannot
    shadow a stale entry.
    """
    _check_domain(link_data.domain, allowed_domains)
    link = await store.create(link_data)
    logger.info("Link created", link_id=link.id, domain=link.domain, slug=link.slug)
    return link


async def update_link(
    store: LinkStore,
    cache: RedirectCache,
    link_id: int,
    link_data: LinkUpdate,
    allowed_domains: Sequence[str] | None = None,
) -> LinkRecord | None:
    """Update a link and drop its cache entry.

    The cache is invalidated under the key the link had *before* the
    update. After a slug or domain rename the new key has never been
    cached, while the old key would otherwise keep redirecting.
    """
    existing = await store.find_by_id(link_id)
    if existing is None:
        return None
    if link_data.domain is not None:
        _check_domain(link_data.domain, allowed_domains)

    old_domain, old_slug = existing.domain, existing.slug
    try:
        updated = await store.update(link_id, link_data)
    finally:
        cache.invalidate(old_domain, old_slug)

    logger.info(
        "Link updated",
        link_id=link_id,
        old_key=f"{old_domain}/{old_slug}",
        new_key=f"{updated.domain}/{updated.slug}" if updated else None,
    )
    return updated


async def delete_link(store: LinkStore, cache: RedirectCache, link_id: int) -> bool:
    """Soft-delete a link and drop its cache entry so redirects return 410."""
    existing = await store.find_by_id(link_id)
    if existing is None:
        return False

    try:
        deleted = await store.soft_delete(link_id)
    finally:
        cache.invalidate(existing.domain, existing.slug)

    logger.info("Link deleted", link_id=link_id, domain=existing.domain, slug=existing.slug)
    return deleted
