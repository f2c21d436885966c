"""Tests for the link store and the cache-aware write path."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from linkhop.core.config import Settings
from linkhop.models import Click
from linkhop.schemas import EnrichedClickRecord, LinkCreate, LinkUpdate
from linkhop.services import RedirectCache, create_link, delete_link, update_link

DOMAIN = "go.example.com"


async def seed(store, slug="launch", domain=DOMAIN, destination="https://example.com/a"):
    return await store.create(LinkCreate(slug=slug, domain=domain, destination=destination))


class TestLinkStore:
    """Test CRUD against a temporary SQLite database."""

    @pytest.mark.asyncio
    async def test_create_and_find_by_key(self, store):
        created = await seed(store)

        found = await store.find_by_key(DOMAIN, "launch")

        assert found is not None
        assert found.id == created.id
        assert found.destination == "https://example.com/a"
        assert found.is_active
        assert found.created_at is not None

    @pytest.mark.asyncio
    async def test_find_by_key_domain_case_insensitive(self, store):
        await seed(store)
        assert await store.find_by_key("GO.EXAMPLE.COM", "launch") is not None

    @pytest.mark.asyncio
    async def test_find_by_key_slug_case_sensitive(self, store):
        await seed(store)
        assert await store.find_by_key(DOMAIN, "Launch") is None

    @pytest.mark.asyncio
    async def test_find_missing(self, store):
        assert await store.find_by_key(DOMAIN, "nope") is None
        assert await store.find_by_id(999) is None

    @pytest.mark.asyncio
    async def test_duplicate_slug_on_same_domain(self, store):
        await seed(store)
        with pytest.raises(ValueError):
            await seed(store)

    @pytest.mark.asyncio
    async def test_same_slug_on_other_domain(self, store):
        await seed(store)
        other = await seed(store, domain="other.example")
        assert other.domain == "other.example"

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, store):
        assert await store.update(999, LinkUpdate(destination="https://x.example")) is None

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_row(self, store):
        link = await seed(store)

        assert await store.soft_delete(link.id)

        found = await store.find_by_key(DOMAIN, "launch")
        assert found is not None
        assert not found.is_active

    @pytest.mark.asyncio
    async def test_soft_delete_missing(self, store):
        assert not await store.soft_delete(999)

    @pytest.mark.asyncio
    async def test_batch_insert(self, store, db_engine):
        link = await seed(store)
        now = datetime.now(timezone.utc)
        records = [
            EnrichedClickRecord(link_id=link.id, clicked_at=now, ip="81.0.0.1", country="NO"),
            EnrichedClickRecord(link_id=link.id, clicked_at=now, device_type="mobile"),
        ]

        await store.batch_insert(records)

        async with db_engine.connect() as conn:
            count = await conn.scalar(select(func.count()).select_from(Click))
        assert count == 2

    @pytest.mark.asyncio
    async def test_batch_insert_empty_is_noop(self, store):
        await store.batch_insert([])


class TestWritePath:
    """Test that writes keep the redirect cache honest."""

    @pytest.mark.asyncio
    async def test_create_link_checks_allowlist(self, store):
        data = LinkCreate(slug="launch", domain="evil.example", destination="https://x.example")
        with pytest.raises(ValueError):
            await create_link(store, data, allowed_domains=[DOMAIN])

        ok = LinkCreate(slug="launch", domain=DOMAIN, destination="https://x.example")
        assert (await create_link(store, ok, allowed_domains=[DOMAIN])).domain == DOMAIN

    @pytest.mark.asyncio
    async def test_update_invalidates_pre_rename_key(self, store):
        cache = RedirectCache(10)
        link = await seed(store)
        cache.set(DOMAIN, "launch", link)

        updated = await update_link(store, cache, link.id, LinkUpdate(slug="relaunch"))

        assert updated.slug == "relaunch"
        assert cache.get(DOMAIN, "launch") is None
        assert await store.find_by_key(DOMAIN, "launch") is None
        assert (await store.find_by_key(DOMAIN, "relaunch")).id == link.id

    @pytest.mark.asyncio
    async def test_update_domain_invalidates_old_domain(self, store):
        cache = RedirectCache(10)
        link = await seed(store)
        cache.set(DOMAIN, "launch", link)

        await update_link(store, cache, link.id, LinkUpdate(domain="New.Example"))

        assert (DOMAIN, "launch") not in cache
        assert (await store.find_by_key("new.example", "launch")).id == link.id

    @pytest.mark.asyncio
    async def test_update_destination_invalidates_entry(self, store):
        cache = RedirectCache(10)
        link = await seed(store)
        cache.set(DOMAIN, "launch", link)

        await update_link(store, cache, link.id, LinkUpdate(destination="https://example.com/b"))

        assert (DOMAIN, "launch") not in cache
        assert (await store.find_by_key(DOMAIN, "launch")).destination == "https://example.com/b"

    @pytest.mark.asyncio
    async def test_update_rejects_disallowed_domain(self, store):
        cache = RedirectCache(10)
        link = await seed(store)
        cache.set(DOMAIN, "launch", link)

        with pytest.raises(ValueError):
            await update_link(
                store, cache, link.id, LinkUpdate(domain="evil.example"), allowed_domains=[DOMAIN]
            )

        assert (DOMAIN, "launch") in cache

    @pytest.mark.asyncio
    async def test_failed_update_still_invalidates(self, store):
        cache = RedirectCache(10)
        link = await seed(store)
        await seed(store, slug="taken")
        cache.set(DOMAIN, "launch", link)

        with pytest.raises(ValueError):
            await update_link(store, cache, link.id, LinkUpdate(slug="taken"))

        assert (DOMAIN, "launch") not in cache

    @pytest.mark.asyncio
    async def test_update_missing_link(self, store):
        cache = RedirectCache(10)
        assert await update_link(store, cache, 999, LinkUpdate(slug="x")) is None

    @pytest.mark.asyncio
    async def test_delete_invalidates_current_key(self, store):
        cache = RedirectCache(10)
        link = await seed(store)
        cache.set(DOMAIN, "launch", link)

        assert await delete_link(store, cache, link.id)

        assert (DOMAIN, "launch") not in cache
        assert not (await store.find_by_id(link.id)).is_active

    @pytest.mark.asyncio
    async def test_delete_missing_link(self, store):
        assert not await delete_link(store, RedirectCache(10), 999)


class TestLinkMetadata:
    """Test tags and notes round-trip through the store."""

    @pytest.mark.asyncio
    async def test_create_with_tags_and_notes(self, store):
        link = await store.create(
            LinkCreate(
                slug="launch",
                domain=DOMAIN,
                destination="https://example.com/a",
                tags="campaign,q3",
                notes="Printed on the flyer",
            )
        )

        found = await store.find_by_id(link.id)
        assert found.tags == "campaign,q3"
        assert found.notes == "Printed on the flyer"

    @pytest.mark.asyncio
    async def test_update_tags_keeps_other_fields(self, store):
        link = await seed(store)

        updated = await store.update(link.id, LinkUpdate(tags="archive"))

        assert updated.tags == "archive"
        assert updated.notes == ""
        assert updated.destination == "https://example.com/a"


class TestConfiguredAllowlist:
    """Test that the DOMAINS setting applies when no list is passed."""

    @pytest.fixture
    def restricted(self, monkeypatch):
        settings = Settings(_env_file=None, domains="Go.Example.com")
        monkeypatch.setattr("linkhop.services.link.get_settings", lambda: settings)

    @pytest.mark.asyncio
    async def test_create_rejects_unlisted_domain(self, store, restricted):
        data = LinkCreate(slug="launch", domain="evil.example", destination="https://x.example")
        with pytest.raises(ValueError):
            await create_link(store, data)

    @pytest.mark.asyncio
    async def test_create_accepts_listed_domain(self, store, restricted):
        data = LinkCreate(slug="launch", domain=DOMAIN, destination="https://x.example")
        assert (await create_link(store, data)).domain == DOMAIN

    @pytest.mark.asyncio
    async def test_update_rejects_unlisted_domain(self, store, restricted):
        cache = RedirectCache(10)
        link = await seed(store)

        with pytest.raises(ValueError):
            await update_link(store, cache, link.id, LinkUpdate(domain="evil.example"))

        assert (await store.find_by_id(link.id)).domain == DOMAIN

    @pytest.mark.asyncio
    async def test_empty_setting_allows_any_domain(self, store, monkeypatch):
        settings = Settings(_env_file=None, domains="")
        monkeypatch.setattr("linkhop.services.link.get_settings", lambda: settings)

        data = LinkCreate(slug="launch", domain="any.example", destination="https://x.example")
        assert (await create_link(store, data)).domain == "any.example"
