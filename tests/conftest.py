"""Pytest configuration and shared fixtures."""

import os
from collections.abc import Sequence
from types import SimpleNamespace

# Keep the module-level engine away from a real database file
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio

from linkhop.core.database import build_engine, build_session_factory, init_db
from linkhop.schemas import EnrichedClickRecord, LinkRecord
from linkhop.services import LinkStore

CHROME_DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
GOOGLEBOT_UA = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


class FakeSink:
    """In-memory click sink recording every batch it receives."""

    def __init__(self, fail: bool = False):
        self.batches: list[list[EnrichedClickRecord]] = []
        self.fail = fail

    async def batch_insert(self, records: Sequence[EnrichedClickRecord]) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.batches.append(list(records))

    @property
    def records(self) -> list[EnrichedClickRecord]:
        return [record for batch in self.batches for record in batch]


class StubGeoReader:
    """Stands in for geoip2.database.Reader with fixed city answers."""

    def __init__(self, answers: dict[str, SimpleNamespace] | None = None):
        self.answers = answers or {}
        self.closed = False

    def city(self, address):
        try:
            return self.answers[str(address)]
        except KeyError:
            raise ValueError(f"{address} not in database") from None

    def close(self) -> None:
        self.closed = True


def make_city_response(
    country: str | None = "NO",
    city: str | None = "Oslo",
    region: str | None = "Oslo County",
    latitude: float | None = 59.9,
    longitude: float | None = 10.7,
) -> SimpleNamespace:
    """Build an object shaped like geoip2.models.City."""
    return SimpleNamespace(
        country=SimpleNamespace(iso_code=country),
        city=SimpleNamespace(name=city),
        subdivisions=SimpleNamespace(most_specific=SimpleNamespace(name=region)),
        location=SimpleNamespace(latitude=latitude, longitude=longitude),
    )


def make_link(**overrides) -> LinkRecord:
    data = {
        "id": 1,
        "slug": "launch",
        "domain": "go.example.com",
        "destination": "https://example.com/landing",
    }
    data.update(overrides)
    return LinkRecord(**data)


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A throwaway SQLite database with all tables created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'linkhop.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(db_engine) -> LinkStore:
    return LinkStore(build_session_factory(db_engine))
