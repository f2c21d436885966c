"""Datacenter and threat IP checker with periodic feed refresh."""

import asyncio
import ipaddress
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
import structlog

from linkhop.core.observability import record_feed_error, record_threat_refresh
from linkhop.services.threat_feeds import (
    DEFAULT_IP_SOURCES,
    DEFAULT_RANGE_SOURCES,
    Address,
    FeedSource,
    Network,
)

logger = structlog.get_logger()

REFRESH_INTERVAL = 24 * 60 * 60.0
FETCH_TIMEOUT = 30.0


@dataclass(frozen=True, slots=True)
class ThreatIndex:
    """Immutable snapshot of blocked ranges and blocked addresses."""

    networks: tuple[Network, ...] = ()
    blocked_ips: frozenset[Address] = frozenset()

    @classmethod
    def from_strings(
        cls,
        cidrs: Iterable[str] = (),
        ips: Iterable[str] = (),
    ) -> "ThreatIndex":
        """Build an index from literal CIDRs and addresses (invalid ones raise)."""
        return cls(
            networks=tuple(ipaddress.ip_network(c, strict=False) for c in cidrs),
            blocked_ips=frozenset(ipaddress.ip_address(ip) for ip in ips),
        )

    def contains(self, address: Address) -> bool:
        if address in self.blocked_ips:
            return True
        return any(address in network for network in self.networks)


class ThreatChecker:
    """Classifies client IPs as datacenter, anonymizer or known-abusive.

    Keeps an in-memory ``ThreatIndex`` built from several feeds and refreshes
    it in the background, immediately on ``start()`` and then every
    ``refresh_interval`` seconds. All feeds of a cycle are fetched
    concurrently; a failing feed only loses its own contribution for that
    cycle (its last good entries are reused), and a cycle in which no fetched
    feed of a category succeeds keeps that category exactly as it was.

    Readers take a single reference to the current snapshot, so a refresh
    swapping in a new index is never observed half-applied.

    Usage:
        checker = ThreatChecker()
        await checker.start()
        if checker.is_blocked("203.0.113.7"):
            ...
        await checker.stop()
    """

    def __init__(
        self,
        range_sources: Sequence[FeedSource] = DEFAULT_RANGE_SOURCES,
        ip_sources: Sequence[FeedSource] = DEFAULT_IP_SOURCES,
        refresh_interval: float = REFRESH_INTERVAL,
        fetch_timeout: float = FETCH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        index: ThreatIndex | None = None,
    ):
        """Initialize the checker.

        Args:
            range_sources: Feeds contributing CIDR ranges.
            ip_sources: Feeds contributing individual addresses.
            refresh_interval: Seconds between refresh cycles.
            fetch_timeout: Per-request timeout for feed downloads.
            transport: Optional httpx transport (used by tests).
            index: Initial index, empty by default.
        """
        self._range_sources = tuple(range_sources)
        self._ip_sources = tuple(ip_sources)
        self._refresh_interval = refresh_interval
        self._fetch_timeout = fetch_timeout
        self._transport = transport
        self._index = index or ThreatIndex()
        self._last_good: dict[str, list] = {}
        # Serializes writers; readers never take it
        self._refresh_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._running = False
        self._refreshes = 0
        self._last_refresh_at: datetime | None = None

    @property
    def index(self) -> ThreatIndex:
        return self._index

    def is_blocked(self, ip: str) -> bool:
        """Return True if ip is in a blocked range or on a blocklist.

        Malformed input is never blocked.
        """
        if not ip:
            return False
        try:
            address = ipaddress.ip_address(ip.strip())
        except ValueError:
            return False
        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
            address = address.ipv4_mapped
        return self._index.contains(address)

    async def start(self) -> None:
        """Start the background refresh loop."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._refresh_loop(), name="threat-checker")
        logger.info(
            "Threat checker started",
            refresh_interval=self._refresh_interval,
            sources=len(self._range_sources) + len(self._ip_sources),
        )

    async def stop(self) -> None:
        """Stop the refresh loop, waiting for an in-flight refresh to finish."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None

        logger.info("Threat checker stopped", refreshes=self._refreshes)

    async def _refresh_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.refresh()
            except Exception as e:
                logger.error("Threat refresh failed", error=str(e))

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._refresh_interval)
            except asyncio.TimeoutError:
                pass

    async def refresh(self) -> ThreatIndex:
        """Fetch every feed once and swap in the rebuilt index."""
        async with self._refresh_lock:
            start_time = time.perf_counter()
            sources = self._range_sources + self._ip_sources

            async with httpx.AsyncClient(
                timeout=self._fetch_timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                results = await asyncio.gather(
                    *(self._load_source(client, source) for source in sources),
                    return_exceptions=True,
                )

            outcomes: dict[str, list | None] = {}
            failed = []
            for source, result in zip(sources, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.warning(
                        "Threat feed fetch failed",
                        source=source.name,
                        error=str(result) or type(result).__name__,
                    )
                    record_feed_error(source.name)
                    outcomes[source.name] = None
                    failed.append(source.name)
                else:
                    outcomes[source.name] = result
                    self._last_good[source.name] = result

            current = self._index
            networks = self._merge(self._range_sources, outcomes, current.networks)
            blocked_ips = self._merge(self._ip_sources, outcomes, current.blocked_ips)
            self._index = ThreatIndex(
                networks=tuple(dict.fromkeys(networks)),
                blocked_ips=frozenset(blocked_ips),
            )

            duration = time.perf_counter() - start_time
            self._refreshes += 1
            self._last_refresh_at = datetime.now(timezone.utc)
            record_threat_refresh(duration, len(self._index.networks), len(self._index.blocked_ips))

            if failed:
                logger.warning("Partial threat refresh", failed_sources=failed)
            logger.info(
                "Threat index refreshed",
                ranges=len(self._index.networks),
                blocked_ips=len(self._index.blocked_ips),
                duration_ms=round(duration * 1000, 2),
            )
            return self._index

    async def _load_source(self, client: httpx.AsyncClient, source: FeedSource) -> list:
        if source.is_static:
            return source.parse_static()

        response = await client.get(source.url)
        response.raise_for_status()
        entries = source.parser(response.text)
        logger.debug("Threat feed loaded", source=source.name, entries=len(entries))
        return entries

    def _merge(
        self,
        sources: Sequence[FeedSource],
        outcomes: dict[str, list | None],
        current: Iterable,
    ) -> Iterable:
        """Combine one category's feeds, falling back to the live entries.

        A category whose fetched feeds all failed keeps a non-empty
        ``current``. Otherwise failed feeds contribute their last good
        entries, so static lists still load while every download is down.
        """
        fetched = [s for s in sources if not s.is_static]
        if current and fetched and all(outcomes[s.name] is None for s in fetched):
            return current

        merged: list = []
        for source in sources:
            entries = outcomes[source.name]
            if entries is None:
                entries = self._last_good.get(source.name, [])
            merged.extend(entries)
        return merged or current

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        """Get checker statistics."""
        index = self._index
        return {
            "running": self._running,
            "ranges": len(index.networks),
            "blocked_ips": len(index.blocked_ips),
            "refreshes": self._refreshes,
            "last_refresh_at": self._last_refresh_at.isoformat() if self._last_refresh_at else None,
        }
