"""Buffered click collector: filters, enriches and batch-writes click events."""

import asyncio
import time
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Protocol
from urllib.parse import urlparse

import structlog

from linkhop.core.observability import (
    record_batch_insert,
    record_click_dropped,
    record_click_filtered,
    record_click_pushed,
    record_flush_failed,
    set_pending_clicks,
)
from linkhop.schemas import EnrichedClickRecord, RawClickEvent
from linkhop.services.bot_detection import is_bot, parse_user_agent
from linkhop.services.geoip import GeoResolver
from linkhop.services.threat_checker import ThreatChecker

logger = structlog.get_logger()

DEFAULT_BUFFER_SIZE = 50_000
DEFAULT_FLUSH_INTERVAL = 30.0


class ClickSink(Protocol):
    """Durable storage for enriched clicks."""

    async def batch_insert(self, records: Sequence[EnrichedClickRecord]) -> None:
        """Write all records or none of them."""
        ...


class CollectorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


def referer_domain(referer: str) -> str:
    """Hostname of a Referer header, empty when missing or unparseable."""
    if not referer:
        return ""
    try:
        return urlparse(referer).hostname or ""
    except ValueError:
        return ""


def device_type(user_agent: str) -> str:
    parsed = parse_user_agent(user_agent)
    if parsed.is_bot:
        return "bot"
    if parsed.is_mobile:
        return "mobile"
    return "desktop"


class AnalyticsCollector:
    """Collects click events from the redirect path and persists them in batches.

    ``push`` only enqueues and never waits: when the buffer is full, or the
    collector has been shut down, the event is dropped and counted. All
    filtering, enrichment and storage happens at flush time, either every
    ``flush_interval`` seconds from the worker task or once more on
    ``shutdown()``.

    With ``filter_automated`` enabled, events from bot User-Agents or from
    addresses the threat checker blocks are discarded before enrichment.

    Usage:
        collector = AnalyticsCollector(sink=LinkStore(), geo=GeoResolver())
        await collector.start()
        collector.push(RawClickEvent(link_id=1, ip="198.51.100.4"))
        await collector.shutdown()  # Flushes remaining
    """

    def __init__(
        self,
        sink: ClickSink,
        geo: GeoResolver | None = None,
        threat_checker: ThreatChecker | None = None,
        bot_detector: Callable[[str], bool] = is_bot,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        filter_automated: bool = True,
    ):
        """Initialize the collector.

        Args:
            sink: Where enriched batches are written.
            geo: Geo resolver; lookups are skipped when None.
            threat_checker: Used to filter blocked IPs; optional.
            bot_detector: Predicate over the User-Agent string.
            buffer_size: Maximum number of events waiting for a flush.
            flush_interval: Seconds between periodic flushes.
            filter_automated: Drop bot and blocked-IP clicks before storage.
        """
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be positive")

        self._sink = sink
        self._geo = geo or GeoResolver()
        self._threat_checker = threat_checker
        self._bot_detector = bot_detector
        self._flush_interval = flush_interval
        self._filter_automated = filter_automated
        self._queue: asyncio.Queue[RawClickEvent] = asyncio.Queue(maxsize=buffer_size)
        self._flush_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._state = CollectorState.IDLE

        self._clicks_pushed = 0
        self._clicks_dropped = 0
        self._clicks_filtered = 0
        self._clicks_stored = 0
        self._batches_flushed = 0
        self._failed_flushes = 0

    @property
    def state(self) -> CollectorState:
        return self._state

    async def start(self) -> None:
        """Start the periodic flush worker."""
        if self._state is not CollectorState.IDLE:
            return

        self._state = CollectorState.RUNNING
        self._stop_event.clear()
        self._task = asyncio.create_task(self._flush_loop(), name="click-collector")
        logger.info(
            "Click collector started",
            buffer_size=self._queue.maxsize,
            flush_interval=self._flush_interval,
            filter_automated=self._filter_automated,
        )

    def push(self, event: RawClickEvent) -> bool:
        """Enqueue a click without blocking. Returns False if it was dropped."""
        if self._state in (CollectorState.DRAINING, CollectorState.STOPPED):
            self._record_drop(event, reason="stopped")
            return False

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._record_drop(event, reason="buffer_full")
            return False

        self._clicks_pushed += 1
        record_click_pushed()
        set_pending_clicks(self._queue.qsize())
        return True

    def _record_drop(self, event: RawClickEvent, reason: str) -> None:
        self._clicks_dropped += 1
        record_click_dropped()
        logger.debug("Click dropped", link_id=event.link_id, reason=reason)

    async def shutdown(self) -> None:
        """Stop the worker, then flush whatever is still buffered."""
        if self._state is CollectorState.STOPPED:
            return

        logger.info("Stopping click collector", pending=self._queue.qsize())
        self._state = CollectorState.DRAINING
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None

        await self.flush()
        self._state = CollectorState.STOPPED

        logger.info(
            "Click collector stopped",
            clicks_stored=self._clicks_stored,
            clicks_dropped=self._clicks_dropped,
            batches_flushed=self._batches_flushed,
        )

    async def _flush_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._flush_interval)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                await self.flush()
            except Exception as e:
                logger.error("Periodic flush failed", error=str(e))

    def _drain(self) -> list[RawClickEvent]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        set_pending_clicks(0)
        return events

    def _should_skip(self, event: RawClickEvent) -> str | None:
        if not self._filter_automated:
            return None
        if self._bot_detector(event.user_agent):
            return "bot"
        if self._threat_checker is not None and self._threat_checker.is_blocked(event.ip):
            return "threat_ip"
        return None

    def enrich(self, event: RawClickEvent) -> EnrichedClickRecord:
        """Derive browser, OS, device, referer domain and location for a click."""
        parsed = parse_user_agent(event.user_agent)
        location = self._geo.lookup(event.ip)

        return EnrichedClickRecord(
            link_id=event.link_id,
            clicked_at=event.clicked_at,
            ip=event.ip,
            user_agent=event.user_agent,
            referer=event.referer,
            referer_domain=referer_domain(event.referer),
            country=location.country,
            city=location.city,
            region=location.region,
            latitude=location.latitude,
            longitude=location.longitude,
            browser=parsed.browser.family,
            browser_version=parsed.browser.version_string,
            os=parsed.os.family,
            os_version=parsed.os.version_string,
            device_type=device_type(event.user_agent),
        )

    async def flush(self) -> int:
        """Drain the buffer and write one batch. Returns the rows written."""
        async with self._flush_lock:
            events = self._drain()
            if not events:
                return 0

            records = []
            for event in events:
                reason = self._should_skip(event)
                if reason:
                    self._clicks_filtered += 1
                    record_click_filtered(reason)
                    continue
                records.append(self.enrich(event))

            if not records:
                logger.debug("Flush skipped, every click was filtered", count=len(events))
                return 0

            try:
                start_time = time.perf_counter()
                await self._sink.batch_insert(records)
                duration = time.perf_counter() - start_time
            except Exception as e:
                # The batch is lost; nothing is re-buffered
                self._failed_flushes += 1
                record_flush_failed()
                logger.error("Failed to flush batch", count=len(records), error=str(e))
                return 0

            self._clicks_stored += len(records)
            self._batches_flushed += 1
            record_batch_insert(len(records), duration)

            logger.debug(
                "Batch flushed",
                count=len(records),
                filtered=len(events) - len(records),
                total_stored=self._clicks_stored,
                duration_ms=round(duration * 1000, 2),
            )
            return len(records)

    @property
    def is_running(self) -> bool:
        return self._state is CollectorState.RUNNING

    @property
    def stats(self) -> dict:
        """Get collector statistics."""
        return {
            "state": self._state.value,
            "pending": self._queue.qsize(),
            "buffer_size": self._queue.maxsize,
            "clicks_pushed": self._clicks_pushed,
            "clicks_dropped": self._clicks_dropped,
            "clicks_filtered": self._clicks_filtered,
            "clicks_stored": self._clicks_stored,
            "batches_flushed": self._batches_flushed,
            "failed_flushes": self._failed_flushes,
            "filter_automated": self._filter_automated,
        }
