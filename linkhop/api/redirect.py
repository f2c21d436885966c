"""Redirect endpoint for short links."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse

from linkhop.collectors import AnalyticsCollector
from linkhop.core.observability import record_redirect
from linkhop.schemas import RawClickEvent
from linkhop.services import LinkStore, RedirectCache

logger = structlog.get_logger()

router = APIRouter(tags=["redirect"])

GONE_MESSAGE = "This link is no longer active."


def get_link_cache(request: Request) -> RedirectCache:
    return request.app.state.link_cache


def get_link_store(request: Request) -> LinkStore:
    return request.app.state.link_store


def get_collector(request: Request) -> AnalyticsCollector:
    return request.app.state.collector


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request.

    Handles X-Forwarded-For header for requests behind proxies/load balancers.
    """
    # X-Forwarded-For can contain multiple IPs: client, proxy1, proxy2
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return ""


def normalize_host(host: str) -> str:
    """Lower-case a Host header value and strip any port."""
    host = host.strip().lower()
    if host.startswith("["):
        # Bracketed IPv6 literal, e.g. [::1]:8080
        return host[1 : host.find("]")] if "]" in host else host
    return host.rsplit(":", 1)[0] if ":" in host else host


@router.get("/{slug:path}")
async def redirect(
    request: Request,
    slug: str,
    cache: Annotated[RedirectCache, Depends(get_link_cache)],
    store: Annotated[LinkStore, Depends(get_link_store)],
    collector: Annotated[AnalyticsCollector, Depends(get_collector)],
):
    """Redirect a short link to its destination.

    Flow:
    1. Check the in-process cache for (host, slug)
    2. On a miss, query the store and cache the link if it exists
    3. Unknown link: 404; inactive link: 410
    4. Queue a click event and issue a 302
    """
    domain = normalize_host(request.headers.get("host", ""))
    if not slug:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    link = cache.get(domain, slug)
    if link is None:
        link = await store.find_by_key(domain, slug)
        if link is None:
            logger.info("Redirect failed - link not found", domain=domain, slug=slug)
            record_redirect(status.HTTP_404_NOT_FOUND)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
        cache.set(domain, slug, link)

    if not link.is_active:
        logger.info("Redirect blocked - link inactive", domain=domain, slug=slug)
        record_redirect(status.HTTP_410_GONE)
        return PlainTextResponse(GONE_MESSAGE, status_code=status.HTTP_410_GONE)

    collector.push(
        RawClickEvent(
            link_id=link.id,
            ip=get_client_ip(request),
            user_agent=request.headers.get("User-Agent", ""),
            referer=request.headers.get("Referer", ""),
        )
    )

    record_redirect(status.HTTP_302_FOUND)
    return RedirectResponse(url=link.destination, status_code=status.HTTP_302_FOUND)
