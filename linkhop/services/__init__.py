"""Link lookup, caching and traffic classification services."""

from linkhop.services.bot_detection import is_bot
from linkhop.services.geoip import EMPTY_GEO_RESULT, GeoResolver, GeoResult
from linkhop.services.link import LinkStore, create_link, delete_link, update_link
from linkhop.services.link_cache import RedirectCache
from linkhop.services.threat_checker import ThreatChecker, ThreatIndex

__all__ = [
    # Links
    "LinkStore",
    "RedirectCache",
    "create_link",
    "update_link",
    "delete_link",
    # Classification
    "is_bot",
    "ThreatChecker",
    "ThreatIndex",
    # GeoIP
    "GeoResolver",
    "GeoResult",
    "EMPTY_GEO_RESULT",
]
