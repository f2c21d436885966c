"""GeoIP service for IP to location lookup."""

import ipaddress
from dataclasses import dataclass
from pathlib import Path

import geoip2.database
import structlog

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class GeoResult:
    """Geographic location data from IP lookup.

    Unknown fields are empty strings and zero coordinates, never None.
    """

    country: str = ""  # ISO 3166-1 alpha-2 country code
    city: str = ""
    region: str = ""
    latitude: float = 0.0
    longitude: float = 0.0


EMPTY_GEO_RESULT = GeoResult()


class GeoResolver:
    """Looks up geographic location for client IPs from a MaxMind database.

    Running without a database is a supported mode: every lookup then
    returns ``EMPTY_GEO_RESULT``. A database that fails to open is logged
    once and not retried; the resolver stays in no-op mode for the life of
    the process.

    Usage:
        resolver = GeoResolver("/var/lib/GeoIP/GeoLite2-City.mmdb")
        result = resolver.lookup("8.8.8.8")
        print(result.country, result.city)
        resolver.close()
    """

    def __init__(
        self,
        database_path: str | None = None,
        reader: geoip2.database.Reader | None = None,
    ):
        """Initialize the resolver.

        Args:
            database_path: Path to a GeoIP2/GeoLite2 City database.
                Empty or None disables lookups.
            reader: An already opened reader, used instead of the path.
        """
        self._reader = reader
        self._database_path = database_path or ""

        if self._reader is None and self._database_path:
            self._open()
        elif self._reader is None:
            logger.info("GeoIP disabled (no database configured)")

    def _open(self) -> None:
        path = Path(self._database_path)
        try:
            self._reader = geoip2.database.Reader(str(path))
            logger.info("GeoIP2 database loaded", path=str(path))
        except Exception as e:
            logger.warning(
                "Failed to load GeoIP2 database, geo lookups disabled",
                path=str(path),
                error=str(e),
            )
            self._reader = None

    @property
    def enabled(self) -> bool:
        return self._reader is not None

    def lookup(self, ip: str) -> GeoResult:
        """Resolve an IP address to location fields.

        Never raises: an unconfigured resolver, an unparseable address, or a
        failed or empty lookup all produce ``EMPTY_GEO_RESULT``.
        """
        if self._reader is None or not ip:
            return EMPTY_GEO_RESULT

        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return EMPTY_GEO_RESULT

        try:
            response = self._reader.city(address)
        except Exception as e:
            logger.debug("GeoIP2 lookup failed", ip=ip, error=str(e))
            return EMPTY_GEO_RESULT

        return GeoResult(
            country=response.country.iso_code or "",
            city=response.city.name or "",
            region=response.subdivisions.most_specific.name or "",
            latitude=response.location.latitude or 0.0,
            longitude=response.location.longitude or 0.0,
        )

    def close(self) -> None:
        """Close the GeoIP2 database reader."""
        if self._reader is not None:
            self._reader.close()
            self._reader = None
