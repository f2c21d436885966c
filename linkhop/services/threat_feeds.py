"""Threat feed sources and payload parsers.

Each feed contributes either network ranges (datacenter and hosting
providers) or individual addresses (Tor exits, abuse blocklists). Parsers
skip blank lines, ``#`` comments and malformed entries; only a payload that
cannot be read at all (bad JSON, broken CSV) raises ``ValueError`` or
``csv.Error``.
"""

import csv
import io
import ipaddress
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

Network = ipaddress.IPv4Network | ipaddress.IPv6Network
Address = ipaddress.IPv4Address | ipaddress.IPv6Address

# Datacenter CIDR sources
DATACENTER_RANGES_URL = (
    "https://raw.githubusercontent.com/jhassine/server-ip-addresses/master/data/datacenters.txt"
)
ORACLE_CLOUD_RANGES_URL = "https://docs.cloud.oracle.com/en-us/iaas/tools/public_ip_ranges.json"
DIGITALOCEAN_RANGES_URL = "https://www.digitalocean.com/geo/google.csv"
VULTR_RANGES_URL = "https://geofeed.constant.com/?text"

# Threat / anonymizer IP sources
TOR_EXIT_NODES_URL = "https://check.torproject.org/torbulkexitlist"
IPSUM_URL = "https://raw.githubusercontent.com/stamparm/ipsum/master/ipsum.txt"
GREENSNOW_URL = "https://blocklist.greensnow.co/greensnow.txt"

# Providers without a downloadable feed
AKAMAI_RANGES = (
    "23.32.0.0/11", "23.192.0.0/11", "2.16.0.0/13", "104.64.0.0/10",
    "184.24.0.0/13", "23.0.0.0/12", "95.100.0.0/15", "92.122.0.0/15",
    "184.50.0.0/15", "88.221.0.0/16", "23.64.0.0/14", "72.246.0.0/15",
    "96.16.0.0/15", "96.6.0.0/15", "69.192.0.0/16", "23.72.0.0/13",
    "173.222.0.0/15", "118.214.0.0/16", "184.84.0.0/14",
)
SCALEWAY_RANGES = (
    "62.210.0.0/16", "195.154.0.0/16", "212.129.0.0/18", "62.4.0.0/19",
    "212.83.128.0/19", "212.83.160.0/19", "212.47.224.0/19", "163.172.0.0/16",
    "51.15.0.0/16", "151.115.0.0/16", "51.158.0.0/15",
)


def _content_lines(text: str) -> Iterable[str]:
    for raw in text.splitlines():
        line = raw.strip()
        if line and not line.startswith("#"):
            yield line


def parse_cidr(value: str) -> Network | None:
    """Parse one CIDR block; host bits are allowed, bare addresses are not."""
    value = value.strip()
    if "/" not in value:
        return None
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError:
        return None


def parse_cidr_list(values: Iterable[str]) -> list[Network]:
    return [net for net in map(parse_cidr, values) if net is not None]


def parse_cidr_lines(text: str) -> list[Network]:
    """One CIDR per line."""
    return parse_cidr_list(_content_lines(text))


def parse_cidr_json(text: str) -> list[Network]:
    """JSON shaped ``{"regions": [{"cidrs": [{"cidr": "..."}]}]}``."""
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object with a 'regions' list")

    cidrs: list[str] = []
    for region in data.get("regions") or []:
        if not isinstance(region, dict):
            continue
        for entry in region.get("cidrs") or []:
            if isinstance(entry, dict) and isinstance(entry.get("cidr"), str):
                cidrs.append(entry["cidr"])
    return parse_cidr_list(cidrs)


def parse_cidr_csv(text: str) -> list[Network]:
    """CSV with the CIDR in the first column (geofeed layout)."""
    cidrs = [
        row[0]
        for row in csv.reader(io.StringIO(text))
        if row and not row[0].lstrip().startswith("#")
    ]
    return parse_cidr_list(cidrs)


def _parse_address(value: str) -> Address | None:
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def parse_ip_lines(text: str) -> list[Address]:
    """One IP address per line."""
    return [ip for ip in map(_parse_address, _content_lines(text)) if ip is not None]


def parse_scored_ip_lines(text: str) -> list[Address]:
    """``ip<whitespace>score`` lines; the score is ignored."""
    addresses = []
    for line in _content_lines(text):
        ip = _parse_address(line.split()[0])
        if ip is not None:
            addresses.append(ip)
    return addresses


class FeedKind(str, Enum):
    RANGES = "ranges"
    IPS = "ips"


@dataclass(frozen=True)
class FeedSource:
    """A single threat feed.

    Static feeds carry their entries inline and are never fetched.
    """

    name: str
    kind: FeedKind
    parser: Callable[[str], list] = parse_cidr_lines
    url: str | None = None
    static_entries: tuple[str, ...] = ()

    @property
    def is_static(self) -> bool:
        return self.url is None

    def parse_static(self) -> list:
        return self.parser("\n".join(self.static_entries))


DEFAULT_RANGE_SOURCES: tuple[FeedSource, ...] = (
    FeedSource("datacenters", FeedKind.RANGES, parse_cidr_lines, DATACENTER_RANGES_URL),
    FeedSource("oracle", FeedKind.RANGES, parse_cidr_json, ORACLE_CLOUD_RANGES_URL),
    FeedSource("digitalocean", FeedKind.RANGES, parse_cidr_csv, DIGITALOCEAN_RANGES_URL),
    FeedSource("vultr", FeedKind.RANGES, parse_cidr_csv, VULTR_RANGES_URL),
    FeedSource("akamai", FeedKind.RANGES, parse_cidr_lines, static_entries=AKAMAI_RANGES),
    FeedSource("scaleway", FeedKind.RANGES, parse_cidr_lines, static_entries=SCALEWAY_RANGES),
)

DEFAULT_IP_SOURCES: tuple[FeedSource, ...] = (
    FeedSource("tor", FeedKind.IPS, parse_ip_lines, TOR_EXIT_NODES_URL),
    FeedSource("ipsum", FeedKind.IPS, parse_scored_ip_lines, IPSUM_URL),
    FeedSource("greensnow", FeedKind.IPS, parse_ip_lines, GREENSNOW_URL),
)
