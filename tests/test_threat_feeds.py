"""Tests for threat feed parsers and source definitions."""

import ipaddress
import json

import pytest

from linkhop.services.threat_feeds import (
    AKAMAI_RANGES,
    DEFAULT_IP_SOURCES,
    DEFAULT_RANGE_SOURCES,
    FeedKind,
    parse_cidr,
    parse_cidr_csv,
    parse_cidr_json,
    parse_cidr_lines,
    parse_ip_lines,
    parse_scored_ip_lines,
)


class TestParseCidr:
    """Test single CIDR parsing."""

    def test_ipv4_and_ipv6(self):
        assert parse_cidr("10.0.0.0/8") == ipaddress.ip_network("10.0.0.0/8")
        assert parse_cidr("2001:db8::/32") == ipaddress.ip_network("2001:db8::/32")

    def test_host_bits_are_masked(self):
        assert parse_cidr("192.168.1.77/24") == ipaddress.ip_network("192.168.1.0/24")

    def test_rejects_bare_address_and_garbage(self):
        assert parse_cidr("192.168.1.1") is None
        assert parse_cidr("not-a-cidr/24") is None
        assert parse_cidr("10.0.0.0/33") is None
        assert parse_cidr("") is None


class TestLineParsers:
    """Test newline-delimited feeds."""

    def test_cidr_lines_skip_comments_and_junk(self):
        text = "# header\n\n1.2.3.0/24\n  5.6.0.0/16  \ngarbage\n2001:db8::/48\n"
        assert parse_cidr_lines(text) == [
            ipaddress.ip_network("1.2.3.0/24"),
            ipaddress.ip_network("5.6.0.0/16"),
            ipaddress.ip_network("2001:db8::/48"),
        ]

    def test_ip_lines(self):
        text = "# Tor exits\n185.220.101.1\nnope\n2a0b:f4c2::1\n"
        assert parse_ip_lines(text) == [
            ipaddress.ip_address("185.220.101.1"),
            ipaddress.ip_address("2a0b:f4c2::1"),
        ]

    def test_scored_ip_lines_ignore_score(self):
        text = "# IPsum\n# ip\tcount\n45.148.10.1\t9\n80.94.95.2 3\nbad\t1\n"
        assert parse_scored_ip_lines(text) == [
            ipaddress.ip_address("45.148.10.1"),
            ipaddress.ip_address("80.94.95.2"),
        ]


class TestJsonParser:
    """Test the region/cidrs JSON layout."""

    def test_collects_every_region(self):
        payload = {
            "regions": [
                {"region": "eu-frankfurt-1", "cidrs": [{"cidr": "129.159.0.0/16"}]},
                {"region": "us-ashburn-1", "cidrs": [{"cidr": "132.145.0.0/16"}, {"cidr": "x"}]},
            ]
        }
        assert parse_cidr_json(json.dumps(payload)) == [
            ipaddress.ip_network("129.159.0.0/16"),
            ipaddress.ip_network("132.145.0.0/16"),
        ]

    def test_missing_regions_is_empty(self):
        assert parse_cidr_json("{}") == []

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            parse_cidr_json("<html>rate limited</html>")

    def test_non_object_raises(self):
        with pytest.raises(ValueError):
            parse_cidr_json("[1, 2, 3]")


class TestCsvParser:
    """Test geofeed-style CSV."""

    def test_first_column_is_the_cidr(self):
        text = (
            "# geofeed\n"
            "104.131.0.0/18,US,US-NY,New York,10001\n"
            "2a03:b0c0::/32,NL,NL-NH,Amsterdam,\n"
            "not,a,cidr\n"
        )
        assert parse_cidr_csv(text) == [
            ipaddress.ip_network("104.131.0.0/18"),
            ipaddress.ip_network("2a03:b0c0::/32"),
        ]

    def test_quoted_fields(self):
        assert parse_cidr_csv('"45.32.0.0/16","JP","JP-13","Tokyo",""\n') == [
            ipaddress.ip_network("45.32.0.0/16")
        ]


class TestDefaultSources:
    """Test the built-in feed catalog."""

    def test_categories(self):
        assert all(s.kind is FeedKind.RANGES for s in DEFAULT_RANGE_SOURCES)
        assert all(s.kind is FeedKind.IPS for s in DEFAULT_IP_SOURCES)

    def test_names_are_unique(self):
        names = [s.name for s in DEFAULT_RANGE_SOURCES + DEFAULT_IP_SOURCES]
        assert len(names) == len(set(names))

    def test_static_sources_parse_inline(self):
        akamai = next(s for s in DEFAULT_RANGE_SOURCES if s.name == "akamai")
        assert akamai.is_static
        assert len(akamai.parse_static()) == len(AKAMAI_RANGES)

    def test_fetched_sources_have_urls(self):
        fetched = [s for s in DEFAULT_RANGE_SOURCES + DEFAULT_IP_SOURCES if not s.is_static]
        assert fetched
        assert all(s.url.startswith("https://") for s in fetched)
