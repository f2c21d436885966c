"""Tests for the GeoIP resolver."""

from linkhop.services.geoip import EMPTY_GEO_RESULT, GeoResolver, GeoResult
from tests.conftest import StubGeoReader, make_city_response


class TestGeoResolver:
    """Test lookups and the no-op mode."""

    def test_no_database_is_noop(self):
        resolver = GeoResolver()
        assert not resolver.enabled
        assert resolver.lookup("8.8.8.8") == EMPTY_GEO_RESULT

    def test_unreadable_database_falls_back_to_noop(self, tmp_path):
        bogus = tmp_path / "GeoLite2-City.mmdb"
        bogus.write_bytes(b"not a maxmind database")

        resolver = GeoResolver(str(bogus))

        assert not resolver.enabled
        assert resolver.lookup("8.8.8.8") == EMPTY_GEO_RESULT

    def test_missing_database_file_falls_back_to_noop(self, tmp_path):
        resolver = GeoResolver(str(tmp_path / "missing.mmdb"))
        assert not resolver.enabled

    def test_lookup_maps_city_response(self):
        reader = StubGeoReader({"81.0.0.1": make_city_response()})
        resolver = GeoResolver(reader=reader)

        assert resolver.lookup("81.0.0.1") == GeoResult(
            country="NO",
            city="Oslo",
            region="Oslo County",
            latitude=59.9,
            longitude=10.7,
        )

    def test_missing_fields_become_empty(self):
        response = make_city_response(
            country="US", city=None, region=None, latitude=None, longitude=None
        )
        resolver = GeoResolver(reader=StubGeoReader({"8.8.8.8": response}))

        assert resolver.lookup("8.8.8.8") == GeoResult(country="US")

    def test_unknown_address_is_empty(self):
        resolver = GeoResolver(reader=StubGeoReader())
        assert resolver.lookup("192.0.2.1") == EMPTY_GEO_RESULT

    def test_invalid_address_is_empty(self):
        resolver = GeoResolver(reader=StubGeoReader({"81.0.0.1": make_city_response()}))
        assert resolver.lookup("") == EMPTY_GEO_RESULT
        assert resolver.lookup("not-an-ip") == EMPTY_GEO_RESULT

    def test_close_releases_reader(self):
        reader = StubGeoReader()
        resolver = GeoResolver(reader=reader)

        resolver.close()

        assert reader.closed
        assert not resolver.enabled
        assert resolver.lookup("81.0.0.1") == EMPTY_GEO_RESULT

    def test_close_twice_is_safe(self):
        resolver = GeoResolver(reader=StubGeoReader())
        resolver.close()
        resolver.close()
