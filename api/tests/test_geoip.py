from __future__ import annotations

import httpx

from folio import geoip, settings
from folio.geoip import GeoLocation, is_public_ip, lookup_location, lookup_remote

GEO_URL = "http://geo.test/json/{ip}"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_public_ip_detection():
    assert is_public_ip("8.8.8.8")
    assert not is_public_ip("10.0.0.1")
    assert not is_public_ip("127.0.0.1")
    assert not is_public_ip("not-an-ip")
    assert not is_public_ip(None)


def test_remote_lookup_parses_success(monkeypatch):
    monkeypatch.setattr(settings, "GEO_LOOKUP_URL", GEO_URL)

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/json/8.8.8.8"
        return httpx.Response(
            200,
            json={
                "status": "success",
                "country": "United States",
                "regionName": "Virginia",
                "city": "Ashburn",
                "lat": 39.03,
                "lon": -77.5,
            },
        )

    location = lookup_remote("8.8.8.8", client=_client(handler))
    assert location == GeoLocation(
        country="United States", city="Ashburn", region="Virginia", latitude=39.03, longitude=-77.5
    )


def test_remote_lookup_failures_yield_empty_location(monkeypatch):
    monkeypatch.setattr(settings, "GEO_LOOKUP_URL", GEO_URL)

    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    assert lookup_remote("8.8.8.8", client=_client(timeout)) == GeoLocation()
    assert lookup_remote(
        "8.8.8.8", client=_client(lambda r: httpx.Response(200, json={"status": "fail"}))
    ) == GeoLocation()
    assert lookup_remote(
        "8.8.8.8", client=_client(lambda r: httpx.Response(503))
    ) == GeoLocation()


def test_remote_lookup_disabled_without_url(monkeypatch):
    monkeypatch.setattr(settings, "GEO_LOOKUP_URL", "")
    assert lookup_remote("8.8.8.8") == GeoLocation()


def test_lookup_location_keeps_known_values(monkeypatch):
    monkeypatch.setattr(
        geoip,
        "lookup_remote",
        lambda ip: GeoLocation(country="Portugal", city="Porto", region="Porto", latitude=41.1),
    )
    known = GeoLocation(country="PT", city="Lisbon")

    location = lookup_location("8.8.8.8", known=known)

    assert (location.country, location.city, location.region) == ("PT", "Lisbon", "Porto")
    assert location.latitude == 41.1


def test_lookup_location_skips_private_addresses(monkeypatch):
    def fail(ip):
        raise AssertionError("private addresses must not be looked up")

    monkeypatch.setattr(geoip, "lookup_local", fail)
    monkeypatch.setattr(geoip, "lookup_remote", fail)

    assert lookup_location("192.168.1.20") == GeoLocation()
