from __future__ import annotations

import pytest
from starlette.requests import Request

from folio.utils.request_context import (
    extract_referrer_domain,
    get_client_ip,
    get_edge_location,
    hash_ip,
    parse_user_agent,
)
from folio.utils.visitor_identity import is_secure_request

DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPAD_UA = (
    "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def make_request(headers=None, client=("203.0.113.9", 5000), scheme="http") -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request(
        {
            "type": "http",
            "method": "POST",
            "scheme": scheme,
            "path": "/",
            "query_string": b"",
            "headers": raw_headers,
            "client": client,
            "server": ("testserver", 80),
        }
    )


def test_client_ip_prefers_forwarded_for():
    request = make_request({"X-Forwarded-For": "198.51.100.1, 10.0.0.1", "X-Real-IP": "198.51.100.2"})
    assert get_client_ip(request) == "198.51.100.1"


def test_client_ip_falls_back_to_real_ip_then_peer():
    assert get_client_ip(make_request({"X-Real-IP": "198.51.100.2"})) == "198.51.100.2"
    assert get_client_ip(make_request()) == "203.0.113.9"
    assert get_client_ip(make_request(client=None)) is None


def test_hash_ip_is_stable_hex():
    digest = hash_ip("198.51.100.1")
    assert len(digest) == 64
    assert digest == hash_ip("198.51.100.1")
    assert digest != hash_ip("198.51.100.2")


@pytest.mark.parametrize(
    "referrer,expected",
    [
        ("https://www.google.com/search?q=x", "google.com"),
        ("https://News.YCombinator.com/item?id=1", "news.ycombinator.com"),
        ("not a url", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_referrer_domain(referrer, expected):
    assert extract_referrer_domain(referrer) == expected


def test_parse_user_agent():
    desktop = parse_user_agent(DESKTOP_UA)
    assert (desktop.device_type, desktop.browser) == ("desktop", "Chrome")
    assert desktop.os.startswith("Windows")

    assert parse_user_agent(IPAD_UA).device_type == "tablet"

    empty = parse_user_agent(None)
    assert (empty.device_type, empty.browser, empty.os) == ("desktop", None, None)


def test_edge_location_reads_cloudflare_headers_and_skips_unknown():
    location = get_edge_location(make_request({"CF-IPCountry": "XX", "CF-IPCity": "Lisbon"}))
    assert location.country is None
    assert location.city == "Lisbon"
    assert location.region is None


def test_secure_request_detection():
    assert is_secure_request(make_request(scheme="https"))
    assert is_secure_request(make_request({"X-Forwarded-Proto": "https"}))
    assert not is_secure_request(make_request())
