import pytest

from trustcheck_core.urls import InvalidUrl, hostname_of, normalize_url, registrable_domain


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("example.com", "https://example.com/"),
        ("  Example.COM/Path?q=1#frag  ", "https://example.com/Path?q=1"),
        ("http://shop.example.co.uk", "http://shop.example.co.uk/"),
        ("HTTPS://Example.com:8443/a", "https://example.com:8443/a"),
        ("example.com:8080", "https://example.com:8080/"),
        ("https://example.com:443", "https://example.com/"),
        ("http://example.com:80/a", "http://example.com/a"),
        ("http://example.com:443/", "http://example.com:443/"),
    ],
)
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize("raw", ["example.com", "http://a.example.org/x?y=1#z", "sub.example.io:9000"])
def test_normalize_url_is_idempotent(raw):
    once = normalize_url(raw)
    assert normalize_url(once) == once


@pytest.mark.parametrize("raw", ["", "   ", "localhost", "ftp://example.com", "javascript:alert(1)", "https://"])
def test_normalize_url_rejects(raw):
    with pytest.raises(InvalidUrl):
        normalize_url(raw)


def test_invalid_url_is_value_error():
    with pytest.raises(ValueError):
        normalize_url("mailto:someone@example.com")


def test_hostname_of():
    assert hostname_of("https://WWW.Example.com/x") == "www.example.com"
    assert hostname_of("not a url") is None


def test_registrable_domain():
    assert registrable_domain("www.shop.example.com") == "example.com"
    assert registrable_domain("example.com") == "example.com"
