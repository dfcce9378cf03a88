from __future__ import annotations

from wifi_autologin.util.urls import origin_of, same_origin


def test_origin_of_normalizes() -> None:
    assert origin_of("HTTP://172.16.2.1:1000/fgtauth?abc") == "http://172.16.2.1:1000"
    assert origin_of("https://Portal.Example.com:443/login") == "https://portal.example.com"
    assert origin_of("http://portal.example.com:80") == "http://portal.example.com"
    assert origin_of("http://[fe80::1]:8080/x") == "http://[fe80::1]:8080"


def test_origin_of_passes_through_unparseable() -> None:
    assert origin_of("about:blank") == "about:blank"
    assert origin_of("") == ""


def test_same_origin() -> None:
    origin = origin_of("http://172.16.2.1:1000")
    assert same_origin("http://172.16.2.1:1000/keepalive?0102", origin)
    assert not same_origin("http://172.16.2.1:1001/", origin)
    assert not same_origin("https://172.16.2.1:1000/", origin)
    assert not same_origin("", origin)
