from __future__ import annotations

import pytest

from pipeline.canonical import canonicalize_url, is_tracking_param, url_host


@pytest.mark.parametrize(
    "raw, expected",
    [
        (
            "https://news.example.com/story?id=7&utm_source=google&utm_medium=cpc",
            "https://news.example.com/story?id=7",
        ),
        ("https://example.com/a?gclid=abc&fbclid=def", "https://example.com/a"),
        ("https://example.com/a?ref=homepage&page=2", "https://example.com/a?page=2"),
        ("https://example.com/a?UTM_Campaign=spring", "https://example.com/a"),
        ("HTTPS://WWW.Example.COM/Path", "https://www.example.com/Path"),
        ("https://example.com", "https://example.com/"),
    ],
)
def test_canonicalize_strips_tracking_params(raw: str, expected: str) -> None:
    assert canonicalize_url(raw) == expected


def test_canonicalize_keeps_plain_fragment_and_drops_tracking_fragment() -> None:
    assert canonicalize_url("https://example.com/a#section-2") == "https://example.com/a#section-2"
    assert canonicalize_url("https://example.com/a#utm_source=x") == "https://example.com/a"


def test_canonicalize_returns_unparseable_input_unchanged() -> None:
    for raw in ["not a url", "", "/relative/path?utm_source=x", "http://example.com:notaport/a"]:
        assert canonicalize_url(raw) == raw


@pytest.mark.parametrize(
    "raw",
    [
        "https://example.com/a?b=2&a=1&utm_term=x",
        "https://example.com/search?q=acme+corp&fbclid=1",
        "https://example.com/a?flag&x=%20y",
        "https://example.com/a#frag",
        "https://User@Example.com:8080/p?utm_id=1#k=v",
        "garbage",
    ],
)
def test_canonicalize_is_idempotent(raw: str) -> None:
    once = canonicalize_url(raw)
    assert canonicalize_url(once) == once


def test_variants_of_one_story_share_canonical_url() -> None:
    first = canonicalize_url("https://www.reuters.com/acme-deal?utm_source=twitter")
    second = canonicalize_url("https://www.reuters.com/acme-deal?utm_source=newsletter&utm_medium=email")
    assert first == second == "https://www.reuters.com/acme-deal"


def test_is_tracking_param_and_url_host() -> None:
    assert is_tracking_param("utm_content") is True
    assert is_tracking_param("GCLID") is True
    assert is_tracking_param("page") is False
    assert url_host("https://www.NYTimes.com/2024/story") == "nytimes.com"
    assert url_host("not a url") == ""
