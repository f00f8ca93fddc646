"""URL canonicalization used as the article dedup key."""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


TRACKING_PARAMS = frozenset(
    {
        "gclid",
        "fbclid",
        "msclkid",
        "mc_eid",
        "yclid",
        "ref",
        "_ga",
    }
)
TRACKING_PREFIXES = ("utm_",)


def is_tracking_param(name: str) -> bool:
    key = str(name or "").strip().lower()
    if key in TRACKING_PARAMS:
        return True
    return key.startswith(TRACKING_PREFIXES)


def _lower_host(netloc: str) -> str:
    userinfo, sep, hostport = netloc.rpartition("@")
    return f"{userinfo}{sep}{hostport.lower()}"


def canonicalize_url(url: str) -> str:
    """
    Strip tracking parameters and tracking-style fragments from ``url``.

    Anything that does not parse as an absolute URL is returned unchanged.
    Applying the function twice gives the same result as applying it once.
    """
    text = str(url or "").strip()
    try:
        parsed = urlsplit(text)
        _ = parsed.port
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not is_tracking_param(key)
    ]
    query = urlencode(query_pairs)

    fragment = parsed.fragment
    if "=" in fragment:
        fragment = ""

    return urlunsplit(
        (
            parsed.scheme.lower(),
            _lower_host(parsed.netloc),
            parsed.path or "/",
            query,
            fragment,
        )
    )


def url_host(url: str) -> str:
    """Lowercased host without a leading ``www.``; empty string when unparseable."""
    try:
        host = urlsplit(str(url or "").strip()).hostname or ""
    except ValueError:
        return ""
    host = host.strip().lower()
    if host.startswith("www."):
        host = host[4:]
    return host
