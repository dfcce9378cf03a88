from __future__ import annotations

from urllib.parse import urlparse


_DEFAULT_PORTS = {"http": 80, "https": 443}


def origin_of(url: str) -> str:
    """
    Return `scheme://host[:port]` for a URL, matching how browsers serialize an origin:
    - scheme and host are lowercased
    - the port is dropped when it is the scheme's default

    Unparseable input is returned unchanged so it can still be used as a (unique) key.
    """
    s = (url or "").strip()
    try:
        parsed = urlparse(s)
        port = parsed.port
    except ValueError:
        return s
    scheme = (parsed.scheme or "").lower()
    host = (parsed.hostname or "").lower()
    if not scheme or not host:
        return s
    if ":" in host:
        # IPv6 literal
        host = f"[{host}]"
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def same_origin(url: str, origin: str) -> bool:
    if not url or not origin:
        return False
    return origin_of(url) == origin
