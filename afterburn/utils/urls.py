"""URL helpers shared by the crawler, the link validator and the sitemap."""

from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str) -> str:
    """
    Normalize a URL for visited-set comparison.

    Strips the fragment, lowercases scheme and host, drops the default port,
    sorts query parameters by key and removes the trailing slash (except for
    the root path). Applying it twice gives the same result as applying it once.
    """
    try:
        parsed = urlsplit(url.strip())
        port = parsed.port
    except ValueError:
        return url

    if not parsed.scheme or not parsed.netloc:
        return url

    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"

    netloc = host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    if parsed.username:
        userinfo = parsed.username
        if parsed.password:
            userinfo += f":{parsed.password}"
        netloc = f"{userinfo}@{netloc}"

    path = parsed.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    query = ""
    if parsed.query:
        params = parse_qsl(parsed.query, keep_blank_values=True)
        query = urlencode(sorted(params, key=lambda item: item[0]))

    return urlunsplit((scheme, netloc, path, query, ""))


def get_hostname(url: str) -> Optional[str]:
    """Lowercased hostname of ``url`` or None when it cannot be parsed."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def is_same_hostname(url: str, other: str) -> bool:
    hostname = get_hostname(url)
    return hostname is not None and hostname == get_hostname(other)


def resolve_url(href: str, base_url: str) -> Optional[str]:
    """Resolve ``href`` against ``base_url``; None for unparseable input."""
    try:
        resolved = urljoin(base_url, href.strip())
        urlsplit(resolved).port
    except ValueError:
        return None
    return resolved


def matches_exclude_pattern(url: str, patterns: Iterable[str]) -> bool:
    """
    Check ``url`` against crawl exclusion patterns.

    ``*admin*`` matches anywhere, ``*.pdf`` matches a suffix, ``/api*``
    matches a prefix and a bare pattern matches as a substring.
    """
    for pattern in patterns:
        if not pattern:
            continue
        if pattern.startswith("*") and pattern.endswith("*") and len(pattern) > 1:
            if pattern[1:-1] in url:
                return True
        elif pattern.startswith("*"):
            if url.endswith(pattern[1:]):
                return True
        elif pattern.endswith("*"):
            if url.startswith(pattern[:-1]):
                return True
        elif pattern in url:
            return True
    return False
