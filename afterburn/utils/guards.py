"""
Safety guards for driving a browser against untrusted sites.

URL scheme checks, same-origin navigation, SSRF hostname checks, selector
length caps and step value sanitization.
"""

import asyncio
import ipaddress
import logging
import math
import re
import socket
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

MAX_SELECTOR_LENGTH = 500
DEFAULT_MAX_PAGES = 50
MAX_PAGES_CEILING = 500

ALLOWED_SCHEMES = ("http", "https")

HostResolver = Callable[[str], Awaitable[List[str]]]


class AfterburnError(Exception):
    """Base class for fatal engine errors."""
    pass


class GuardError(AfterburnError):
    """Exception raised when a guard check fails."""
    pass


def is_private_or_reserved_ip(ip: str) -> bool:
    """
    Check whether an IP literal is loopback, private or link-local.

    Covers 127.0.0.0/8, 10.0.0.0/8, 172.16.0.0/12, 192.168.0.0/16,
    169.254.0.0/16, ::1, fc00::/7 and fe80::/10. Anything that does not
    parse as an IP address returns False.
    """
    try:
        address = ipaddress.ip_address(ip.strip("[]"))
    except ValueError:
        return False

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped

    return (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
    )


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        return False
    return True


def _parse_http_url(url: str) -> str:
    trimmed = url.strip()
    try:
        parsed = urlsplit(trimmed)
        parsed.port
    except ValueError:
        raise GuardError(
            f'Invalid URL: "{trimmed}". Must be a valid http:// or https:// URL.'
        )

    if not parsed.scheme:
        raise GuardError(
            f'Invalid URL: "{trimmed}". Must be a valid http:// or https:// URL.'
        )

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise GuardError(
            f'Unsafe URL scheme "{parsed.scheme}:" in "{trimmed}". '
            f'Only http:// and https:// are allowed.'
        )

    if not parsed.hostname:
        raise GuardError(
            f'Invalid URL: "{trimmed}". Must be a valid http:// or https:// URL.'
        )

    return trimmed


def validate_url(url: str) -> str:
    """
    Validate that a URL is http(s) and not a private IP literal.

    Returns:
        The trimmed URL

    Raises:
        GuardError: If the scheme is unsafe or the host is a private address
    """
    trimmed = _parse_http_url(url)
    hostname = urlsplit(trimmed).hostname

    if _is_ip_literal(hostname) and is_private_or_reserved_ip(hostname):
        logger.warning(f"SSRF guard: blocked private address {hostname}")
        raise GuardError(
            f'SSRF protection: URL "{trimmed}" resolves to private/loopback '
            f'address "{hostname}". Only public URLs are allowed.'
        )

    return trimmed


async def _default_resolver(hostname: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def ensure_public_hostname(
    hostname: str,
    resolver: Optional[HostResolver] = None
) -> None:
    """
    Enforce that a hostname resolves only to public addresses.

    Rejects localhost names, private/loopback literals, DNS failures and
    names with any private address among their records.

    Raises:
        GuardError: If the hostname is not public
    """
    name = hostname.strip().strip("[]").rstrip(".").lower()

    if not name:
        raise GuardError("SSRF protection: empty hostname")

    if name == "localhost" or name.endswith(".localhost"):
        raise GuardError(
            f'SSRF protection: hostname "{name}" points at localhost'
        )

    if _is_ip_literal(name):
        if is_private_or_reserved_ip(name):
            raise GuardError(
                f'SSRF protection: "{name}" is a private/loopback address'
            )
        return

    resolver = resolver or _default_resolver
    try:
        addresses = await resolver(name)
    except (OSError, socket.gaierror) as e:
        raise GuardError(
            f'SSRF protection: could not resolve hostname "{name}": {e}'
        )

    if not addresses:
        raise GuardError(f'SSRF protection: hostname "{name}" did not resolve')

    for address in addresses:
        if is_private_or_reserved_ip(address):
            raise GuardError(
                f'SSRF protection: hostname "{name}" resolves to private IP "{address}"'
            )


async def validate_public_url(
    url: str,
    resolver: Optional[HostResolver] = None
) -> str:
    """Validate URL format and that its hostname resolves to public IP space."""
    validated = validate_url(url)
    await ensure_public_hostname(urlsplit(validated).hostname, resolver)
    return validated


def is_allowed_navigation_host(hostname: str, base_hostname: str) -> bool:
    """Same hostname or a subdomain of the base hostname."""
    hostname = (hostname or "").lower()
    base_hostname = (base_hostname or "").lower()
    if not hostname or not base_hostname:
        return False
    return hostname == base_hostname or hostname.endswith("." + base_hostname)


def validate_navigation_url(navigation_url: str, base_url: str) -> str:
    """
    Validate that a navigation target stays on the base site.

    Raises:
        GuardError: If the URL is unsafe or points at another host
    """
    validated = validate_url(navigation_url)
    nav_host = urlsplit(validated).hostname
    base_host = urlsplit(base_url).hostname

    if not is_allowed_navigation_host(nav_host, base_host):
        raise GuardError(
            f'Navigation to "{nav_host}" blocked. Only same-origin navigation '
            f'allowed (base: "{base_host}").'
        )

    return validated


def validate_max_pages(value) -> int:
    """
    Clamp a requested page limit into [1, 500].

    None, NaN and negative values give the default of 50; 0 means
    "as many as allowed" and maps to the ceiling.
    """
    if value is None or isinstance(value, bool):
        return DEFAULT_MAX_PAGES

    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_MAX_PAGES

    if math.isnan(number) or number < 0:
        return DEFAULT_MAX_PAGES

    if number == 0:
        return MAX_PAGES_CEILING

    if math.isinf(number):
        return MAX_PAGES_CEILING

    return min(max(int(math.floor(number)), 1), MAX_PAGES_CEILING)


def validate_selector(selector: str) -> str:
    """Reject selectors longer than 500 characters."""
    if len(selector) > MAX_SELECTOR_LENGTH:
        raise GuardError(
            f"Selector too long ({len(selector)} chars, max {MAX_SELECTOR_LENGTH}). "
            f"Possible injection attempt."
        )
    return selector


_SCRIPT_TAG = re.compile(r'<script\b[^>]*>[\s\S]*?</script>', re.IGNORECASE)
_JS_URI = re.compile(r'javascript\s*:', re.IGNORECASE)
_EVENT_HANDLER = re.compile(r'\bon\w+\s*=', re.IGNORECASE)


def sanitize_value(value: str) -> str:
    """Strip script tags, javascript: URIs and inline event handlers."""
    sanitized = _SCRIPT_TAG.sub('', value)
    sanitized = _JS_URI.sub('', sanitized)
    return _EVENT_HANDLER.sub('', sanitized)


class HostnameSafetyCache:
    """Per-scan memo of SSRF verdicts, keyed by lowercase hostname."""

    def __init__(self, resolver: Optional[HostResolver] = None):
        self._resolver = resolver
        self._verdicts: Dict[str, Optional[str]] = {}

    async def assert_public(self, hostname: str) -> None:
        """Raise GuardError (cached) when the hostname is not public."""
        key = (hostname or "").lower()

        if key in self._verdicts:
            cached_error = self._verdicts[key]
            if cached_error:
                raise GuardError(cached_error)
            return

        try:
            await ensure_public_hostname(key, self._resolver)
        except GuardError as e:
            self._verdicts[key] = str(e)
            raise

        self._verdicts[key] = None

    def __len__(self) -> int:
        return len(self._verdicts)
