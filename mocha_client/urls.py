"""URL resolution against a base URL and the URL safety policy."""

import ipaddress
from typing import Optional

import httpx

from .exceptions import InvalidURLError

ALLOWED_SCHEMES = ("http", "https")


def is_local_host(host: str) -> bool:
    """True for localhost, loopback, private, link-local and unspecified addresses."""
    host = host.strip("[]").lower()
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
    )


def validate_url(url: str, allow_localhost: bool = False) -> httpx.URL:
    """
    Check ``url`` against the client's URL policy and return it parsed.

    Raises:
        InvalidURLError: empty URL, unparseable URL, scheme other than
            http/https, missing host, or a local host while
            ``allow_localhost`` is off
    """
    if not url or not url.strip():
        raise InvalidURLError("URL cannot be empty")

    try:
        parsed = httpx.URL(url.strip())
    except httpx.InvalidURL as e:
        raise InvalidURLError(f"Invalid URL format: {e}") from e

    if not parsed.scheme:
        raise InvalidURLError(f"URL must have a valid scheme (http/https): {url}")
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidURLError(f"Only HTTP and HTTPS schemes are allowed: {url}")
    if not parsed.host:
        raise InvalidURLError(f"URL must have a valid host: {url}")
    if not allow_localhost and is_local_host(parsed.host):
        raise InvalidURLError(
            f"Localhost and private network URLs are not allowed: {url}. "
            "Set allow_localhost=True to permit them."
        )
    return parsed


def resolve_url(url: str, base_url: Optional[str] = None, allow_localhost: bool = False) -> str:
    """
    Resolve ``url`` against ``base_url`` (when relative) and validate it.

    Relative paths are appended to the base path, so ``/users`` against
    ``https://api.example.com/v1`` becomes ``https://api.example.com/v1/users``.
    """
    candidate = url.strip() if url else url
    if candidate and base_url and not httpx.URL(candidate).is_absolute_url:
        candidate = base_url.rstrip("/") + "/" + candidate.lstrip("/")
    return str(validate_url(candidate, allow_localhost=allow_localhost))
