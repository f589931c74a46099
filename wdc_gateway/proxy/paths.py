"""
Proxy path helpers.

build_proxy_path() is used by the connector to address the gateway;
resolve_upstream_url() is used by the gateway to turn the untrusted
logical endpoint back into an upstream URL.
"""

from typing import Any, Dict, Optional
from urllib.parse import unquote, urlsplit

from ..errors import UnsafeEndpointError

PROXY_ROUTE = "/proxy"
ENDPOINT_QUERY_KEY = "endpoint"
PAGE_QUERY_KEY = "page"


def build_proxy_path(path: str, options: Optional[Dict[str, Any]] = None) -> str:
    """
    Build a gateway-relative URL that proxies the given API endpoint.

    Args:
        path: API endpoint path relative to the upstream base URL
        options: Paging options. Only "last" is recognized: when present the
                 next page (last + 1) is requested.

    Returns:
        Path such as "/proxy?endpoint=forms&page=3"

    Raises:
        ValueError: If "last" is not numeric
    """
    options = options or {}
    proxy_path = f"{PROXY_ROUTE}?{ENDPOINT_QUERY_KEY}={path}"

    last = options.get("last")
    if last is not None:
        proxy_path += f"&{PAGE_QUERY_KEY}={int(last) + 1}"

    return proxy_path


def resolve_upstream_url(base_url: str, endpoint: str) -> str:
    """
    Join a logical endpoint onto the upstream base URL.

    The result always stays under base_url: absolute URLs, scheme-relative
    paths, backslashes and dot segments are refused.

    Raises:
        UnsafeEndpointError: If the endpoint could leave the base URL
    """
    if not endpoint or not endpoint.strip():
        raise UnsafeEndpointError("Endpoint is required")

    decoded = unquote(endpoint)
    parts = urlsplit(decoded)
    if parts.scheme or parts.netloc or decoded.startswith("//"):
        raise UnsafeEndpointError(f"Endpoint must be a relative path: {endpoint}")

    if "\\" in decoded:
        raise UnsafeEndpointError(f"Endpoint contains a backslash: {endpoint}")

    segments = parts.path.split("/")
    if any(segment in (".", "..") for segment in segments):
        raise UnsafeEndpointError(f"Endpoint contains dot segments: {endpoint}")

    return base_url.rstrip("/") + "/" + endpoint.lstrip("/")
