"""
Header handling for the proxy.

Upstream request headers are fixed apart from the caller's Authorization
value, and identity encoding is requested so the relayed body is the
upstream's wire bytes. Upstream response headers are copied through in order, minus the
hop-by-hop and framing headers the outbound response recomputes itself.
"""

from typing import Dict, Iterable, List, Optional, Tuple

# RFC 9110 hop-by-hop headers plus framing headers that no longer describe
# the relayed body if an upstream compresses anyway and httpx decodes it.
DENIED_RESPONSE_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "content-length",
    "content-encoding",
})


def build_upstream_headers(user_agent: str, authorization: Optional[str]) -> Dict[str, str]:
    """
    Build headers for the upstream request.

    Args:
        user_agent: Static identifying User-Agent
        authorization: Caller's Authorization value, forwarded unmodified

    Returns:
        Headers dict for the upstream request
    """
    headers = {
        "Accept": "application/json",
        "Accept-Encoding": "identity",
        "User-Agent": user_agent,
    }

    if authorization:
        headers["Authorization"] = authorization

    return headers


def copy_response_headers(
    headers: Iterable[Tuple[str, str]],
    denied: frozenset = DENIED_RESPONSE_HEADERS,
) -> List[Tuple[str, str]]:
    """
    Copy upstream response headers, dropping denied names.

    Repeated headers (e.g. Set-Cookie) are kept as separate entries in their
    original order.
    """
    return [
        (name, value)
        for name, value in headers
        if name.lower() not in denied
    ]
