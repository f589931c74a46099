"""
Proxy Routes - Upstream Request Forwarding
==========================================

This module implements the credential-forwarding proxy that lets a browser
hosted connector reach an upstream API it cannot call directly.

Forwarding Model:
-----------------
1. The caller names a logical endpoint relative to the upstream base URL
2. The endpoint is validated so it can never leave that base URL
3. The caller's Authorization header is forwarded unmodified
4. Accept and User-Agent are fixed
5. Exactly one upstream GET is issued; no retries, no caching
6. HTTP 200 is relayed with headers and body intact; anything else is
   surfaced as a status code

Each request gets its own upstream client, so nothing (cookies, credentials,
connections) carries over from one proxied request to the next.

Endpoints:
----------
- GET /proxy?endpoint=<path>[&page=<n>]
"""

import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ..config import Settings, get_settings
from ..errors import TransportFailure, UnsafeEndpointError, UpstreamRejection
from ..models import ProxyRequest, UpstreamResponse
from .headers import build_upstream_headers, copy_response_headers
from .paths import PAGE_QUERY_KEY, resolve_upstream_url

logger = logging.getLogger(__name__)

# Create router
proxy_router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================

async def get_upstream_client(request: Request) -> AsyncIterator[httpx.AsyncClient]:
    """
    Dependency yielding a fresh upstream HTTP client for one request.

    app.state.upstream_transport, when set, replaces the network transport.

    Yields:
        httpx.AsyncClient closed once the response has been produced
    """
    settings = get_settings()
    transport = getattr(request.app.state, "upstream_transport", None)

    async with httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(settings.UPSTREAM_TIMEOUT_SECONDS),
        follow_redirects=False,
    ) as client:
        yield client


# ============================================================================
# Forwarding
# ============================================================================

async def forward(
    proxy_request: ProxyRequest,
    client: httpx.AsyncClient,
    settings: Settings,
) -> UpstreamResponse:
    """
    Issue the upstream call for one proxy request.

    Args:
        proxy_request: Validated inbound request
        client: HTTP client for the upstream API
        settings: Application settings

    Returns:
        UpstreamResponse for an upstream HTTP 200

    Raises:
        UnsafeEndpointError: Endpoint would leave the upstream base URL
        UpstreamRejection: Upstream answered with any other status
        TransportFailure: Upstream could not be reached
    """
    url = resolve_upstream_url(settings.upstream_base_url_str, proxy_request.endpoint)
    headers = build_upstream_headers(settings.USER_AGENT, proxy_request.authorization)
    params = {}
    if proxy_request.page is not None:
        params[PAGE_QUERY_KEY] = str(proxy_request.page)

    logger.info(f"Attempting to proxy request to {url}", extra={"page": proxy_request.page})

    try:
        response = await client.get(url, headers=headers, params=params or None)
    except httpx.TimeoutException as e:
        raise TransportFailure(
            f"Upstream request timed out: {e}", url=url, status_code=status.HTTP_504_GATEWAY_TIMEOUT
        ) from e
    except httpx.NetworkError as e:
        raise TransportFailure(
            f"Cannot reach upstream API: {e}", url=url, status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        ) from e
    except httpx.RequestError as e:
        raise TransportFailure(
            f"Upstream request failed: {e}", url=url, status_code=status.HTTP_502_BAD_GATEWAY
        ) from e

    if response.status_code != 200:
        raise UpstreamRejection(
            response.status_code,
            response.reason_phrase or f"Upstream responded with HTTP {response.status_code}",
        )

    return UpstreamResponse(
        status_code=response.status_code,
        headers=copy_response_headers(response.headers.multi_items()),
        body=response.content,
    )


# ============================================================================
# Proxy Endpoints
# ============================================================================

@proxy_router.get("/proxy")
async def proxy_endpoint(
    request: Request,
    endpoint: str = Query(..., description="API endpoint path relative to the upstream base URL"),
    page: Optional[int] = Query(None, description="Page number forwarded upstream"),
    client: httpx.AsyncClient = Depends(get_upstream_client),
):
    """
    Proxy a GET request to the upstream API.

    Flow:
    1. Read the logical endpoint (and optional page) from the query string
    2. Forward the caller's Authorization header unmodified
    3. Relay an upstream 200 with every non hop-by-hop header and the raw body
    4. Map any other upstream status, or a transport failure, to a status code

    Returns:
        Upstream response body and headers, unchanged

    Raises:
        HTTPException: 400 for unsafe endpoints, upstream status for
                       rejections, 502/503/504 for transport failures
    """
    settings = get_settings()
    inbound = ProxyRequest(
        endpoint=endpoint,
        authorization=request.headers.get("Authorization"),
        page=page,
    )

    try:
        upstream = await forward(inbound, client, settings)

    except UnsafeEndpointError as e:
        logger.warning(f"Rejected unsafe endpoint: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    except UpstreamRejection as e:
        logger.warning(
            f"Error fulfilling request: \"{e}\"",
            extra={"status_code": e.status_code, "endpoint": endpoint}
        )
        raise HTTPException(status_code=e.status_code, detail=str(e))

    except TransportFailure as e:
        logger.error(
            f"Error fulfilling request: \"{e}\"",
            extra={"url": e.url, "status_code": e.status_code}
        )
        raise HTTPException(status_code=e.status_code, detail=str(e))

    response = Response(content=upstream.body, status_code=upstream.status_code)
    for name, value in upstream.headers:
        response.headers.append(name, value)

    return response
