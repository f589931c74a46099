"""
Proxy Package
=============

This package implements the credential-forwarding proxy that relays
connector requests to the upstream API.

Main Components:
----------------
- routes.py: FastAPI router with the GET /proxy endpoint and forward()
- headers.py: Upstream request headers and response header copy-through
- paths.py: Proxy path builder and upstream URL resolution

Usage:
------
    from wdc_gateway.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .paths import build_proxy_path
from .routes import proxy_router

__all__ = ["build_proxy_path", "proxy_router"]
