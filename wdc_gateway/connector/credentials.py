"""
Credential storage and token acquisition for the connector.

The host application owns the persistent credential; the connector only
reads it and asks for it to be overwritten through a CredentialStore passed
in by reference, so separate connector instances never share a token slot.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx
import jwt

from ..config import Settings
from ..models import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Get/set access to the host's stored credential.

    The default implementation keeps the token in memory; hosts that persist
    credentials elsewhere subclass it and override get() and set().
    """

    def __init__(self, token: Optional[str] = None):
        self._credential = Credential(token=token)

    def get(self) -> Optional[str]:
        return self._credential.token

    def set(self, token: Optional[str]) -> None:
        self._credential = Credential(token=token)


# (store) -> None; must end by overwriting the stored token when it succeeds
TokenAcquirer = Callable[[CredentialStore], Awaitable[None]]


def token_expires_soon(token: str, leeway_seconds: int = 0) -> bool:
    """
    Check whether a JWT access token is expired or about to expire.

    The signature is not verified; only the exp claim is read. Opaque
    (non-JWT) tokens and tokens without exp return False.

    Args:
        token: Stored access token
        leeway_seconds: Treat tokens expiring within this window as expired

    Returns:
        True if the token should be replaced before use
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return False

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return False

    return exp <= time.time() + leeway_seconds


class OAuthTokenAcquirer:
    """
    Acquire a new access token from an OAuth token endpoint.

    Uses the refresh_token grant when the connection data carries a
    refresh token, and the client_credentials grant otherwise.
    """

    def __init__(
        self,
        settings: Settings,
        connection_data: Optional[Mapping[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._connection_data = connection_data or {}
        self._transport = transport

    def _token_request(self) -> dict:
        data = {}
        if self._settings.OAUTH_CLIENT_ID:
            data["client_id"] = self._settings.OAUTH_CLIENT_ID
        if self._settings.OAUTH_CLIENT_SECRET:
            data["client_secret"] = self._settings.OAUTH_CLIENT_SECRET

        refresh_token = self._connection_data.get("refresh_token")
        if refresh_token:
            data["grant_type"] = "refresh_token"
            data["refresh_token"] = refresh_token
        else:
            data["grant_type"] = "client_credentials"

        return data

    async def __call__(self, store: CredentialStore) -> None:
        """
        Request a token and write it to the store.

        Failures are logged and leave the stored credential untouched.
        """
        token_url = self._settings.TOKEN_URL
        if not token_url:
            logger.warning("No TOKEN_URL configured, cannot acquire a new access token")
            return

        request_data = self._token_request()
        logger.info(
            "Requesting new access token",
            extra={"token_url": token_url, "grant_type": request_data["grant_type"]}
        )

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    token_url,
                    data=request_data,
                    headers={"Accept": "application/json"},
                )
                resp.raise_for_status()
                data = resp.json()

            if "error" in data:
                raise ValueError(
                    f"Token endpoint error: {data.get('error_description', data['error'])}"
                )

            store.set(data["access_token"])
            logger.info("Stored new access token")

        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to acquire access token: {e}")
