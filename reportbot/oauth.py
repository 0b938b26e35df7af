# -*- coding: utf-8 -*-

# --- IMPORTS ---
import logging
from urllib.parse import urlencode

# HTTP
import httpx

# Local Imports
from .constants import YANDEX_OAUTH_AUTHORIZE_URL, YANDEX_OAUTH_TOKEN_URL, YANDEX_DEFAULT_REDIRECT_URI
from .errors import OAuthError

# --- BASIC SETUP ---
logger = logging.getLogger(__name__)


def authorize_url(settings) -> str:
    """Link the user opens to grant the bot access to their disk."""
    query = urlencode({
        "response_type": "code",
        "client_id": settings.yandex_client_id,
        "redirect_uri": settings.yandex_redirect_uri,
    })
    return f"{YANDEX_OAUTH_AUTHORIZE_URL}?{query}"


async def exchange_code(settings, code: str, transport: httpx.AsyncBaseTransport | None = None) -> str:
    """Exchanges an authorization code for an access token."""
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": settings.yandex_client_id,
        "client_secret": settings.yandex_client_secret,
    }
    # The verification page flow must not send redirect_uri back.
    if settings.yandex_redirect_uri != YANDEX_DEFAULT_REDIRECT_URI:
        data["redirect_uri"] = settings.yandex_redirect_uri

    try:
        async with httpx.AsyncClient(timeout=settings.request_timeout, transport=transport) as client:
            response = await client.post(YANDEX_OAUTH_TOKEN_URL, data=data)
    except httpx.HTTPError as e:
        raise OAuthError(f"Token request failed: {e}") from e

    if response.status_code >= 400:
        logger.error(f"OAuth token exchange failed: {response.status_code} - {response.text}")
        raise OAuthError(f"Token request failed with status {response.status_code}")

    token = response.json().get("access_token")
    if not token:
        raise OAuthError("Token not received")
    return token
