import asyncio
from typing import Optional

import httpx

from delegation_sas.dto.models import BearerToken, OAuthTokenResponse
from delegation_sas.exceptions.sas_exception import TokenRequestFailed
from delegation_sas.utils.logger import logger
from delegation_sas.utils.time_utils import utc_now

TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
STORAGE_SCOPE = "https://storage.azure.com/.default"
DEFAULT_TIMEOUT_SECONDS = 30.0


class TokenCache:
    """
    Holds the OAuth2 bearer token of a service principal and renews it on demand.

    Tokens are obtained through the client-credentials flow against the Microsoft
    identity platform. Renewal is reactive: the first caller that finds the cached
    token expired fetches a new one. All reads and renewals run under a single
    asyncio lock, so at most one token request is in flight and concurrent callers
    wait for it instead of starting their own.
    """

    def __init__(self, http_client: httpx.AsyncClient, tenant_id: str, client_id: str, client_secret: str,
                 scope: str = STORAGE_SCOPE, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.http_client = http_client
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.timeout = timeout
        self._token: Optional[BearerToken] = None
        self._lock = asyncio.Lock()

    @property
    def token_url(self) -> str:
        return TOKEN_URL.format(tenant_id=self.tenant_id)

    async def get_token(self, force_renew: bool = False, rejected: Optional[BearerToken] = None) -> BearerToken:
        """
        Returns a bearer token that has not expired yet.

        Args:
            force_renew (bool): Discard the cached token and request a new one even if it is still valid.
            rejected (Optional[BearerToken]): The token the caller saw rejected. When another caller
                already replaced it while this one waited for the lock, the replacement is returned
                instead of requesting yet another token.

        Returns:
            BearerToken: The cached token, or a freshly requested one.

        Raises:
            TokenRequestFailed: If the token endpoint answers with a non-success status.
        """
        async with self._lock:
            cached_is_valid = self._token is not None and self._token.is_valid(utc_now())
            if force_renew:
                if rejected is not None and cached_is_valid and self._token.access_token != rejected.access_token:
                    return self._token
                # The rejected token must not be handed out again
                self._token = None
            elif cached_is_valid:
                return self._token

            self._token = await self._request_token()
            return self._token

    async def _request_token(self) -> BearerToken:
        form_data = {
            "client_id": self.client_id,
            "scope": self.scope,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }
        logger.info(f"Requesting OAuth token for client {self.client_id}")
        response = await self.http_client.post(self.token_url, data=form_data, timeout=self.timeout)
        received_at = utc_now()

        if not response.is_success:
            logger.error(f"Getting OAuth token failed with status code {response.status_code}")
            raise TokenRequestFailed(response.status_code)

        token = BearerToken.from_response(OAuthTokenResponse.model_validate(response.json()), received_at)
        logger.info(f"OAuth token received, valid until {token.expires_at.isoformat()}")
        return token
