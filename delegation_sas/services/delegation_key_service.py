from datetime import datetime
from typing import Optional

import httpx
import xmltodict

from delegation_sas.dto.models import DelegationKey
from delegation_sas.exceptions.sas_exception import DelegationKeyRequestFailed, Unauthorized
from delegation_sas.services.token_cache import DEFAULT_TIMEOUT_SECONDS, TokenCache
from delegation_sas.utils.logger import logger
from delegation_sas.utils.time_utils import format_sas_timestamp, utc_now

STORAGE_API_VERSION = "2022-11-02"
DELEGATION_KEY_PATH = "/?restype=service&comp=userdelegationkey"


class DelegationKeyClient:
    """
    Requests user delegation keys from the Blob service of one storage account.

    The bearer token comes from a TokenCache. A request rejected with 401 is sent
    exactly once more, with a force-renewed token; there is no other retry.
    """

    def __init__(self, http_client: httpx.AsyncClient, token_cache: TokenCache, account_url: str,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.http_client = http_client
        self.token_cache = token_cache
        self.account_url = account_url.rstrip("/")
        self.timeout = timeout

    async def request_delegation_key(self, *, start: Optional[datetime] = None, expiry: datetime) -> DelegationKey:
        """
        Requests a user delegation key valid between start and expiry.

        Both bounds are keyword-only so a start can never be taken for an expiry.

        Args:
            start (datetime, optional): Start of the key validity window. Defaults to now.
            expiry (datetime): End of the key validity window.

        Returns:
            DelegationKey: Key material and signed identity fields used to sign SAS tokens.

        Raises:
            TokenRequestFailed: If a bearer token cannot be obtained.
            DelegationKeyRequestFailed: If the service rejects the request, including a second 401.
        """
        start = start or utc_now()

        token = await self.token_cache.get_token()
        try:
            return await self._request_delegation_key(token.access_token, start, expiry)
        except Unauthorized:
            logger.warning("Delegation key request was unauthorized, renewing OAuth token and retrying once")

        token = await self.token_cache.get_token(force_renew=True, rejected=token)
        try:
            return await self._request_delegation_key(token.access_token, start, expiry)
        except Unauthorized as e:
            logger.error("Delegation key request was unauthorized again after renewing the OAuth token")
            raise DelegationKeyRequestFailed(e.status_code, original_exception=e) from e

    async def _request_delegation_key(self, access_token: str, start: datetime, expiry: datetime) -> DelegationKey:
        url = self.account_url + DELEGATION_KEY_PATH
        headers = {
            "Authorization": f"Bearer {access_token}",
            "x-ms-version": STORAGE_API_VERSION,
            "Content-Type": "application/xml",
        }
        body = build_key_info_body(start, expiry)

        response = await self.http_client.post(url, headers=headers, content=body.encode("utf-8"),
                                               timeout=self.timeout)

        if response.status_code == 401:
            raise Unauthorized()
        if not response.is_success:
            logger.error(f"Getting user delegation key failed with status code {response.status_code}")
            raise DelegationKeyRequestFailed(response.status_code)

        delegation_key = parse_delegation_key(response.content)
        logger.info(f"User delegation key received, valid until {format_sas_timestamp(delegation_key.signed_expiry)}")
        return delegation_key


def build_key_info_body(start: datetime, expiry: datetime) -> str:
    return xmltodict.unparse({
        "KeyInfo": {
            "Start": format_sas_timestamp(start),
            "Expiry": format_sas_timestamp(expiry),
        }
    })


def parse_delegation_key(xml_body) -> DelegationKey:
    """Maps the UserDelegationKey document onto a DelegationKey by element name."""
    document = xmltodict.parse(xml_body)
    # Root element is UserDelegationKey, only its children are mapped
    key_fields = next(iter(document.values()))
    return DelegationKey.model_validate(key_fields)
