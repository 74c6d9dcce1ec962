from datetime import timedelta
from typing import Optional

import httpx

from delegation_sas.dto.models import SasUrlResponse, SigningRequest
from delegation_sas.enums.sas_enums import SasPermission
from delegation_sas.exceptions.sas_exception import SasConfigurationError
from delegation_sas.sas.sas_signer import generate_delegation_sas_url
from delegation_sas.services.delegation_key_service import DelegationKeyClient
from delegation_sas.services.token_cache import TokenCache
from delegation_sas.utils import config
from delegation_sas.utils.logger import logger
from delegation_sas.utils.request_utils import async_timing_decorator
from delegation_sas.utils.time_utils import utc_now


class SasUrlGenerator:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super(SasUrlGenerator, cls).__new__(cls)
            instance._initialize()
            cls._instance = instance
        return cls._instance

    def _initialize(self):
        missing = config.missing_settings()
        if missing:
            logger.error(f"SAS URL generator is not configured, missing settings: {', '.join(missing)}")
            raise SasConfigurationError(f"Missing configuration settings: {', '.join(missing)}")

        self.account_name = config.AZURE_STORAGE_ACCOUNT_NAME
        self.default_container = config.AZURE_STORAGE_CONTAINER_NAME
        self.validity_hours = float(config.AZURE_STORAGE_SAS_URL_VALIDITY)
        self.http_client = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)
        self.token_cache = TokenCache(
            http_client=self.http_client,
            tenant_id=config.AZURE_TENANT_ID,
            client_id=config.AZURE_CLIENT_ID,
            client_secret=config.AZURE_CLIENT_SECRET,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )
        self.delegation_key_client = DelegationKeyClient(
            http_client=self.http_client,
            token_cache=self.token_cache,
            account_url=config.AZURE_STORAGE_ACCOUNT_URL,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )
        logger.info(f"SAS URL generator initialized for storage account {self.account_name}")

    @async_timing_decorator
    async def generate_sas_url(self, container_name: Optional[str] = None, blob_name: str = "",
                               permission: SasPermission = SasPermission.read_write,
                               validity_hours: Optional[float] = None) -> SasUrlResponse:
        """
        Generates a SAS URL for a container, or for a blob inside it, signed with a fresh user delegation key.

        Args:
            container_name (str, optional): Container to grant access to. Defaults to the configured container.
            blob_name (str): Blob to grant access to. Empty grants access to the whole container.
            permission (SasPermission): Operations allowed by the token.
            validity_hours (float, optional): Lifetime of key and token. Defaults to the configured validity.

        Returns:
            SasUrlResponse: SAS URL, expiry as epoch seconds, container and blob name.
        """
        container_name = container_name or self.default_container
        if not container_name:
            raise SasConfigurationError("No container name given and AZURE_STORAGE_CONTAINER_NAME is not set.")

        start_time = utc_now().replace(microsecond=0)
        expiry_time = start_time + timedelta(hours=validity_hours or self.validity_hours)

        logger.debug("Fetching user delegation key...")
        delegation_key = await self.delegation_key_client.request_delegation_key(expiry=expiry_time,
                                                                                 start=start_time)
        logger.debug("Generating SAS URL...")
        sas_url = generate_delegation_sas_url(delegation_key, SigningRequest(
            account_name=self.account_name,
            container_name=container_name,
            blob_name=blob_name,
            permission=permission,
            start=start_time,
            expiry=expiry_time,
        ))

        scope = f"blob {container_name}/{blob_name}" if blob_name else f"container {container_name}"
        logger.info(f"Generated SAS URL for {scope} with permission '{permission.value}'.")
        return SasUrlResponse(
            sas_url=sas_url,
            expires_on=int(expiry_time.timestamp()),
            container=container_name,
            blob=blob_name,
        )

    async def aclose(self):
        await self.http_client.aclose()
