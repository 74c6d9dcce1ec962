from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, APIRouter
from delegation_sas.dto.models import SasUrlRequest, SasUrlResponse
from delegation_sas.exceptions.sas_exception import (DelegationKeyRequestFailed, InvalidKeyMaterialError,
                                                     SasConfigurationError, TokenRequestFailed)
from delegation_sas.sas.azure_sas_url_generator import SasUrlGenerator
from delegation_sas.utils.logger import logger
from delegation_sas.utils.request_utils import validate_incoming_request, validate_request_body

router = APIRouter(dependencies=[Depends(validate_incoming_request)])

class SASView:

    @staticmethod
    @router.post("/generate-sas-url", response_model=SasUrlResponse, tags=["Azure Blob SAS Generator"])
    async def post(request_body: Annotated[SasUrlRequest, Depends(validate_request_body)]):
        """
        Generate a user delegation SAS URL for a container or a single blob.

        Body:
            container_name: Container to grant access to, defaults to the configured container.
            blob_name: Blob to grant access to, empty for the whole container.
            permission: Permission code, e.g. "r" or "rw".
            validity_hours: Lifetime of the SAS URL.

        Returns:
            dict: SAS URL, expiry, container and blob name.
        """
        logger.info(f"Generating SAS URL for container '{request_body.container_name}', "
                    f"blob '{request_body.blob_name}'")

        try:
            generator = SasUrlGenerator()
            return await generator.generate_sas_url(
                container_name=request_body.container_name,
                blob_name=request_body.blob_name,
                permission=request_body.permission,
                validity_hours=request_body.validity_hours,
            )
        except (TokenRequestFailed, DelegationKeyRequestFailed) as e:
            logger.error(f"Upstream request failed while generating SAS URL: {e}")
            raise HTTPException(status_code=502, detail="Failed to obtain a user delegation key.")
        except httpx.TimeoutException as e:
            logger.error(f"Timed out while generating SAS URL: {e}")
            raise HTTPException(status_code=504, detail="Timed out while contacting Azure.")
        except InvalidKeyMaterialError as e:
            logger.error(f"Received an unusable delegation key: {e}")
            raise HTTPException(status_code=502, detail="Received an unusable user delegation key.")
        except SasConfigurationError as e:
            logger.error(f"Error generating SAS URL: {e}")
            raise HTTPException(status_code=500, detail="SAS URL generator is not configured.")
