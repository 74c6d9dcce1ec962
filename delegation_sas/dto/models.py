from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from delegation_sas.enums.sas_enums import SasPermission, SignedService
from delegation_sas.utils.time_utils import to_utc


class OAuthTokenResponse(BaseModel):
    """Body returned by the Microsoft identity platform token endpoint."""
    token_type: str
    expires_in: int
    access_token: str
    model_config = ConfigDict(extra="ignore")


class BearerToken(BaseModel):
    access_token: str
    token_type: str
    expires_at: datetime
    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_response(cls, response: OAuthTokenResponse, received_at: datetime) -> "BearerToken":
        # expires_in is relative to the moment the response was received
        return cls(
            access_token=response.access_token,
            token_type=response.token_type,
            expires_at=to_utc(received_at) + timedelta(seconds=response.expires_in),
        )

    def is_valid(self, now: datetime) -> bool:
        return self.expires_at > to_utc(now)


class DelegationKey(BaseModel):
    value: str = Field(alias="Value")
    signed_oid: str = Field(alias="SignedOid")
    signed_tid: str = Field(alias="SignedTid")
    signed_start: datetime = Field(alias="SignedStart")
    signed_expiry: datetime = Field(alias="SignedExpiry")
    signed_service: SignedService = Field(alias="SignedService")
    signed_version: str = Field(alias="SignedVersion")
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    @field_validator("signed_start", "signed_expiry")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return to_utc(value)


class SigningRequest(BaseModel):
    account_name: str
    container_name: str
    blob_name: str = ""
    permission: SasPermission = SasPermission.read_write
    start: Optional[datetime] = None
    expiry: Optional[datetime] = None


class SasUrlRequest(BaseModel):
    container_name: Optional[str] = None
    blob_name: str = ""
    permission: SasPermission = SasPermission.read_write
    validity_hours: Optional[float] = Field(default=None, gt=0)
    model_config = ConfigDict(extra="forbid")


class SasUrlResponse(BaseModel):
    sas_url: str
    expires_on: int
    container: str
    blob: str = ""
