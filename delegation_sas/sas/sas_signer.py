"""
Builds user delegation SAS URLs for Azure Blob storage.

Everything in this module is a pure function of its inputs: no I/O and no shared
state, so it can be called from any number of tasks at once.

See https://learn.microsoft.com/en-us/rest/api/storageservices/create-user-delegation-sas#construct-a-user-delegation-sas
"""
import base64
import binascii
import hashlib
import hmac
from datetime import datetime
from typing import List, Tuple
from urllib.parse import quote

from delegation_sas.dto.models import DelegationKey, SigningRequest
from delegation_sas.enums.sas_enums import SignedResource
from delegation_sas.exceptions.sas_exception import InvalidKeyMaterialError
from delegation_sas.utils.logger import logger
from delegation_sas.utils.time_utils import format_sas_timestamp, to_utc

SIGNED_PROTOCOL = "https"
BLOB_ENDPOINT = "https://{account_name}.blob.core.windows.net"


def resolve_validity(key: DelegationKey, request: SigningRequest) -> Tuple[datetime, datetime]:
    """
    Returns the effective (start, expiry) of the signature.

    Values given on the request are used as they are, missing ones fall back to the
    key's own validity window. Bounds outside the key window are not clamped, the
    storage service rejects such tokens itself.
    """
    start = to_utc(request.start) if request.start is not None else key.signed_start
    expiry = to_utc(request.expiry) if request.expiry is not None else key.signed_expiry

    if expiry > key.signed_expiry:
        logger.warning(f"SAS expiry {format_sas_timestamp(expiry)} is later than the delegation key expiry "
                       f"{format_sas_timestamp(key.signed_expiry)}")
    if start < key.signed_start:
        logger.warning(f"SAS start {format_sas_timestamp(start)} is earlier than the delegation key start "
                       f"{format_sas_timestamp(key.signed_start)}")
    return start, expiry


def canonicalized_resource(account_name: str, container_name: str, blob_name: str = "") -> str:
    resource = f"/blob/{account_name}/{container_name}"
    if blob_name:
        resource += f"/{blob_name}"
    return resource


def build_string_to_sign(key: DelegationKey, request: SigningRequest) -> str:
    """
    Builds the canonical string-to-sign of a user delegation SAS.

    The storage service rebuilds this string on its side and compares signatures,
    so field order and every empty field must stay exactly as below.

    Args:
        key (DelegationKey): The user delegation key the token is signed with.
        request (SigningRequest): Resource, permission and validity of the token.

    Returns:
        str: The newline-joined fields.
    """
    start, expiry = resolve_validity(key, request)
    return "\n".join(_canonical_fields(key, request, start, expiry))


def _canonical_fields(key: DelegationKey, request: SigningRequest, start: datetime,
                      expiry: datetime) -> Tuple[str, ...]:
    return (
        request.permission.value,
        format_sas_timestamp(start),
        format_sas_timestamp(expiry),
        canonicalized_resource(request.account_name, request.container_name, request.blob_name),
        key.signed_oid,
        key.signed_tid,
        format_sas_timestamp(key.signed_start),
        format_sas_timestamp(key.signed_expiry),
        key.signed_service.value,
        key.signed_version,
        "",  # signedAuthorizedUserObjectId
        "",  # signedUnauthorizedUserObjectId
        "",  # signedCorrelationId
        "",  # signedIP
        SIGNED_PROTOCOL,
        key.signed_version,
        SignedResource.for_blob_name(request.blob_name).value,
        "",  # signedSnapshotTime
        "",  # signedEncryptionScope
        "",  # rscc
        "",  # rscd
        "",  # rsce
        "",  # rscl
        "",  # rsct
    )


def decode_key_material(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.error("Delegation key value could not be base64 decoded")
        raise InvalidKeyMaterialError(original_exception=e) from e


def compute_signature(key_value: str, string_to_sign: str) -> str:
    """HMAC-SHA256 of the string-to-sign keyed by the decoded key value, base64 encoded."""
    digest = hmac.new(decode_key_material(key_value), string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def build_query_parameters(key: DelegationKey, request: SigningRequest) -> List[Tuple[str, str]]:
    """Returns the ordered SAS query parameters, with ``sig`` last."""
    start, expiry = resolve_validity(key, request)
    string_to_sign = "\n".join(_canonical_fields(key, request, start, expiry))

    return [
        ("sr", SignedResource.for_blob_name(request.blob_name).value),
        ("sp", request.permission.value),
        ("spr", SIGNED_PROTOCOL),
        ("skt", format_sas_timestamp(key.signed_start)),
        ("st", format_sas_timestamp(start)),
        ("ske", format_sas_timestamp(key.signed_expiry)),
        ("se", format_sas_timestamp(expiry)),
        ("skoid", key.signed_oid),
        ("sktid", key.signed_tid),
        ("sks", key.signed_service.value),
        ("skv", key.signed_version),
        ("sv", key.signed_version),
        ("sig", compute_signature(key.value, string_to_sign)),
    ]


def encode_query(parameters: List[Tuple[str, str]]) -> str:
    # Only RFC 3986 unreserved characters stay unescaped
    return "&".join(f"{name}={quote(value, safe='')}" for name, value in parameters)


def generate_delegation_sas_url(key: DelegationKey, request: SigningRequest) -> str:
    """
    Constructs a SAS URL for a blob, or for a container when ``blob_name`` is empty.

    Args:
        key (DelegationKey): Result of DelegationKeyClient.request_delegation_key.
        request (SigningRequest): Account, container, blob, permission and optional validity bounds.

    Returns:
        str: ``https://{account}.blob.core.windows.net/{container}[/{blob}]?{sas}``

    Raises:
        InvalidKeyMaterialError: If the key value is not valid base64.
    """
    # The path is escaped, the canonicalized resource signs the raw names
    resource_url = f"{BLOB_ENDPOINT.format(account_name=request.account_name)}/{quote(request.container_name, safe='')}"
    if request.blob_name:
        resource_url += f"/{quote(request.blob_name, safe='/~')}"
    return f"{resource_url}?{encode_query(build_query_parameters(key, request))}"
