from typing import Optional


class SASGenerationError(Exception):
    """Base class for every failure raised while issuing a SAS URL."""
    def __init__(self, message="Failed to generate SAS URL", original_exception=None):
        super().__init__(message)
        self.original_exception = original_exception


class TokenRequestFailed(SASGenerationError):
    def __init__(self, status_code: int, message: Optional[str] = None):
        super().__init__(message or f"OAuth token request failed with status code {status_code}")
        self.status_code = status_code


class Unauthorized(SASGenerationError):
    # Raised by a single delegation key attempt; only leaves DelegationKeyClient wrapped in DelegationKeyRequestFailed
    def __init__(self, message="Delegation key request was not authorized"):
        super().__init__(message)
        self.status_code = 401


class DelegationKeyRequestFailed(SASGenerationError):
    def __init__(self, status_code: int, message: Optional[str] = None, original_exception=None):
        super().__init__(message or f"User delegation key request failed with status code {status_code}",
                         original_exception)
        self.status_code = status_code


class InvalidKeyMaterialError(SASGenerationError, ValueError):
    def __init__(self, message="Delegation key value is not valid base64", original_exception=None):
        super().__init__(message, original_exception)


class SasConfigurationError(SASGenerationError, ValueError):
    def __init__(self, message="SAS URL generator is not configured"):
        super().__init__(message)
