import time
from functools import wraps

from fastapi import Request, HTTPException

from delegation_sas.dto.models import SasUrlRequest
from delegation_sas.utils.logger import logger
from delegation_sas.utils.config import BLACKLISTED_WORDS


def check_blacklist(request_dict: dict, param_type: str):
    """
    Checks if any of the blacklisted words are present in the values of the request dictionary.

    Args:
        request_dict (dict): A dictionary containing key-value pairs from the request.
        param_type (str): The type of parameter being checked (e.g., 'Header', 'Query Parameters').

    Raises HTTPException if dictionary contains blacklisted words
    """
    for key, value in request_dict.items():
        for bl_word in BLACKLISTED_WORDS:
            if bl_word in str(value):
                logger.error(
                    f"Request was rejected because it contains unsanitized input {bl_word} in the {param_type}")
                raise HTTPException(status_code=400,
                                    detail="Request was rejected because it contains unsanitized input")


def validate_incoming_request(request: Request):
    """
    Validates the incoming request by checking if headers or query parameters contain blacklisted words.

    Args:
        request (Request): The incoming request object from FastAPI.
    """
    check_blacklist(dict(request.headers), "Header")
    check_blacklist(dict(request.query_params), "Query Parameters")


def validate_request_body(request_body: SasUrlRequest) -> SasUrlRequest:
    """
    Validates the request body by checking for any blacklisted words.

    Args:
        request_body (SasUrlRequest): The request body object to be validated.

    Returns:
        SasUrlRequest: The validated request body object.
    """
    check_blacklist(request_body.model_dump(mode="json"), "Request Body")
    return request_body


def async_timing_decorator(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = await func(*args, **kwargs)
        elapsed_time = time.perf_counter() - start_time
        logger.info(f"Function '{func.__name__}' executed in {elapsed_time:.4f} seconds")
        return result
    return wrapper
