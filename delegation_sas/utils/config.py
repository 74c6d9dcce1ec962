import os
import requests
from delegation_sas.utils.logger import logger
from delegation_sas.utils.vault_manager import get_secret
from dotenv import load_dotenv

load_dotenv()


# Initialize configuration variables
AZURE_TENANT_ID = None
AZURE_CLIENT_ID = None
AZURE_CLIENT_SECRET = None
AZURE_CLIENT_SECRET_NAME = None
KEY_VAULT_URL = None
AZURE_STORAGE_ACCOUNT_NAME = None
AZURE_STORAGE_ACCOUNT_URL = None
AZURE_STORAGE_CONTAINER_NAME = None
AZURE_STORAGE_SAS_URL_VALIDITY = 1.0  # Hours
HTTP_TIMEOUT_SECONDS = 30.0
BLACKLISTED_WORDS = []
CORS_ORIGINS = []

REQUIRED_SETTINGS = (
    "AZURE_TENANT_ID",
    "AZURE_CLIENT_ID",
    "AZURE_CLIENT_SECRET",
    "AZURE_STORAGE_ACCOUNT_NAME",
)


def _split_list(value):
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def fetch_remote_source(config_url: str) -> dict:
    """
    Fetches the first property source of a Spring Cloud Config style document.

    Args:
        config_url (str): URL of the configuration document.

    Returns:
        dict: Key/value settings of the first property source.
    """
    logger.info("Sending GET request to CONFIG_URL")
    response = requests.get(config_url, timeout=HTTP_TIMEOUT_SECONDS)
    logger.info(f"Received response: {response.status_code} from CONFIG_URL")

    if response.status_code != 200:
        logger.error(f"Failed to fetch configuration details. Status code: {response.status_code}")
        raise Exception(f"Failed to fetch configuration details. Status code: {response.status_code}")

    property_sources = response.json().get("propertySources", [])
    if not property_sources:
        logger.error("No property sources found in the configuration response.")
        raise ValueError("Invalid configuration response format.")
    return property_sources[0].get("source", {})


def missing_settings() -> list:
    return [name for name in REQUIRED_SETTINGS if not globals().get(name)]


try:
    CONFIG_URL = os.getenv("CONFIG_URL")
    if CONFIG_URL:
        logger.info("Fetching configuration details from CONFIG_URL")
        source = fetch_remote_source(CONFIG_URL)
    else:
        source = os.environ

    AZURE_TENANT_ID = source.get("AZURE_TENANT_ID")
    AZURE_CLIENT_ID = source.get("AZURE_CLIENT_ID")
    AZURE_CLIENT_SECRET = source.get("AZURE_CLIENT_SECRET")
    AZURE_CLIENT_SECRET_NAME = source.get("AZURE_CLIENT_SECRET_NAME")
    KEY_VAULT_URL = source.get("KEY_VAULT_URL")
    AZURE_STORAGE_ACCOUNT_NAME = source.get("AZURE_STORAGE_ACCOUNT_NAME")
    AZURE_STORAGE_ACCOUNT_URL = source.get("AZURE_STORAGE_ACCOUNT_URL")
    AZURE_STORAGE_CONTAINER_NAME = source.get("AZURE_STORAGE_CONTAINER_NAME")
    AZURE_STORAGE_SAS_URL_VALIDITY = float(source.get("AZURE_STORAGE_SAS_URL_VALIDITY", 1))
    HTTP_TIMEOUT_SECONDS = float(source.get("HTTP_TIMEOUT_SECONDS", 30))
    BLACKLISTED_WORDS = _split_list(source.get("BLACKLISTED_WORDS"))
    CORS_ORIGINS = _split_list(source.get("CORS_ORIGINS"))

    # Secret held in Key Vault when it is not given directly
    if not AZURE_CLIENT_SECRET and AZURE_CLIENT_SECRET_NAME:
        AZURE_CLIENT_SECRET = get_secret(AZURE_CLIENT_SECRET_NAME, KEY_VAULT_URL)

    if AZURE_STORAGE_ACCOUNT_NAME and not AZURE_STORAGE_ACCOUNT_URL:
        AZURE_STORAGE_ACCOUNT_URL = f"https://{AZURE_STORAGE_ACCOUNT_NAME}.blob.core.windows.net"

    logger.info("Configuration details loaded.")

except Exception as e:
    logger.critical(f"Error while loading configuration details: {e}")
    raise
