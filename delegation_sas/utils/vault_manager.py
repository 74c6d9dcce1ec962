from typing import Optional

from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient
from delegation_sas.utils.logger import logger


def get_secret(secret_name: str, key_vault_url: Optional[str]) -> Optional[str]:
    """
    Retrieves a secret from Azure Key Vault.

    Args:
        secret_name (str): The name of the secret to retrieve.
        key_vault_url (str): Vault URL, e.g. ``https://my-vault.vault.azure.net/``.

    Returns:
        str: The value of the secret, or None if it could not be read.
    """
    if not key_vault_url:
        raise ValueError("KEY_VAULT_URL is not set.")

    try:
        # DefaultAzureCredential tries environment variables, managed identity, Azure CLI...
        client = SecretClient(vault_url=key_vault_url, credential=DefaultAzureCredential())
        return client.get_secret(secret_name).value
    except Exception as e:
        logger.error(f"Error retrieving secret {secret_name}: {e}")
        return None
