"""Storage account provisioning and key retrieval.

Keys are CRITICAL secrets: they are never logged, and StorageKeys redacts
them from repr/str.

Public API:
    StorageProvisioner: Create accounts, read keys, build connection strings
    StorageKeys: Primary/secondary access key pair
"""

import logging
from dataclasses import dataclass

from azure.core.exceptions import AzureError, ResourceNotFoundError

from azdeploy.errors import NotFoundError, ProvisioningError
from azdeploy.payloads import (
    StorageAccountDescriptor,
    parse_storage_keys,
    storage_account_body,
)
from azdeploy.transport import ServiceManagementClient

logger = logging.getLogger(__name__)

CONNECTION_STRING_FORMAT = "DefaultEndpointsProtocol=https;AccountName={0};AccountKey={1};"


@dataclass
class StorageKeys:
    """Storage account keys (CRITICAL: Never log this object)."""

    primary: str
    secondary: str

    def __repr__(self) -> str:
        return "StorageKeys(primary=***REDACTED***, secondary=***REDACTED***)"

    def __str__(self) -> str:
        return "StorageKeys(keys redacted for security)"


def format_connection_string(account_name: str, account_key: str) -> str:
    return CONNECTION_STRING_FORMAT.format(account_name, account_key)


class StorageProvisioner:
    """Create storage accounts and derive their connection strings."""

    def __init__(self, client: ServiceManagementClient):
        self.client = client

    def create_storage_account(self, region: str, name: str, account_type: str) -> None:
        """Create a storage account and wait for the provider to finish.

        Args:
            region: Provider region (e.g. "West Europe")
            name: Globally unique account name
            account_type: One of StorageAccountType (provider validates)

        Raises:
            ProvisioningError: Name collision, invalid region or type; carries
                the provider's status code and message
        """
        descriptor = StorageAccountDescriptor(region=region, name=name, account_type=account_type)
        logger.info(f"Creating storage account {name} ({account_type}) in {region}")

        try:
            self.client.request(
                "POST", "/services/storageservices", body=storage_account_body(descriptor)
            )
        except AzureError as e:
            raise ProvisioningError.from_azure_error(e) from e

        logger.info(f"Storage account {name} created")

    def get_storage_keys(self, name: str) -> StorageKeys:
        """Fetch the account's primary and secondary access keys.

        Raises:
            NotFoundError: Account does not exist
            ProvisioningError: Any other provider failure
        """
        try:
            response = self.client.request("GET", f"/services/storageservices/{name}/keys")
        except ResourceNotFoundError as e:
            raise NotFoundError.from_azure_error(e) from e
        except AzureError as e:
            raise ProvisioningError.from_azure_error(e) from e

        try:
            primary, secondary = parse_storage_keys(response.body)
        except ValueError as e:
            raise ProvisioningError(
                f"Unexpected key response for storage account {name}: {e}",
                status_code=response.status_code,
            ) from e

        # SECURITY: never log the keys themselves
        logger.info(f"Retrieved storage keys for account {name}")
        return StorageKeys(primary=primary, secondary=secondary)

    def get_connection_string(self, name: str) -> str:
        """Build a connection string for the account using the secondary key.

        The secondary key is rotated independently of the primary, so clients
        configured with it keep working while the primary is rotated.

        Raises:
            NotFoundError: Account does not exist
        """
        keys = self.get_storage_keys(name)
        return format_connection_string(name, keys.secondary)


__all__ = [
    "CONNECTION_STRING_FORMAT",
    "StorageKeys",
    "StorageProvisioner",
    "format_connection_string",
]
