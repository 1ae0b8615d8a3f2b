"""Hosted (cloud) service provisioning."""

import logging

from azure.core.exceptions import AzureError

from azdeploy.errors import ProvisioningError
from azdeploy.payloads import HostedServiceDescriptor, hosted_service_body
from azdeploy.transport import ServiceManagementClient

logger = logging.getLogger(__name__)


class HostedServiceProvisioner:
    """Create named hosted services. Creation is success; nothing is read back."""

    def __init__(self, client: ServiceManagementClient):
        self.client = client

    def create_hosted_service(
        self,
        region: str,
        name: str,
        label: str | None = None,
        description: str | None = None,
    ) -> None:
        """Create a hosted service.

        Args:
            region: Provider region
            name: Globally unique service name
            label: Display label (defaults to the name)
            description: Optional description

        Raises:
            ProvisioningError: Name collision or invalid region
        """
        descriptor = HostedServiceDescriptor(
            region=region, name=name, label=label, description=description
        )
        logger.info(f"Creating hosted service {name} in {region}")

        try:
            self.client.request(
                "POST", "/services/hostedservices", body=hosted_service_body(descriptor)
            )
        except AzureError as e:
            raise ProvisioningError.from_azure_error(e) from e

        logger.info(f"Hosted service {name} created")


__all__ = ["HostedServiceProvisioner"]
