"""Management service facade.

Owns one CredentialContext and one ServiceManagementClient and exposes the
provisioning capabilities built on them. Capabilities are independent;
the only ordering is the natural one (a deployment needs an existing hosted
service, an autoscale policy needs a deployed role).

Lifecycle:
    Prefer open_management_service(), which releases the client and the
    certificate material exactly once when the block exits. When calling
    close() by hand, do it only after every in-flight operation finished.

Example:
    >>> with open_management_service(subscription_id, certificate_blob) as service:
    ...     service.create_storage_account("West Europe", "myappstore", "Standard_GRS")
    ...     connection_string = service.get_connection_string("myappstore")
    ...     service.create_hosted_service("West Europe", "myapp")
    ...     service.deploy("myapp", package_uri, "ServiceConfiguration.cscfg")
    ...     service.autoscale_cloud_service("myapp", "WebRole1")
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from azdeploy.autoscale import AutoscalePolicyConfig, AutoscalePolicySynthesizer, AutoscaleResult
from azdeploy.compute import HostedServiceProvisioner
from azdeploy.credentials import CredentialContext
from azdeploy.deployment import DeploymentOrchestrator, DeploymentSlot
from azdeploy.payloads import DeploymentDescriptor
from azdeploy.storage import StorageKeys, StorageProvisioner
from azdeploy.transport import ClientSettings, ServiceManagementClient

logger = logging.getLogger(__name__)


class ManagementService:
    """Provision storage, hosted services, deployments and autoscale policies."""

    def __init__(
        self,
        subscription_id: str,
        base64_certificate: str,
        settings: ClientSettings | None = None,
        autoscale_config: AutoscalePolicyConfig | None = None,
        certificate_password: str | None = None,
        **client_kwargs,
    ):
        """Initialize service.

        Args:
            subscription_id: Subscription identifier
            base64_certificate: Management certificate, base64 encoded
            settings: Transport settings
            autoscale_config: Autoscale policy (historical defaults if None)
            certificate_password: Password for protected PKCS#12 blobs
            **client_kwargs: Passed through to the transport client

        Raises:
            CredentialError: If the credential cannot be decoded
        """
        self.credential = CredentialContext(
            subscription_id, base64_certificate, certificate_password=certificate_password
        )
        try:
            self.client = ServiceManagementClient(self.credential, settings, **client_kwargs)
        except Exception:
            self.credential.close()
            raise

        self.storage = StorageProvisioner(self.client)
        self.compute = HostedServiceProvisioner(self.client)
        self.deployments = DeploymentOrchestrator(self.client)
        self.autoscale = AutoscalePolicySynthesizer(self.client, autoscale_config)
        self._closed = False

    def create_storage_account(self, region: str, name: str, account_type: str) -> None:
        self.storage.create_storage_account(region, name, account_type)

    def get_storage_keys(self, name: str) -> StorageKeys:
        return self.storage.get_storage_keys(name)

    def get_connection_string(self, name: str) -> str:
        return self.storage.get_connection_string(name)

    def create_hosted_service(self, region: str, name: str, **kwargs) -> None:
        self.compute.create_hosted_service(region, name, **kwargs)

    def deploy(
        self,
        service_name: str,
        package_uri: str,
        config_path: str | Path,
        slot: DeploymentSlot | str = DeploymentSlot.PRODUCTION,
        start_deployment: bool = True,
    ) -> DeploymentDescriptor:
        return self.deployments.deploy(
            service_name, package_uri, config_path, slot=slot, start_deployment=start_deployment
        )

    def autoscale_cloud_service(self, service_name: str, role_name: str) -> AutoscaleResult:
        return self.autoscale.apply(service_name, role_name)

    def close(self) -> None:
        """Release the client, then the certificate material. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            self.client.close()
        finally:
            self.credential.close()
        logger.debug("Management service closed")

    def __enter__(self) -> "ManagementService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@contextmanager
def open_management_service(
    subscription_id: str, base64_certificate: str, **kwargs
) -> Iterator[ManagementService]:
    """Acquire a ManagementService and guarantee its release."""
    service = ManagementService(subscription_id, base64_certificate, **kwargs)
    try:
        yield service
    finally:
        service.close()


__all__ = ["ManagementService", "open_management_service"]
