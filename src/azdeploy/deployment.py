"""Package deployment into a hosted service slot.

The service configuration document is read from disk verbatim and handed
to the provider, which is the only validator of its schema. A file that
cannot be read fails the deployment before any request is issued.
"""

import codecs
import logging
import threading
import time
import uuid
from enum import StrEnum
from pathlib import Path

from azure.core.exceptions import AzureError

from azdeploy.errors import DeploymentError
from azdeploy.payloads import DeploymentDescriptor, deployment_body
from azdeploy.transport import ServiceManagementClient

logger = logging.getLogger(__name__)

# 100 ns ticks between 0001-01-01 and the Unix epoch
_EPOCH_TICKS = 621355968000000000

# Checked in order; the UTF-32 LE mark starts with the UTF-16 LE mark
_BOM_ENCODINGS = (
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


class DeploymentSlot(StrEnum):
    """Parallel environments of a hosted service."""

    PRODUCTION = "production"
    STAGING = "staging"

    @property
    def label_tag(self) -> str:
        return "Prod" if self is DeploymentSlot.PRODUCTION else "Staging"


class _TickClock:
    """Current time in 100 ns ticks, strictly increasing within the process."""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            ticks = _EPOCH_TICKS + time.time_ns() // 100
            self._last = max(ticks, self._last + 1)
            return self._last


_clock = _TickClock()


def make_deployment_label(service_name: str, slot: DeploymentSlot) -> str:
    """Label combining service name, slot and a monotonically increasing timestamp."""
    return f"{service_name} {slot.label_tag} {_clock.next()}"


def read_configuration(config_path: str | Path) -> str:
    """Read a service configuration document as text.

    The encoding follows the byte order mark (UTF-32, UTF-16 or UTF-8); files
    without one are read as UTF-8. The mark itself is not part of the text.

    Raises:
        OSError: File missing, unreadable or not valid text in its encoding
    """
    path = Path(config_path)
    data = path.read_bytes()
    encoding = next(
        (name for bom, name in _BOM_ENCODINGS if data.startswith(bom)), "utf-8-sig"
    )
    try:
        return data.decode(encoding)
    except UnicodeDecodeError as e:
        raise OSError(f"Configuration file {path} is not valid {encoding} text: {e}") from e


class DeploymentOrchestrator:
    """Publish a package and configuration into a hosted service slot."""

    def __init__(self, client: ServiceManagementClient):
        self.client = client

    def deploy(
        self,
        service_name: str,
        package_uri: str,
        config_path: str | Path,
        slot: DeploymentSlot | str = DeploymentSlot.PRODUCTION,
        start_deployment: bool = True,
    ) -> DeploymentDescriptor:
        """Create a deployment and wait for the provider to accept it.

        Args:
            service_name: Existing hosted service
            package_uri: Package location the provider dereferences itself
            config_path: Local service configuration document
            slot: Target slot (production by default)
            start_deployment: Start role instances once deployed

        Returns:
            DeploymentDescriptor that was submitted

        Raises:
            OSError: Configuration file unreadable (no request issued)
            DeploymentError: Hosted service missing, package unreachable or
                configuration rejected by the provider
        """
        slot = DeploymentSlot(slot)
        configuration = read_configuration(config_path)

        descriptor = DeploymentDescriptor(
            service_name=service_name,
            package_uri=str(package_uri),
            label=make_deployment_label(service_name, slot),
            name=str(uuid.uuid4()),
            configuration=configuration,
            slot=slot.value,
            start_deployment=start_deployment,
        )
        logger.info(
            f"Deploying {descriptor.package_uri} to {service_name} ({slot.value}) "
            f"as {descriptor.name}"
        )

        try:
            self.client.request(
                "POST",
                f"/services/hostedservices/{service_name}/deploymentslots/{slot.value}",
                body=deployment_body(descriptor),
            )
        except AzureError as e:
            raise DeploymentError.from_azure_error(e) from e

        logger.info(f"Deployment {descriptor.name} accepted for {service_name}")
        return descriptor


__all__ = [
    "DeploymentOrchestrator",
    "DeploymentSlot",
    "make_deployment_label",
    "read_configuration",
]
