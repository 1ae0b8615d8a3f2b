"""Request and response bodies for the service management REST surface.

Storage accounts, hosted services and deployments are created with XML
documents in the ``http://schemas.microsoft.com/windowsazure`` namespace.
Labels and the deployment configuration travel base64 encoded. Errors and
asynchronous operation status come back as XML as well.
"""

import base64
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import StrEnum

WA_NAMESPACE = "http://schemas.microsoft.com/windowsazure"
_NS = {"wa": WA_NAMESPACE}


class StorageAccountType(StrEnum):
    """Replication/performance tiers accepted by the provider."""

    STANDARD_LRS = "Standard_LRS"
    STANDARD_ZRS = "Standard_ZRS"
    STANDARD_GRS = "Standard_GRS"
    STANDARD_RAGRS = "Standard_RAGRS"
    PREMIUM_LRS = "Premium_LRS"


@dataclass
class StorageAccountDescriptor:
    """Storage account creation parameters."""

    region: str
    name: str
    account_type: str = StorageAccountType.STANDARD_GRS


@dataclass
class HostedServiceDescriptor:
    """Hosted (cloud) service creation parameters."""

    region: str
    name: str
    label: str | None = None
    description: str | None = None


@dataclass
class DeploymentDescriptor:
    """Package deployment parameters.

    The configuration document is carried verbatim; it is neither parsed nor
    validated here.
    """

    service_name: str
    package_uri: str
    label: str
    name: str
    configuration: str
    slot: str = "production"
    start_deployment: bool = True


@dataclass
class OperationStatus:
    """Status of an asynchronous provider operation."""

    request_id: str
    status: str
    http_status_code: int | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def in_progress(self) -> bool:
        return self.status == "InProgress"

    @property
    def succeeded(self) -> bool:
        return self.status == "Succeeded"


def encode_label(label: str) -> str:
    """Base64-encode a label as the provider expects."""
    return base64.b64encode(label.encode("utf-8")).decode("ascii")


def _document(root_tag: str, fields: list[tuple[str, str | None]]) -> bytes:
    root = ET.Element(root_tag, xmlns=WA_NAMESPACE)
    for tag, value in fields:
        if value is None:
            continue
        ET.SubElement(root, tag).text = value
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def storage_account_body(descriptor: StorageAccountDescriptor) -> bytes:
    return _document(
        "CreateStorageServiceInput",
        [
            ("ServiceName", descriptor.name),
            ("Label", encode_label(descriptor.name)),
            ("Location", descriptor.region),
            ("AccountType", str(descriptor.account_type)),
        ],
    )


def hosted_service_body(descriptor: HostedServiceDescriptor) -> bytes:
    return _document(
        "CreateHostedService",
        [
            ("ServiceName", descriptor.name),
            ("Label", encode_label(descriptor.label or descriptor.name)),
            ("Description", descriptor.description),
            ("Location", descriptor.region),
        ],
    )


def deployment_body(descriptor: DeploymentDescriptor) -> bytes:
    return _document(
        "CreateDeployment",
        [
            ("Name", descriptor.name),
            ("PackageUrl", descriptor.package_uri),
            ("Label", encode_label(descriptor.label)),
            ("Configuration", encode_label(descriptor.configuration)),
            ("StartDeployment", "true" if descriptor.start_deployment else "false"),
            ("TreatWarningsAsError", "false"),
        ],
    )


def _find_text(element: ET.Element, path: str) -> str | None:
    # Provider documents are namespaced, hand-written fixtures sometimes are not
    found = element.find(f"wa:{path}", _NS)
    if found is None:
        found = element.find(path)
    return found.text if found is not None else None


def _parse_document(body: str) -> ET.Element:
    try:
        return ET.fromstring(body or "")
    except ET.ParseError as e:
        raise ValueError(f"Response is not an XML document: {e}") from e


def parse_storage_keys(body: str) -> tuple[str, str]:
    """Extract (primary, secondary) keys from a StorageService document.

    Raises:
        ValueError: If the body is not XML or does not carry both keys
    """
    root = _parse_document(body)
    keys = root.find("wa:StorageServiceKeys", _NS)
    if keys is None:
        keys = root.find("StorageServiceKeys")
    if keys is None:
        raise ValueError("Response carries no StorageServiceKeys element")

    primary = _find_text(keys, "Primary")
    secondary = _find_text(keys, "Secondary")
    if not primary or not secondary:
        raise ValueError("Response is missing the primary or secondary key")
    return primary, secondary


def parse_operation_status(body: str) -> OperationStatus:
    """Parse an Operation status document.

    Raises:
        ValueError: If the body is not XML
    """
    root = _parse_document(body)
    http_status = _find_text(root, "HttpStatusCode")
    error_code = None
    error_message = None

    error = root.find("wa:Error", _NS)
    if error is None:
        error = root.find("Error")
    if error is not None:
        error_code = _find_text(error, "Code")
        error_message = _find_text(error, "Message")

    return OperationStatus(
        request_id=_find_text(root, "ID") or "",
        status=_find_text(root, "Status") or "",
        http_status_code=int(http_status) if http_status and http_status.isdigit() else None,
        error_code=error_code,
        error_message=error_message,
    )


def parse_error(body: str) -> tuple[str | None, str | None]:
    """Extract (code, message) from a provider error body.

    Handles both the XML ``<Error>`` document and the JSON form returned by
    the monitoring endpoints. Unparseable bodies return (None, body).
    """
    text = (body or "").strip()
    if not text:
        return None, None

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None, text
        return data.get("Code") or data.get("code"), data.get("Message") or data.get("message")

    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return None, text
    return _find_text(root, "Code"), _find_text(root, "Message")


__all__ = [
    "WA_NAMESPACE",
    "DeploymentDescriptor",
    "HostedServiceDescriptor",
    "OperationStatus",
    "StorageAccountDescriptor",
    "StorageAccountType",
    "deployment_body",
    "encode_label",
    "hosted_service_body",
    "parse_error",
    "parse_operation_status",
    "parse_storage_keys",
    "storage_account_body",
]
