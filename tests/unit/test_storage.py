"""Unit tests for storage account provisioning.

Tests cover:
- Create request shape
- Provider errors surfaced as ProvisioningError with the original status code
- Connection strings always built from the secondary key
- Missing accounts surfaced as NotFoundError
"""

import re

import pytest
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

from azdeploy.errors import NotFoundError, ProvisioningError
from azdeploy.storage import StorageKeys, StorageProvisioner
from azdeploy.transport import ManagementResponse

PRIMARY = "UFJJTUFSWS1LRVktVkFMVUU="
SECONDARY = "U0VDT05EQVJZLUtFWS1WQUxVRQ=="


def keys_response(primary: str = PRIMARY, secondary: str = SECONDARY) -> ManagementResponse:
    body = (
        '<StorageService xmlns="http://schemas.microsoft.com/windowsazure">'
        f"<StorageServiceKeys><Primary>{primary}</Primary>"
        f"<Secondary>{secondary}</Secondary></StorageServiceKeys></StorageService>"
    )
    return ManagementResponse(status_code=200, body=body)


@pytest.fixture
def provisioner(fake_client):
    return StorageProvisioner(fake_client)


class TestCreateStorageAccount:
    def test_posts_create_request(self, provisioner, fake_client):
        provisioner.create_storage_account("West Europe", "myappstore", "Standard_GRS")

        call = fake_client.calls[0]
        assert call.method == "POST"
        assert call.path == "/services/storageservices"
        assert b"<ServiceName>myappstore</ServiceName>" in call.body
        assert b"<AccountType>Standard_GRS</AccountType>" in call.body

    def test_duplicate_name_keeps_provider_status(self, provisioner, fake_client, http_error):
        fake_client.queue(
            http_error(409, "ConflictError", "The storage account named 'myappstore' is already taken.", ResourceExistsError)
        )

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_storage_account("West Europe", "myappstore", "Standard_GRS")

        assert exc_info.value.status_code == 409
        assert exc_info.value.error_code == "ConflictError"
        assert exc_info.value.message == "The storage account named 'myappstore' is already taken."
        assert isinstance(exc_info.value.__cause__, ResourceExistsError)

    @pytest.mark.parametrize(
        "message",
        ["The location constraint is not valid", "The account type Bogus_XYZ is invalid"],
    )
    def test_invalid_parameters(self, provisioner, fake_client, http_error, message):
        fake_client.queue(http_error(400, "BadRequest", message))

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_storage_account("Nowhere", "myappstore", "Bogus_XYZ")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == message


class TestConnectionString:
    def test_uses_secondary_key(self, provisioner, fake_client):
        fake_client.queue(keys_response())

        connection_string = provisioner.get_connection_string("myappstore")

        assert connection_string == (
            f"DefaultEndpointsProtocol=https;AccountName=myappstore;AccountKey={SECONDARY};"
        )
        assert PRIMARY not in connection_string
        assert fake_client.calls[0].path == "/services/storageservices/myappstore/keys"

    @pytest.mark.parametrize(
        "name,primary,secondary",
        [
            ("a1", "cA==", "cw=="),
            ("storagewithlongname24ch", "K1+/=", "S2+/=="),
            ("z9", "same", "other"),
        ],
    )
    def test_format_is_fixed(self, provisioner, fake_client, name, primary, secondary):
        fake_client.queue(keys_response(primary, secondary))

        connection_string = provisioner.get_connection_string(name)

        match = re.fullmatch(
            r"DefaultEndpointsProtocol=https;AccountName=(.+);AccountKey=(.+);", connection_string
        )
        assert match is not None
        assert match.group(1) == name
        assert match.group(2) == secondary

    def test_create_then_connection_string(self, provisioner, fake_client):
        fake_client.queue(ManagementResponse(status_code=202, request_id="r"), keys_response())

        provisioner.create_storage_account("West Europe", "myappstore", "Standard_LRS")
        connection_string = provisioner.get_connection_string("myappstore")

        assert connection_string.endswith(f"AccountKey={SECONDARY};")

    def test_missing_account(self, provisioner, fake_client, http_error):
        fake_client.queue(
            http_error(404, "ResourceNotFound", "The storage account 'gone' was not found.", ResourceNotFoundError)
        )

        with pytest.raises(NotFoundError) as exc_info:
            provisioner.get_connection_string("gone")

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "The storage account 'gone' was not found."

    def test_other_failure_is_provisioning_error(self, provisioner, fake_client, http_error):
        fake_client.queue(http_error(500, "InternalError", "Try again later."))

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.get_storage_keys("myappstore")

        assert exc_info.value.status_code == 500

    @pytest.mark.parametrize("body", ["", "<html>Gateway Timeout"])
    def test_unparseable_key_body(self, provisioner, fake_client, body):
        fake_client.queue(ManagementResponse(status_code=200, body=body))

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.get_connection_string("myappstore")

        assert exc_info.value.status_code == 200
        assert "not an XML document" in exc_info.value.message

    def test_unexpected_key_document(self, provisioner, fake_client):
        fake_client.queue(ManagementResponse(status_code=200, body="<StorageService/>"))

        with pytest.raises(ProvisioningError, match="Unexpected key response"):
            provisioner.get_storage_keys("myappstore")


class TestStorageKeys:
    def test_keys_redacted_from_repr(self):
        keys = StorageKeys(primary=PRIMARY, secondary=SECONDARY)

        assert PRIMARY not in repr(keys)
        assert SECONDARY not in str(keys)
