"""Unit tests for hosted service provisioning."""

import pytest
from azure.core.exceptions import ClientAuthenticationError, ResourceExistsError

from azdeploy.compute import HostedServiceProvisioner
from azdeploy.errors import ProvisioningError


@pytest.fixture
def provisioner(fake_client):
    return HostedServiceProvisioner(fake_client)


class TestCreateHostedService:
    def test_posts_create_request(self, provisioner, fake_client):
        provisioner.create_hosted_service("East US", "myapp")

        call = fake_client.calls[0]
        assert call.method == "POST"
        assert call.path == "/services/hostedservices"
        assert b"<ServiceName>myapp</ServiceName>" in call.body
        assert b"<Location>East US</Location>" in call.body

    def test_description_included(self, provisioner, fake_client):
        provisioner.create_hosted_service("East US", "myapp", description="Front end")

        assert b"<Description>Front end</Description>" in fake_client.calls[0].body

    def test_name_collision(self, provisioner, fake_client, http_error):
        fake_client.queue(
            http_error(409, "ConflictError", "The specified DNS name is already taken.", ResourceExistsError)
        )

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_hosted_service("East US", "myapp")

        assert exc_info.value.status_code == 409
        assert exc_info.value.message == "The specified DNS name is already taken."

    def test_authentication_failure_keeps_status(self, provisioner, fake_client, http_error):
        fake_client.queue(
            http_error(403, "ForbiddenError", "The server failed to authenticate the request.", ClientAuthenticationError)
        )

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_hosted_service("East US", "myapp")

        assert exc_info.value.status_code == 403
        assert "(403 ForbiddenError)" in str(exc_info.value)
