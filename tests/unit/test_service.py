"""Unit tests for the management service facade."""

from pathlib import Path
from unittest.mock import MagicMock, Mock

import pytest

from azdeploy.autoscale import AutoscalePolicyConfig
from azdeploy.errors import CredentialError
from azdeploy.service import ManagementService, open_management_service
from azdeploy.transport import ClientSettings, ManagementResponse

SUBSCRIPTION_ID = "00000000-1111-2222-3333-444444444444"


@pytest.fixture
def service(pkcs12_blob):
    service = ManagementService(SUBSCRIPTION_ID, pkcs12_blob, transport=MagicMock())
    yield service
    service.close()


class TestConstruction:
    def test_capabilities_share_one_client(self, service):
        assert service.storage.client is service.client
        assert service.compute.client is service.client
        assert service.deployments.client is service.client
        assert service.autoscale.client is service.client
        assert service.client.subscription_id == SUBSCRIPTION_ID

    def test_settings_and_policy_passed_through(self, pkcs12_blob):
        settings = ClientSettings(operation_timeout=30)
        policy = AutoscalePolicyConfig(maximum_instances=3)

        with ManagementService(
            SUBSCRIPTION_ID,
            pkcs12_blob,
            settings=settings,
            autoscale_config=policy,
            transport=MagicMock(),
        ) as service:
            assert service.client.settings is settings
            assert service.autoscale.config is policy

    def test_bad_certificate(self):
        with pytest.raises(CredentialError):
            ManagementService(SUBSCRIPTION_ID, "%%%")

    def test_certificate_without_private_key(self, der_blob):
        # Certificate without a private key cannot be used for mutual TLS
        with pytest.raises(CredentialError, match="private key"):
            ManagementService(SUBSCRIPTION_ID, der_blob)


class TestDelegation:
    def test_storage(self, service):
        service.storage = Mock()
        service.storage.get_connection_string.return_value = "conn"

        service.create_storage_account("West Europe", "acct", "Standard_LRS")
        assert service.get_connection_string("acct") == "conn"

        service.storage.create_storage_account.assert_called_once_with(
            "West Europe", "acct", "Standard_LRS"
        )

    def test_hosted_service(self, service):
        service.compute = Mock()

        service.create_hosted_service("East US", "myapp", label="My App")

        service.compute.create_hosted_service.assert_called_once_with(
            "East US", "myapp", label="My App"
        )

    def test_deploy(self, service):
        service.deployments = Mock()

        service.deploy("myapp", "https://x/app.cspkg", "app.cscfg", slot="staging")

        service.deployments.deploy.assert_called_once_with(
            "myapp", "https://x/app.cspkg", "app.cscfg", slot="staging", start_deployment=True
        )

    def test_autoscale_defaults_to_production(self, service):
        service.autoscale = Mock()

        service.autoscale_cloud_service("myapp", "WebRole")

        service.autoscale.apply.assert_called_once_with("myapp", "WebRole")

    def test_requests_rooted_at_subscription(self, service):
        service.client.request = Mock(return_value=ManagementResponse(status_code=201))

        service.create_hosted_service("East US", "myapp")

        method, path = service.client.request.call_args.args[:2]
        assert (method, path) == ("POST", "/services/hostedservices")


class TestLifecycle:
    def test_close_releases_client_then_credential(self, pkcs12_blob):
        service = ManagementService(SUBSCRIPTION_ID, pkcs12_blob, transport=MagicMock())
        order = []
        service.client.close = Mock(side_effect=lambda: order.append("client"))
        credential_close = service.credential.close
        service.credential.close = Mock(
            side_effect=lambda: (order.append("credential"), credential_close())
        )

        service.close()
        service.close()

        assert order == ["client", "credential"]
        assert service.credential.closed

    def test_open_management_service_closes_on_error(self, pkcs12_blob):
        with pytest.raises(RuntimeError):
            with open_management_service(
                SUBSCRIPTION_ID, pkcs12_blob, transport=MagicMock()
            ) as service:
                raise RuntimeError("boom")

        assert service.credential.closed

    def test_certificate_files_removed_on_close(self, pkcs12_blob):
        with open_management_service(SUBSCRIPTION_ID, pkcs12_blob, transport=MagicMock()) as service:
            cert_file, key_file = service.credential.client_cert_files()
            assert Path(cert_file).exists()

        assert not Path(cert_file).exists()
        assert not Path(key_file).exists()
