"""
Shared test fixtures and configuration for azdeploy tests.

This module provides common fixtures used across all test types:
- Self-signed management certificates in every accepted encoding
- A fake management client recording requests and replaying responses
- Provider error and HTTP response factories
- An isolated config directory
"""

import base64
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from azure.core.exceptions import HttpResponseError
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from azdeploy.config_manager import ConfigManager
from azdeploy.transport import ClientSettings, ManagementResponse

SUBSCRIPTION_ID = "00000000-1111-2222-3333-444444444444"

# ============================================================================
# CERTIFICATE FIXTURES
# ============================================================================


def _self_signed(key, not_before: datetime, not_after: datetime) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "azdeploy-test")])
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def certificate(rsa_key):
    now = datetime.now(UTC)
    return _self_signed(rsa_key, now - timedelta(days=1), now + timedelta(days=365))


@pytest.fixture(scope="session")
def pkcs12_blob(rsa_key, certificate):
    """Base64 PKCS#12 blob with private key, as in publish settings files."""
    data = pkcs12.serialize_key_and_certificates(
        b"azdeploy-test", rsa_key, certificate, None, serialization.NoEncryption()
    )
    return base64.b64encode(data).decode("ascii")


@pytest.fixture(scope="session")
def der_blob(certificate):
    return base64.b64encode(certificate.public_bytes(serialization.Encoding.DER)).decode("ascii")


@pytest.fixture(scope="session")
def pem_blob(certificate):
    return base64.b64encode(certificate.public_bytes(serialization.Encoding.PEM)).decode("ascii")


@pytest.fixture(scope="session")
def expired_blob(rsa_key):
    now = datetime.now(UTC)
    cert = _self_signed(rsa_key, now - timedelta(days=30), now - timedelta(days=2))
    data = pkcs12.serialize_key_and_certificates(
        b"expired", rsa_key, cert, None, serialization.NoEncryption()
    )
    return base64.b64encode(data).decode("ascii")


@pytest.fixture(scope="session")
def expiring_blob(rsa_key):
    now = datetime.now(UTC)
    cert = _self_signed(rsa_key, now - timedelta(days=30), now + timedelta(days=10))
    return base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode("ascii")


# ============================================================================
# MANAGEMENT CLIENT FAKES
# ============================================================================


class FakeManagementClient:
    """Records requests and replays queued responses or errors, in order."""

    def __init__(self):
        self.settings = ClientSettings()
        self.subscription_id = SUBSCRIPTION_ID
        self.calls: list[SimpleNamespace] = []
        self.responses: list = []

    def queue(self, *items) -> None:
        self.responses.extend(items)

    def request(
        self,
        method,
        path,
        body=None,
        content_type="application/xml",
        api_version=None,
        params=None,
        wait=True,
    ):
        self.calls.append(
            SimpleNamespace(
                method=method,
                path=path,
                body=body,
                content_type=content_type,
                api_version=api_version,
                params=params,
            )
        )
        item = self.responses.pop(0) if self.responses else ManagementResponse(status_code=200)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        pass


@pytest.fixture
def fake_client():
    return FakeManagementClient()


@pytest.fixture
def http_error():
    """Factory for provider errors as raised by the transport."""

    def _make(status_code: int, error_code: str | None, message: str, error_type=HttpResponseError):
        error = error_type(message=message)
        error.status_code = status_code
        error.error_code = error_code
        return error

    return _make


@pytest.fixture
def http_response():
    """Factory for azure-core style HTTP responses."""

    def _make(status_code: int, body: str = "", headers: dict | None = None, reason: str = "OK"):
        response = Mock()
        response.status_code = status_code
        response.reason = reason
        response.content = body.encode("utf-8")
        response.text.return_value = body
        response.headers = headers or {}
        return response

    return _make


# ============================================================================
# DIRECTORY FIXTURES
# ============================================================================


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point ConfigManager at a temporary ~/.azdeploy and clear env overrides."""
    config_dir = tmp_path / ".azdeploy"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", config_dir)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", config_dir / "config.toml")
    for name in ("AZDEPLOY_SUBSCRIPTION_ID", "AZDEPLOY_CERTIFICATE", "AZDEPLOY_CERTIFICATE_PATH"):
        monkeypatch.delenv(name, raising=False)
    return config_dir
