"""Management certificate credential context.

A CredentialContext holds the subscription id and the decoded X.509 client
certificate that authenticates every service management call. It is built
once, read-only afterwards, and released exactly once.

Accepted certificate blobs (base64 transport encoding):
- PKCS#12 / PFX, as found in publish settings files (carries the private key)
- DER encoded X.509 certificate
- PEM encoded X.509 certificate

Security:
- Expiry is reported (warning within 30 days), never enforced; the provider
  is the authority on whether the certificate is accepted
- Key material is only written to disk inside a private 0700 directory with
  0600 files, and removed on close()
- The context must not be closed while operations are still in flight
"""

import base64
import binascii
import logging
import os
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from azdeploy.errors import CredentialError

logger = logging.getLogger(__name__)

EXPIRATION_WARNING_DAYS = 30


class CredentialContext:
    """Subscription identity plus decoded client certificate.

    Example:
        >>> with CredentialContext(subscription_id, blob) as credential:
        ...     cert_file, key_file = credential.client_cert_files()
    """

    def __init__(
        self,
        subscription_id: str,
        base64_certificate: str,
        certificate_password: str | None = None,
    ):
        """Decode and parse the certificate.

        Args:
            subscription_id: Subscription identifier (opaque)
            base64_certificate: Certificate blob in base64 transport encoding
            certificate_password: Password for protected PKCS#12 blobs

        Raises:
            CredentialError: If the subscription id is empty, the blob is not
                valid base64, or the decoded bytes are not a certificate
        """
        if not subscription_id or not subscription_id.strip():
            raise CredentialError("Subscription ID cannot be empty")

        self._subscription_id = subscription_id.strip()
        raw = self._decode_blob(base64_certificate)
        self._certificate, self._private_key = self._load_certificate(raw, certificate_password)
        self._cert_dir: Path | None = None
        self._closed = False

        self._report_expiration()

    @staticmethod
    def _decode_blob(blob: str) -> bytes:
        if not blob:
            raise CredentialError("Certificate blob cannot be empty")
        cleaned = "".join(blob.split())
        try:
            return base64.b64decode(cleaned, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CredentialError(f"Certificate is not valid base64: {e}") from e

    @staticmethod
    def _load_certificate(raw: bytes, password: str | None):
        secret = password.encode() if password else None

        try:
            key, cert, _ = pkcs12.load_key_and_certificates(raw, secret)
            if cert is not None:
                return cert, key
        except ValueError:
            pass

        try:
            return x509.load_der_x509_certificate(raw), None
        except ValueError:
            pass

        try:
            return x509.load_pem_x509_certificate(raw), None
        except ValueError as e:
            raise CredentialError(f"Certificate could not be parsed: {e}") from e

    def _report_expiration(self) -> None:
        days_until_expiry = (self.not_valid_after - datetime.now(UTC)).days
        if days_until_expiry < 0:
            logger.warning(
                f"Management certificate {self.thumbprint} has expired "
                f"({abs(days_until_expiry)} days ago); provider calls will be rejected"
            )
        elif days_until_expiry < EXPIRATION_WARNING_DAYS:
            logger.warning(
                f"Management certificate {self.thumbprint} expires in "
                f"{days_until_expiry} days. Renewal recommended."
            )

    def _ensure_open(self) -> None:
        if self._closed:
            raise CredentialError("Credential context has been closed")

    @property
    def subscription_id(self) -> str:
        return self._subscription_id

    @property
    def certificate(self) -> x509.Certificate:
        self._ensure_open()
        return self._certificate

    @property
    def thumbprint(self) -> str:
        """SHA-1 thumbprint, the provider's identifier for management certificates."""
        return self._certificate.fingerprint(hashes.SHA1()).hex().upper()  # noqa: S303

    @property
    def not_valid_after(self) -> datetime:
        return self._certificate.not_valid_after_utc

    @property
    def has_private_key(self) -> bool:
        return self._private_key is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def client_cert_files(self) -> tuple[str, str]:
        """Materialize certificate and private key as PEM files for TLS.

        Files are created once per context and removed by close().

        Returns:
            Tuple of (certificate path, private key path)

        Raises:
            CredentialError: If closed, or the blob carried no private key
        """
        self._ensure_open()
        if self._private_key is None:
            raise CredentialError(
                "Certificate has no private key; a PKCS#12 blob is required for client auth"
            )

        if self._cert_dir is None:
            self._cert_dir = Path(tempfile.mkdtemp(prefix="azdeploy-"))
            self._write_private(
                self._cert_dir / "client.crt",
                self._certificate.public_bytes(serialization.Encoding.PEM),
            )
            self._write_private(
                self._cert_dir / "client.key",
                self._private_key.private_bytes(
                    serialization.Encoding.PEM,
                    serialization.PrivateFormat.PKCS8,
                    serialization.NoEncryption(),
                ),
            )
            logger.debug("Client certificate material written for TLS transport")

        return str(self._cert_dir / "client.crt"), str(self._cert_dir / "client.key")

    @staticmethod
    def _write_private(path: Path, data: bytes) -> None:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)

    def close(self) -> None:
        """Release certificate material. Safe to call more than once."""
        if self._closed:
            return
        if self._cert_dir is not None:
            shutil.rmtree(self._cert_dir, ignore_errors=True)
            self._cert_dir = None
        self._private_key = None
        self._closed = True
        logger.debug("Credential context released")

    def __enter__(self) -> "CredentialContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"CredentialContext(subscription_id={self._subscription_id}, "
            f"thumbprint={self.thumbprint}, closed={self._closed})"
        )


__all__ = ["EXPIRATION_WARNING_DAYS", "CredentialContext"]
