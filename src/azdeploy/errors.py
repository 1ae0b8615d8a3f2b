"""Exception taxonomy for azdeploy.

Every error raised from a provider call carries the provider's HTTP status
code and message unaltered, so operator tooling can decide on retries and
cleanup. Nothing in azdeploy retries or rolls back.

Local configuration files that cannot be read surface as the built-in
``OSError`` (``IOError``) and are never translated.

Public API:
    ManagementError: Base exception
    CredentialError: Malformed or undecodable management credential
    ProvisioningError: Resource creation rejected
    NotFoundError: Referenced resource does not exist
    DeploymentError: Package deployment rejected
    AutoscaleVerificationError: Persisted autoscale policy differs from submitted
"""

from azure.core.exceptions import AzureError


class ManagementError(Exception):
    """Base exception for management operations.

    Attributes:
        message: Provider (or local) error message, unaltered
        status_code: Provider HTTP status code, None for local failures
        error_code: Provider error code (e.g. ``ConflictError``), if any
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        code = f" {self.error_code}" if self.error_code else ""
        return f"({self.status_code}{code}) {self.message}"

    @classmethod
    def from_azure_error(cls, error: AzureError) -> "ManagementError":
        """Build an error of this class from an azure-core error.

        The provider's status code, error code and message are carried over
        verbatim. Transport failures carry no status code.
        """
        error_code = getattr(error, "error_code", None)
        if error_code is None and getattr(error, "error", None) is not None:
            error_code = getattr(error.error, "code", None)
        return cls(
            message=error.message,
            status_code=getattr(error, "status_code", None),
            error_code=error_code,
        )


class CredentialError(ManagementError):
    """Subscription id or certificate blob cannot be used."""

    pass


class ProvisioningError(ManagementError):
    """Resource creation rejected (name collision, invalid parameters)."""

    pass


class NotFoundError(ManagementError):
    """Referenced resource does not exist."""

    pass


class DeploymentError(ManagementError):
    """Deployment rejected by the provider."""

    pass


class AutoscaleVerificationError(ManagementError):
    """Autoscale policy read back differs from what was submitted."""

    def __init__(self, message: str, differences: list[str]):
        super().__init__(message)
        self.differences = differences


__all__ = [
    "AutoscaleVerificationError",
    "CredentialError",
    "DeploymentError",
    "ManagementError",
    "NotFoundError",
    "ProvisioningError",
]
