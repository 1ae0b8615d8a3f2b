"""Certificate-authenticated client for the service management REST surface.

Every request is authenticated with the management certificate held by a
CredentialContext (mutual TLS) and rooted at ``/{subscription_id}``. The
client is built on azure-core's PipelineClient with the requests transport.

Behavior:
- No retry policy: a failed call fails once, loudly
- ``202 Accepted`` responses are followed by polling the operation status
  until the provider reports Succeeded or Failed
- Provider errors raise azure-core exceptions carrying the provider's status
  code, error code and message unaltered
- ``request_timeout`` is the only network timeout; ``operation_timeout``
  bounds the wait on asynchronous operations
"""

import logging
import time
from dataclasses import dataclass, field

from azure.core import PipelineClient
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceResponseTimeoutError,
)
from azure.core.pipeline.policies import (
    HeadersPolicy,
    NetworkTraceLoggingPolicy,
    UserAgentPolicy,
)
from azure.core.rest import HttpRequest

from azdeploy import __version__
from azdeploy.credentials import CredentialContext
from azdeploy.log_sanitizer import LogSanitizer
from azdeploy.payloads import OperationStatus, parse_error, parse_operation_status

logger = logging.getLogger(__name__)

DEFAULT_MANAGEMENT_ENDPOINT = "https://management.core.windows.net"
DEFAULT_API_VERSION = "2014-06-01"
AUTOSCALE_API_VERSION = "2013-10-01"

ERROR_MAP: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    403: ClientAuthenticationError,
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}


@dataclass
class ClientSettings:
    """Transport settings.

    Attributes:
        management_endpoint: Base URL of the management surface
        api_version: ``x-ms-version`` for compute and storage calls
        autoscale_api_version: ``x-ms-version`` for autoscale calls
        request_timeout: Connect/read timeout per request (seconds)
        poll_interval: Delay between operation status polls (seconds)
        operation_timeout: Maximum wait on one asynchronous operation (seconds)
    """

    management_endpoint: str = DEFAULT_MANAGEMENT_ENDPOINT
    api_version: str = DEFAULT_API_VERSION
    autoscale_api_version: str = AUTOSCALE_API_VERSION
    request_timeout: int = 60
    poll_interval: float = 5.0
    operation_timeout: int = 900


@dataclass
class ManagementResponse:
    """Structured provider response."""

    status_code: int
    request_id: str | None = None
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)


class ServiceManagementClient:
    """Issue structured management requests for one subscription.

    At most one request is outstanding per call; there is no fan-out.

    Example:
        >>> with ServiceManagementClient(credential) as client:
        ...     client.request("GET", "/services/storageservices/acct/keys")
    """

    def __init__(
        self,
        credential: CredentialContext,
        settings: ClientSettings | None = None,
        **kwargs,
    ):
        """Initialize client.

        Args:
            credential: Credential context supplying subscription and certificate
            settings: Transport settings (defaults if None)
            **kwargs: Passed to azure-core PipelineClient (e.g. ``transport``)
        """
        self.credential = credential
        self.settings = settings or ClientSettings()

        if "transport" not in kwargs:
            kwargs["connection_cert"] = credential.client_cert_files()

        self._base_url = self.settings.management_endpoint.rstrip("/")
        self._client = PipelineClient(
            base_url=self._base_url,
            policies=[
                HeadersPolicy(base_headers={"x-ms-version": self.settings.api_version}),
                UserAgentPolicy(base_user_agent=f"azdeploy/{__version__}"),
                NetworkTraceLoggingPolicy(),
            ],
            connection_timeout=self.settings.request_timeout,
            read_timeout=self.settings.request_timeout,
            **kwargs,
        )

    @property
    def subscription_id(self) -> str:
        return self.credential.subscription_id

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{self.subscription_id}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        body: bytes | str | None = None,
        content_type: str = "application/xml",
        api_version: str | None = None,
        params: dict[str, str] | None = None,
        wait: bool = True,
    ) -> ManagementResponse:
        """Send one request and, for ``202 Accepted``, wait for the operation.

        Args:
            method: HTTP method
            path: Path below ``/{subscription_id}``
            body: Request body
            content_type: Body content type
            api_version: Override ``x-ms-version`` for this call
            params: Query parameters
            wait: Poll asynchronous operations to completion

        Returns:
            ManagementResponse of the original request

        Raises:
            HttpResponseError: Provider rejected the request (or the operation
                failed); subclasses per ERROR_MAP
            ServiceResponseTimeoutError: Operation outlived operation_timeout
        """
        headers = {"Accept": content_type}
        if body is not None:
            headers["Content-Type"] = content_type
        # HeadersPolicy applies per-call headers after its base headers
        options = {"headers": {"x-ms-version": api_version}} if api_version else {}

        request = HttpRequest(
            method, self._url(path), headers=headers, params=params, content=body
        )
        logger.debug(f"{method} {path}")

        response = self._client.send_request(request, **options)
        text = response.text() if response.content else ""
        request_id = response.headers.get("x-ms-request-id")

        if response.status_code >= 400:
            self._raise_for_response(response, text)

        result = ManagementResponse(
            status_code=response.status_code,
            request_id=request_id,
            body=text,
            headers=dict(response.headers),
        )

        if response.status_code == 202 and wait:
            if request_id:
                self.wait_for_operation(request_id)
            else:
                logger.warning(
                    f"{method} {path} was accepted without a request id; "
                    "not waiting for the operation to finish"
                )

        return result

    @staticmethod
    def _raise_for_response(response, text: str) -> None:
        code, message = parse_error(text)
        message = message or f"{response.status_code} {response.reason or ''}".strip()
        error_type = ERROR_MAP.get(response.status_code, HttpResponseError)
        error = error_type(message=message, response=response)
        # azure-core may substitute an OData message; keep the provider's
        error.message = message
        error.error_code = code
        logger.debug(
            f"Provider rejected request: {response.status_code} {code} "
            f"{LogSanitizer.sanitize(message)}"
        )
        raise error

    def get_operation_status(self, request_id: str) -> OperationStatus:
        """Fetch the status of an asynchronous operation.

        Raises:
            HttpResponseError: Provider rejected the poll or sent an unreadable body
        """
        response = self.request("GET", f"/operations/{request_id}", wait=False)
        try:
            return parse_operation_status(response.body)
        except ValueError as e:
            error = HttpResponseError(
                message=f"Unreadable status for operation {request_id}: {e}"
            )
            error.status_code = response.status_code
            error.error_code = None
            raise error from e

    def wait_for_operation(self, request_id: str) -> OperationStatus:
        """Poll an asynchronous operation until it leaves InProgress.

        Raises:
            HttpResponseError: Operation finished as Failed
            ServiceResponseTimeoutError: Operation outlived operation_timeout
        """
        deadline = time.monotonic() + self.settings.operation_timeout
        while True:
            status = self.get_operation_status(request_id)
            if not status.in_progress:
                break
            if time.monotonic() >= deadline:
                raise ServiceResponseTimeoutError(
                    f"Operation {request_id} still in progress after "
                    f"{self.settings.operation_timeout}s"
                )
            logger.debug(f"Operation {request_id} in progress")
            time.sleep(self.settings.poll_interval)

        if not status.succeeded:
            error = HttpResponseError(
                message=status.error_message or f"Operation {request_id} {status.status}"
            )
            error.status_code = status.http_status_code
            error.error_code = status.error_code
            raise error

        logger.debug(f"Operation {request_id} succeeded")
        return status

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ServiceManagementClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "AUTOSCALE_API_VERSION",
    "DEFAULT_API_VERSION",
    "DEFAULT_MANAGEMENT_ENDPOINT",
    "ClientSettings",
    "ManagementResponse",
    "ServiceManagementClient",
]
