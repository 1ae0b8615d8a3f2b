"""azdeploy - Azure cloud service provisioning with a management certificate

Philosophy:
- Ruthless simplicity: one call per provisioning step, no hidden retries
- Brick architecture (self-contained modules)
- Keys and certificates never reach a log line
- Fail fast, surfacing the provider's own status code and message

azdeploy creates storage accounts, hosted (cloud) services, package
deployments and autoscale policies against the service management API.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
