"""Configuration management module.

Persistent configuration is stored as TOML at ~/.azdeploy/config.toml:
subscription, certificate location, transport settings and autoscale
policy overrides.

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation (no traversal outside allowed directories)
- The certificate blob itself is never written to the config file; it is
  read from AZDEPLOY_CERTIFICATE or from the file at certificate_path
"""

import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Python 3.11+ ships the same parser as tomllib
    try:
        import tomllib as tomli  # type: ignore[import]
    except ImportError as e:
        raise ImportError("toml library not available. Install with: pip install tomli") from e

try:
    import tomlkit
except ImportError as e:
    raise ImportError("tomlkit library not available. Install with: pip install tomlkit") from e

from azdeploy.autoscale import AutoscalePolicyConfig
from azdeploy.transport import (
    AUTOSCALE_API_VERSION,
    DEFAULT_API_VERSION,
    DEFAULT_MANAGEMENT_ENDPOINT,
    ClientSettings,
)

logger = logging.getLogger(__name__)

ENV_SUBSCRIPTION_ID = "AZDEPLOY_SUBSCRIPTION_ID"
ENV_CERTIFICATE = "AZDEPLOY_CERTIFICATE"
ENV_CERTIFICATE_PATH = "AZDEPLOY_CERTIFICATE_PATH"


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class DeployerConfig:
    """azdeploy configuration data."""

    subscription_id: str | None = None
    certificate_path: str | None = None  # file holding the base64 certificate blob
    default_region: str | None = None
    management_endpoint: str = DEFAULT_MANAGEMENT_ENDPOINT
    api_version: str = DEFAULT_API_VERSION
    autoscale_api_version: str = AUTOSCALE_API_VERSION
    request_timeout: int = 60
    poll_interval: float = 5.0
    operation_timeout: int = 900
    autoscale: dict[str, Any] | None = None  # AutoscalePolicyConfig overrides

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeployerConfig":
        """Create from dictionary."""
        return cls(
            subscription_id=data.get("subscription_id"),
            certificate_path=data.get("certificate_path"),
            default_region=data.get("default_region"),
            management_endpoint=data.get("management_endpoint", DEFAULT_MANAGEMENT_ENDPOINT),
            api_version=data.get("api_version", DEFAULT_API_VERSION),
            autoscale_api_version=data.get("autoscale_api_version", AUTOSCALE_API_VERSION),
            request_timeout=int(data.get("request_timeout", 60)),
            poll_interval=float(data.get("poll_interval", 5.0)),
            operation_timeout=int(data.get("operation_timeout", 900)),
            autoscale=dict(data["autoscale"]) if data.get("autoscale") else None,
        )

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            management_endpoint=self.management_endpoint,
            api_version=self.api_version,
            autoscale_api_version=self.autoscale_api_version,
            request_timeout=self.request_timeout,
            poll_interval=self.poll_interval,
            operation_timeout=self.operation_timeout,
        )

    def autoscale_policy(self) -> AutoscalePolicyConfig:
        """Autoscale policy with this config's overrides applied.

        Raises:
            ConfigError: If the overrides produce an inconsistent policy
        """
        try:
            return AutoscalePolicyConfig.from_dict(self.autoscale or {})
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid [autoscale] settings: {e}") from e


class ConfigManager:
    """Manage azdeploy configuration file.

    Configuration is stored at ~/.azdeploy/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".azdeploy"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Validate configuration file path for security.

        Raises:
            ConfigError: If path is outside allowed directories
        """
        resolved_path = path.resolve()

        allowed_dirs = [
            cls.DEFAULT_CONFIG_DIR.resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),
        ]

        for allowed_dir in allowed_dirs:
            try:
                resolved_path.relative_to(allowed_dir)
                return resolved_path
            except ValueError:
                continue

        raise ConfigError(
            f"Config path outside allowed directories: {resolved_path}\n"
            f"Allowed directories:\n"
            f"  - {cls.DEFAULT_CONFIG_DIR}\n"
            f"  - {Path.cwd()}\n"
            "This restriction prevents path traversal attacks."
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Raises:
            ConfigError: If path is invalid or outside allowed directories
        """
        if custom_path:
            path = cls._validate_config_path(Path(custom_path).expanduser())
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure config directory exists with secure permissions.

        Raises:
            ConfigError: If directory creation fails
        """
        try:
            cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)
            logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
            return cls.DEFAULT_CONFIG_DIR

        except OSError as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> DeployerConfig:
        """Load configuration from file, defaults when there is none.

        Raises:
            ConfigError: If loading fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return DeployerConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomli.load(f)  # type: ignore[attr-defined]

            logger.debug(f"Loaded config from: {config_path}")
            return DeployerConfig.from_dict(data)  # type: ignore[arg-type]

        except Exception as e:
            raise ConfigError(f"Failed to load config: {e}") from e

    @classmethod
    def save_config(cls, config: DeployerConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file atomically, preserving comments.

        Returns:
            Path the configuration was written to

        Raises:
            ConfigError: If saving fails or path is outside allowed directories
        """
        temp_path: Path | None = None
        try:
            if custom_path:
                config_path = cls._validate_config_path(Path(custom_path).expanduser())
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                cls.ensure_config_dir()
                config_path = cls.DEFAULT_CONFIG_FILE

            temp_path = config_path.with_suffix(".tmp")

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()
            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except Exception as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> DeployerConfig:
        """Update configuration values.

        Raises:
            ConfigError: If update fails
        """
        config = cls.load_config(custom_path)

        for key, value in updates.items():
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                logger.warning(f"Unknown config key: {key}")

        cls.save_config(config, custom_path)
        return config

    @classmethod
    def get_region(cls, cli_value: str | None = None, custom_path: str | None = None) -> str:
        """Get region with CLI override.

        Raises:
            ConfigError: If neither the CLI nor the config provide a region
        """
        if cli_value:
            return cli_value

        region = cls.load_config(custom_path).default_region
        if not region:
            raise ConfigError("No region given and no default_region configured")
        return region

    @classmethod
    def resolve_credentials(cls, config: DeployerConfig) -> tuple[str, str]:
        """Resolve (subscription id, base64 certificate blob).

        Environment variables take precedence over the config file.

        Raises:
            ConfigError: If either value is missing or the certificate file
                cannot be read
        """
        subscription_id = os.environ.get(ENV_SUBSCRIPTION_ID) or config.subscription_id
        if not subscription_id:
            raise ConfigError(
                f"No subscription configured. Set {ENV_SUBSCRIPTION_ID} or "
                "subscription_id in the config file."
            )

        blob = os.environ.get(ENV_CERTIFICATE)
        if blob:
            return subscription_id, blob

        cert_path = os.environ.get(ENV_CERTIFICATE_PATH) or config.certificate_path
        if not cert_path:
            raise ConfigError(
                f"No management certificate configured. Set {ENV_CERTIFICATE}, "
                f"{ENV_CERTIFICATE_PATH} or certificate_path in the config file."
            )

        path = Path(cert_path).expanduser()
        mode = path.stat().st_mode & 0o777 if path.exists() else 0
        if mode & 0o077:
            logger.warning(
                f"Certificate file {path} has insecure permissions: {oct(mode)}. "
                "Use 0600 or 0400."
            )
        try:
            return subscription_id, path.read_text().strip()
        except OSError as e:
            raise ConfigError(f"Failed to read certificate file {path}: {e}") from e


__all__ = [
    "ENV_CERTIFICATE",
    "ENV_CERTIFICATE_PATH",
    "ENV_SUBSCRIPTION_ID",
    "ConfigError",
    "ConfigManager",
    "DeployerConfig",
]
