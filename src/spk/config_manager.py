"""Configuration management module.

This module handles persistent configuration storage using TOML format.
The configuration holds the Azure DevOps organization/project, the access
token used for REST calls and private template repositories, and the
Azure Table Storage coordinates used for deployment introspection.

Values written as ``${env:NAME}`` are resolved from the environment when
the file is loaded, so tokens and keys can stay out of the file.

The loaded SpkConfig is passed explicitly to the code that needs it;
there is no module-level configuration singleton.

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
"""

import logging
import os
import re
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import tomli
import tomlkit

from spk.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

ENV_REFERENCE = re.compile(r"\$\{env:([\w-]+)\}")


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


def resolve_env_references(value: str | None) -> str | None:
    """Replace ``${env:NAME}`` references with environment values.

    Unset variables resolve to an empty string and are logged.
    """
    if not value:
        return value

    def _lookup(match: re.Match) -> str:
        name = match.group(1)
        env_value = os.environ.get(name)
        if env_value is None:
            logger.warning(f"Environment variable {name} referenced in config is not set")
            return ""
        return env_value

    return ENV_REFERENCE.sub(_lookup, value)


@dataclass
class AzureDevOpsConfig:
    """Azure DevOps organization settings."""

    org: str | None = None
    project: str | None = None
    access_token: str | None = None
    manifest_repository: str | None = None
    hld_repository: str | None = None
    infra_repository: str | None = None


@dataclass
class IntrospectionConfig:
    """Azure Table Storage used to record deployments."""

    account_name: str | None = None
    table_name: str | None = None
    partition_key: str | None = None
    key: str | None = None
    resource_group: str | None = None
    subscription_id: str | None = None
    tenant_id: str | None = None
    service_principal_id: str | None = None
    service_principal_secret: str | None = None

    def is_complete(self) -> bool:
        """True when the table can be queried."""
        return bool(self.account_name and self.table_name and self.partition_key and self.key)


@dataclass
class SpkConfig:
    """spk configuration data."""

    azure_devops: AzureDevOpsConfig = field(default_factory=AzureDevOpsConfig)
    introspection: IntrospectionConfig = field(default_factory=IntrospectionConfig)

    def to_dict(self) -> dict[str, Any]:
        """Convert to nested dictionary, excluding None values."""
        return {
            "azure_devops": {
                k: v for k, v in asdict(self.azure_devops).items() if v is not None
            },
            "introspection": {
                "azure": {k: v for k, v in asdict(self.introspection).items() if v is not None}
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], resolve_env: bool = True) -> "SpkConfig":
        """Create from dictionary, resolving ``${env:...}`` references."""

        def _section(raw: dict[str, Any], target: type) -> Any:
            known = target.__dataclass_fields__
            values = {}
            for key, value in (raw or {}).items():
                if key not in known:
                    logger.warning(f"Unknown config key: {key}")
                    continue
                if isinstance(value, str) and resolve_env:
                    value = resolve_env_references(value)
                values[key] = value
            return target(**values)

        introspection = (data.get("introspection") or {}).get("azure") or {}
        return cls(
            azure_devops=_section(data.get("azure_devops") or {}, AzureDevOpsConfig),
            introspection=_section(introspection, IntrospectionConfig),
        )

    def masked(self) -> dict[str, Any]:
        """Dictionary form with secrets masked, for display."""
        data = self.to_dict()
        devops = data["azure_devops"]
        if "access_token" in devops:
            devops["access_token"] = LogSanitizer.mask_secret(devops["access_token"])
        azure = data["introspection"]["azure"]
        for secret in ("key", "service_principal_secret"):
            if secret in azure:
                azure[secret] = LogSanitizer.mask_secret(azure[secret])
        return data


class ConfigManager:
    """Manage the spk configuration file.

    Configuration is stored at ~/.spk/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".spk"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Ensure the path is within ~/.spk, the working directory or tmp.

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
            f"  - {Path.cwd()}"
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Raises:
            ConfigError: If a custom path is invalid
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            return cls._validate_config_path(path)
        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> SpkConfig:
        """Load configuration from file.

        A missing default file yields an empty configuration; a missing
        custom file is an error.

        Raises:
            ConfigError: If loading fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            if custom_path:
                raise ConfigError(f"Config file not found: {config_path}")
            logger.debug("Config file not found, using defaults")
            return SpkConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomli.load(f)

            logger.debug(f"Loaded config from: {config_path}")
            return SpkConfig.from_dict(data)

        except Exception as e:
            raise ConfigError(f"Failed to load config: {e}") from e

    @classmethod
    def save_config(cls, config: SpkConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file atomically.

        Values already present in the file as ``${env:...}`` references are
        preserved when the loaded value equals the resolved reference, so
        saving never writes secrets that came from the environment.

        Returns:
            Path written

        Raises:
            ConfigError: If saving fails
        """
        temp_path: Path | None = None
        try:
            config_path = cls.get_config_path(custom_path)
            config_path.parent.mkdir(parents=True, exist_ok=True)
            if not custom_path:
                os.chmod(config_path.parent, 0o700)

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            _merge_into_document(doc, config.to_dict())

            temp_path = config_path.with_suffix(".tmp")
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
    def update_introspection(
        cls, custom_path: str | None = None, **updates: Any
    ) -> SpkConfig:
        """Update introspection storage values and save.

        Raises:
            ConfigError: If an unknown key is given or saving fails
        """
        config = cls.load_config(custom_path)
        for key, value in updates.items():
            if not hasattr(config.introspection, key):
                raise ConfigError(f"Unknown introspection config key: {key}")
            setattr(config.introspection, key, value)
        cls.save_config(config, custom_path)
        return config


def _merge_into_document(doc: Any, values: dict[str, Any]) -> None:
    """Write nested values into a tomlkit container, keeping env references."""
    for key, value in values.items():
        if isinstance(value, dict):
            if key not in doc:
                doc[key] = tomlkit.table()
            _merge_into_document(doc[key], value)
            continue

        existing = doc.get(key)
        if (
            isinstance(existing, str)
            and ENV_REFERENCE.search(existing)
            and resolve_env_references(str(existing)) == value
        ):
            continue
        doc[key] = value


__all__ = [
    "AzureDevOpsConfig",
    "ConfigError",
    "ConfigManager",
    "IntrospectionConfig",
    "SpkConfig",
    "resolve_env_references",
]
