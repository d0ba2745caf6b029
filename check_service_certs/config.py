"""
Configuration management for check-service-certs.
"""

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONFIG_FILE_NAME = "checkServiceCerts"
CONFIG_SEARCH_PATHS = [
    "/etc/check-service-certs/",
    "~/.check-service-certs/",
    ".",
]
ENV_PREFIX = "CHECK_SERVICE_CERTS_"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h|d)")


class ConfigurationError(Exception):
    """Configuration could not be located, read or validated."""


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string such as '720h', '2m', '1h30m' or '7d'.

    Args:
        value: Duration string

    Returns:
        Parsed duration

    Raises:
        ValueError: If the string is not a valid duration
    """
    if not isinstance(value, str):
        raise ValueError(f"Duration must be a string, got {type(value).__name__}")

    text = value.strip()
    if not text:
        raise ValueError("Duration cannot be empty")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return timedelta(0)

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise ValueError(f"Invalid duration format: {value!r}")
        number, unit = match.groups()
        total += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    if pos == 0:
        raise ValueError(f"Invalid duration format: {value!r}")

    return timedelta(seconds=sign * total)


def format_duration(value: timedelta) -> str:
    """Format a duration the way it is written in the config, e.g. '720h0m0s'."""
    total = value.total_seconds()
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{sign}{int(hours)}h{int(minutes)}m{seconds:g}s"


def _stringify(value: Any) -> Any:
    # YAML turns bare numbers into ints; durations are always handled as text
    if value is None or isinstance(value, str):
        return value
    return str(value)


class ServiceSettings(BaseModel):
    """Per-service certificate settings."""

    model_config = ConfigDict(populate_by_name=True)

    cert_paths: List[str] = Field(default_factory=list, alias="certPaths")
    min_cert_lifetime: Optional[str] = Field(default=None, alias="minCertLifetime")

    @field_validator("cert_paths", mode="before")
    @classmethod
    def validate_cert_paths(cls, v: Any) -> Any:
        """Accept a single path as well as a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("min_cert_lifetime", mode="before")
    @classmethod
    def validate_min_cert_lifetime(cls, v: Any) -> Any:
        return _stringify(v)


class GlobalSettings(ServiceSettings):
    """Settings under the 'global' key; also the unnamed service."""

    timeout: Optional[str] = None
    template: Optional[str] = None
    logfile: Optional[str] = None
    log_level: str = Field(default="DEBUG", alias="logLevel")

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: Any) -> Any:
        return _stringify(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


class NotificationSettings(BaseModel):
    """Recipients for expiring-certificate notifications."""

    admin_email: List[str] = Field(default_factory=list)
    slack_alerts_url: Optional[str] = None

    @field_validator("admin_email", mode="before")
    @classmethod
    def validate_admin_email(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return v.split()
        return v


class EmailSettings(BaseModel):
    """SMTP settings."""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(default="", alias="from")
    smtphost: str = Field(default="localhost")
    smtpport: int = Field(default=25, ge=1, le=65535)


class Config(BaseModel):
    """Configuration model for check-service-certs."""

    model_config = ConfigDict(populate_by_name=True)

    global_settings: GlobalSettings = Field(default_factory=GlobalSettings, alias="global")
    named_services: Dict[str, ServiceSettings] = Field(
        default_factory=dict, alias="namedServices"
    )
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    notifications_test: NotificationSettings = Field(default_factory=NotificationSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)

    config_file: Optional[str] = Field(default=None, exclude=True)

    @field_validator("named_services", mode="before")
    @classmethod
    def validate_named_services(cls, v: Any) -> Any:
        """Allow services declared with an empty body."""
        if v is None:
            return {}
        if isinstance(v, dict):
            return {name: settings or {} for name, settings in v.items()}
        return v

    @field_validator(
        "global_settings", "notifications", "notifications_test", "email", mode="before"
    )
    @classmethod
    def validate_sections(cls, v: Any) -> Any:
        return {} if v is None else v

    def lookup(self, key: str, default: Any = None) -> Any:
        """
        Look up a value by dotted key, using the key names of the config file.

        Keys that themselves contain dots, such as service names like
        'web.example.org', cannot be reached this way; use named_services.

        Args:
            key: Dotted key, e.g. 'namedServices.myservice.certPaths'
            default: Value returned when the key is absent or null

        Returns:
            The configured value or the default
        """
        node: Any = self.model_dump(by_alias=True)
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return default if node is None else node

    def notification_settings(self, test_mode: bool = False) -> NotificationSettings:
        """Get the notification recipients for the current mode."""
        return self.notifications_test if test_mode else self.notifications


def find_config_file() -> Optional[Path]:
    """Find the config file in the standard search paths."""
    for directory in CONFIG_SEARCH_PATHS:
        for suffix in (".yaml", ".yml"):
            candidate = Path(directory).expanduser() / f"{CONFIG_FILE_NAME}{suffix}"
            if candidate.is_file():
                return candidate
    return None


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file and environment variables.

    Args:
        config_path: Path to configuration file; searched for when omitted

    Returns:
        Config object

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
    else:
        found = find_config_file()
        if found is None:
            raise ConfigurationError(
                f"No {CONFIG_FILE_NAME}.yaml found in any of: {', '.join(CONFIG_SEARCH_PATHS)}"
            )
        config_file = found

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Could not read configuration file {config_file}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse configuration file {config_file}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration file {config_file} must contain a mapping")

    # Override with environment variables
    for section, values in _get_env_overrides().items():
        section_data = config_data.get(section) or {}
        section_data.update(values)
        config_data[section] = section_data

    try:
        config = Config.model_validate(config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_file}: {e}") from e

    config.config_file = str(config_file)
    return config


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _get_env_overrides() -> Dict[str, Dict[str, Any]]:
    """Get configuration overrides from environment variables."""
    env_mapping: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
        f"{ENV_PREFIX}TIMEOUT": ("global", "timeout", str),
        f"{ENV_PREFIX}MIN_CERT_LIFETIME": ("global", "minCertLifetime", str),
        f"{ENV_PREFIX}TEMPLATE": ("global", "template", str),
        f"{ENV_PREFIX}LOGFILE": ("global", "logfile", str),
        f"{ENV_PREFIX}LOG_LEVEL": ("global", "logLevel", str),
        f"{ENV_PREFIX}EMAIL_FROM": ("email", "from", str),
        f"{ENV_PREFIX}SMTP_HOST": ("email", "smtphost", str),
        f"{ENV_PREFIX}SMTP_PORT": ("email", "smtpport", int),
        f"{ENV_PREFIX}ADMIN_EMAIL": ("notifications", "admin_email", _split_list),
        f"{ENV_PREFIX}SLACK_ALERTS_URL": ("notifications", "slack_alerts_url", str),
    }

    overrides: Dict[str, Dict[str, Any]] = {}
    for env_var, (section, config_key, converter) in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            try:
                overrides.setdefault(section, {})[config_key] = converter(value)
            except (ValueError, TypeError) as e:
                logging.warning(f"Invalid value for {env_var}: {value} - {e}")

    return overrides
