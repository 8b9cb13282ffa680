"""Configuration management with pydantic-settings."""

from pathlib import Path
from typing import Any

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from portalkey.exceptions import ConfigurationError


class PortalkeySettings(BaseSettings):
    """portalkey settings loaded from environment variables.

    All settings use the PORTALKEY_ prefix for environment variables and are
    read once at the start of each invocation.
    """

    # Portal credentials
    username: str = Field(default="", description="Captive portal username")
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Captive portal password",
    )

    # Portal protocol
    probe_url: str = Field(
        default="http://neverssl.com/",
        description="Plain-HTTP URL the portal intercepts with its redirect page",
    )
    probe_timeout: float = Field(
        default=5.0,
        description="Timeout in seconds for the initial probe fetch",
    )
    login_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for the remaining portal requests",
    )
    session_duration_seconds: int = Field(
        default=43200,  # 12 hours
        description="Seconds a successful login is trusted before reauthenticating",
    )

    # Connectivity probe
    dns_probe_host: str = Field(
        default="www.google.com",
        description="Public host name resolved to detect internet access",
    )
    dns_timeout: float = Field(
        default=2.0,
        description="Timeout in seconds for the DNS connectivity probe",
    )

    # Persistence
    state_dir: Path = Field(
        default=Path.home() / ".local" / "state" / "portalkey",
        description="Directory holding the auth record, diagnostics and run log",
    )
    lock_path: Path | None = Field(
        default=None,
        description="Run-lock file (defaults to <state_dir>/portalkey.lock)",
    )

    # Logging configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="console",
        description="stderr log format: console or json",
    )

    model_config = SettingsConfigDict(
        env_prefix="PORTALKEY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def run_lock_path(self) -> Path:
        """Get the run-lock file path."""
        return self.lock_path or self.state_dir / "portalkey.lock"

    @property
    def log_path(self) -> Path:
        """Get the append-only run log path."""
        return self.state_dir / "portalkey.log"

    def require_credentials(self) -> None:
        """Ensure portal credentials are configured.

        Raises:
            ConfigurationError: If username or password is empty.
        """
        missing = []
        if not self.username:
            missing.append("PORTALKEY_USERNAME")
        if not self.password.get_secret_value():
            missing.append("PORTALKEY_PASSWORD")
        if missing:
            raise ConfigurationError(
                f"Missing portal credentials: {', '.join(missing)} must be set"
            )

    def describe(self) -> dict[str, Any]:
        """Return the effective configuration with the password masked."""
        return {
            "username": self.username or "(unset)",
            "password": "********" if self.password.get_secret_value() else "(unset)",
            "probe_url": self.probe_url,
            "session_duration_seconds": self.session_duration_seconds,
            "dns_probe_host": self.dns_probe_host,
            "dns_timeout": self.dns_timeout,
            "probe_timeout": self.probe_timeout,
            "login_timeout": self.login_timeout,
            "state_dir": str(self.state_dir),
            "lock_path": str(self.run_lock_path),
            "log_level": self.log_level,
            "log_format": self.log_format,
        }


# Global settings instance
_settings: PortalkeySettings | None = None


def get_settings() -> PortalkeySettings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = PortalkeySettings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None
