"""Configuration management with validation.

Connection and timing constraints are enforced at configuration load time
so a misconfigured provider fails before the first RPC is attempted.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_TIMEOUT_SECONDS = 5
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 300

# Settle delay before re-listing clients after a delete (eventual consistency)
DEFAULT_DELETE_VERIFY_DELAY_SECONDS = 0.2
MAX_DELETE_VERIFY_DELAY_SECONDS = 10.0

DEFAULT_LOG_LEVEL = "INFO"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Security constraints - enforced limits to prevent abuse
MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max manifest file
MAX_OBJECT_ID_LENGTH = 253

# Input validation patterns
VALID_HOST_PATTERN = r"^[A-Za-z0-9.\-]+:[0-9]{1,5}$|^\[[0-9a-fA-F:]+\]:[0-9]{1,5}$"
VALID_UUID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_REGION_PATTERN = r"^[a-z0-9-]+$"
VALID_USER_POOL_ID_PATTERN = r"^[a-z0-9-]+_[0-9A-Za-z]+$"


@dataclass(frozen=True)
class SecurityConfig:
    """Security-related configuration with safe defaults.

    SECURITY: Secret-bearing fields are never written to logs regardless of
    these settings. Audit logging only controls whether security events
    (secret generation, delete verification failures) are emitted.
    """

    # Emit structured security audit events
    enable_audit_logging: bool = True


@dataclass(frozen=True)
class Config:
    """Provider configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Dex gRPC endpoint, host:port
    host: str

    # Timing
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    delete_verify_delay_seconds: float = DEFAULT_DELETE_VERIFY_DELAY_SECONDS

    log_level: str = DEFAULT_LOG_LEVEL

    security: SecurityConfig = field(default_factory=SecurityConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        SECURITY: All inputs are validated at the boundary (fail-fast).
        """
        errors: list[str] = []

        if not self.host:
            errors.append("DEX_HOST is required")
        elif not re.match(VALID_HOST_PATTERN, self.host):
            errors.append(f"DEX_HOST must be in host:port form: {self.host}")

        if not MIN_TIMEOUT_SECONDS <= self.timeout_seconds <= MAX_TIMEOUT_SECONDS:
            errors.append(
                f"DEX_TIMEOUT_SECONDS must be between {MIN_TIMEOUT_SECONDS} "
                f"and {MAX_TIMEOUT_SECONDS} seconds"
            )

        if not 0 <= self.delete_verify_delay_seconds <= MAX_DELETE_VERIFY_DELAY_SECONDS:
            errors.append(
                "DEX_DELETE_VERIFY_DELAY_SECONDS must be between 0 "
                f"and {MAX_DELETE_VERIFY_DELAY_SECONDS} seconds"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"DEX_LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            DEX_HOST: Dex gRPC endpoint, e.g. dex.internal:5557 (required)
            DEX_TIMEOUT_SECONDS: Per-RPC deadline in seconds (default: 5)
            DEX_DELETE_VERIFY_DELAY_SECONDS: Settle delay before verifying a
                client delete (default: 0.2)
            DEX_LOG_LEVEL: Root log level (default: INFO)

        Security Variables:
            DEX_ENABLE_AUDIT_LOGGING: Emit security audit events (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            host=os.environ.get("DEX_HOST", ""),
            timeout_seconds=get_int("DEX_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            delete_verify_delay_seconds=get_float(
                "DEX_DELETE_VERIFY_DELAY_SECONDS", DEFAULT_DELETE_VERIFY_DELAY_SECONDS
            ),
            log_level=os.environ.get("DEX_LOG_LEVEL", DEFAULT_LOG_LEVEL),
            security=SecurityConfig(
                enable_audit_logging=get_bool("DEX_ENABLE_AUDIT_LOGGING", True),
            ),
        )
