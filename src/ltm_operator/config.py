"""Configuration management with validation.

All settings come from environment variables and are validated at load
time, so a misconfigured operator fails before it issues a single call
to the device.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .models import DEFAULT_PARTITION


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 10
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_TIMEOUT_SECONDS = 30
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 300

# Upper bound on delete-node calls while clearing pool references
DEFAULT_MAX_DELETE_ATTEMPTS = 10
# One call to hit the conflict, one to retry after removing the memberships
MIN_DELETE_ATTEMPTS = 2
MAX_DELETE_ATTEMPTS_LIMIT = 100

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file

DEFAULT_SPEC_FILE = "/specs/ltm.yaml"

VALID_PARTITION_PATTERN = r"^[A-Za-z][A-Za-z0-9_.-]{0,63}$"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    The password is excluded from repr so it never reaches the logs.
    """

    # Required fields
    host: str
    username: str
    password: str = field(repr=False)

    # Transport
    verify_tls: bool = True
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS

    # Reconciliation
    default_partition: str = DEFAULT_PARTITION
    max_delete_attempts: int = DEFAULT_MAX_DELETE_ATTEMPTS
    spec_file: Path = field(default_factory=lambda: Path(DEFAULT_SPEC_FILE))
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS

    # Behavior
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.host:
            errors.append("BIGIP_HOST is required")
        if not self.username:
            errors.append("BIGIP_USERNAME is required")
        if not self.password:
            errors.append("BIGIP_PASSWORD is required")

        if not re.match(VALID_PARTITION_PATTERN, self.default_partition or ""):
            errors.append(
                f"DEFAULT_PARTITION must match pattern {VALID_PARTITION_PATTERN}: "
                f"{self.default_partition!r}"
            )

        if not (MIN_TIMEOUT_SECONDS <= self.timeout_seconds <= MAX_TIMEOUT_SECONDS):
            errors.append(
                f"BIGIP_TIMEOUT must be between {MIN_TIMEOUT_SECONDS} "
                f"and {MAX_TIMEOUT_SECONDS} seconds"
            )

        if not (MIN_DELETE_ATTEMPTS <= self.max_delete_attempts <= MAX_DELETE_ATTEMPTS_LIMIT):
            errors.append(
                f"MAX_DELETE_ATTEMPTS must be between {MIN_DELETE_ATTEMPTS} "
                f"and {MAX_DELETE_ATTEMPTS_LIMIT}"
            )

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def base_url(self) -> str:
        """Device URL; a bare host name is assumed to speak HTTPS."""
        host = self.host.rstrip("/")
        if host.startswith(("http://", "https://")):
            return host
        return f"https://{host}"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            BIGIP_HOST: Management address of the device (host or URL)
            BIGIP_USERNAME: iControl REST user
            BIGIP_PASSWORD: iControl REST password
            BIGIP_VERIFY_TLS: Verify the device certificate (default: true)
            BIGIP_TIMEOUT: Per-request timeout in seconds (default: 30)
            DEFAULT_PARTITION: Partition used when none is given (default: Common)
            MAX_DELETE_ATTEMPTS: Delete-node calls before giving up on
                clearing pool references (default: 10, minimum: 2)
            SPEC_FILE: Path to the declared LTM state (default: /specs/ltm.yaml)
            RECONCILE_INTERVAL: Seconds between reconciliation passes (default: 300)
            DRY_RUN: If "true", only report planned changes (default: false)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            host=os.environ.get("BIGIP_HOST", ""),
            username=os.environ.get("BIGIP_USERNAME", ""),
            password=os.environ.get("BIGIP_PASSWORD", ""),
            verify_tls=get_bool("BIGIP_VERIFY_TLS", True),
            timeout_seconds=get_int("BIGIP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
            default_partition=os.environ.get("DEFAULT_PARTITION", DEFAULT_PARTITION),
            max_delete_attempts=get_int("MAX_DELETE_ATTEMPTS", DEFAULT_MAX_DELETE_ATTEMPTS),
            spec_file=Path(os.environ.get("SPEC_FILE", DEFAULT_SPEC_FILE)),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            dry_run=get_bool("DRY_RUN", False),
        )
