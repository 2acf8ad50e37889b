"""Configuration validation for startup checks.

Validates that required configuration is present and valid before the
engine accepts purge or erasure work.

Usage:
    from custodian.config.validation import validate_or_raise

    validate_or_raise()
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from custodian.config.settings import Settings, get_settings
from custodian.utils.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity of configuration validation issues."""

    ERROR = "error"  # Must be fixed, engine cannot start
    WARNING = "warning"  # Should be fixed, engine can start


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""

    field: str
    severity: ValidationSeverity
    message: str
    suggestion: str | None = None

    def __str__(self) -> str:
        prefix = "ERROR" if self.severity == ValidationSeverity.ERROR else "WARNING"
        result = f"[{prefix}] {self.field}: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result


def validate_configuration(settings: Settings | None = None) -> list[ValidationResult]:
    """Validate application configuration.

    Args:
        settings: Settings to validate (default: global settings)

    Returns:
        List of validation results (empty if all checks pass)
    """
    if settings is None:
        settings = get_settings()

    results: list[ValidationResult] = []
    results.extend(_validate_database(settings))
    results.extend(_validate_purge(settings))
    results.extend(_validate_notifications(settings))
    results.extend(_validate_environment(settings))
    return results


def validate_or_raise(settings: Settings | None = None) -> None:
    """Validate configuration and raise if errors found.

    Raises:
        ConfigurationError: If any validation errors are found
    """
    results = validate_configuration(settings)
    errors = [r for r in results if r.severity == ValidationSeverity.ERROR]

    if errors:
        error_messages = "\n".join(str(e) for e in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{error_messages}")

    for warning in (r for r in results if r.severity == ValidationSeverity.WARNING):
        logger.warning("configuration_warning", detail=str(warning))


# =============================================================================
# Validators
# =============================================================================


def _error(field: str, message: str, suggestion: str | None = None) -> ValidationResult:
    return ValidationResult(field, ValidationSeverity.ERROR, message, suggestion)


def _warning(field: str, message: str, suggestion: str | None = None) -> ValidationResult:
    return ValidationResult(field, ValidationSeverity.WARNING, message, suggestion)


def _validate_database(settings: Settings) -> list[ValidationResult]:
    """Validate database configuration."""
    results: list[ValidationResult] = []
    url = settings.DATABASE_URL
    production = settings.ENVIRONMENT == "production"

    if not url:
        results.append(
            _error("DATABASE_URL", "Database URL is not configured", "Set DATABASE_URL")
        )
    elif not url.startswith(("postgresql", "sqlite")):
        results.append(
            _warning(
                "DATABASE_URL",
                f"Unexpected database type in URL: {url.split(':', 1)[0]}",
                "Custodian is designed for PostgreSQL or SQLite",
            )
        )
    elif production and url.startswith("sqlite"):
        results.append(
            _error(
                "DATABASE_URL",
                "SQLite is not supported in production",
                "Point DATABASE_URL at the PostgreSQL primary",
            )
        )

    if settings.DATABASE_POOL_SIZE < 1:
        results.append(
            _error("DATABASE_POOL_SIZE", f"Invalid pool size: {settings.DATABASE_POOL_SIZE}")
        )

    return results


def _validate_purge(settings: Settings) -> list[ValidationResult]:
    """Validate purge and pseudonymisation settings."""
    purge = settings.purge
    results: list[ValidationResult] = []

    checks = (
        (purge.batch_pause_seconds >= 0, "batch_pause_seconds", "Batch pause cannot be negative"),
        (
            4 <= purge.pseudonym_length <= 64,
            "pseudonym_length",
            f"Pseudonym length {purge.pseudonym_length} outside 4..64",
        ),
        (
            0 <= purge.next_purge_hour <= 23,
            "next_purge_hour",
            f"Invalid hour: {purge.next_purge_hour}",
        ),
    )
    results.extend(_error(f"purge.{name}", message) for ok, name, message in checks if not ok)

    if not purge.pseudonym_salt.get_secret_value():
        make = _error if settings.ENVIRONMENT == "production" else _warning
        results.append(
            make(
                "purge.pseudonym_salt",
                "Pseudonym salt is empty, so tokens can be reversed by dictionary attack",
                "Set PURGE__PSEUDONYM_SALT to a long random value and never rotate it",
            )
        )

    return results


def _validate_notifications(settings: Settings) -> list[ValidationResult]:
    """Validate the guardian notice webhook."""
    url = settings.notification_webhook_url
    if url is None:
        return []
    if not url.startswith(("https://", "http://")):
        return [_error("notification_webhook_url", f"Not an HTTP URL: {url}")]
    if settings.ENVIRONMENT == "production" and url.startswith("http://"):
        return [
            _warning(
                "notification_webhook_url",
                "Guardian notices are posted over plain HTTP",
                "Use an https:// endpoint",
            )
        ]
    return []


def _validate_environment(settings: Settings) -> list[ValidationResult]:
    """Validate environment-specific settings."""
    if settings.ENVIRONMENT != "production":
        return []

    results: list[ValidationResult] = []
    if settings.DEBUG:
        results.append(
            _error("DEBUG", "Debug mode must be disabled in production", "Set DEBUG=false")
        )
    if settings.log_level == "DEBUG":
        results.append(
            _warning(
                "log_level",
                "DEBUG log level in production may expose learner data",
                "Use INFO or WARNING for production",
            )
        )
    return results


def get_configuration_summary(settings: Settings | None = None) -> dict[str, Any]:
    """Get a summary of current configuration (safe for logging).

    Excludes the database URL and the pseudonym salt.
    """
    if settings is None:
        settings = get_settings()

    return {
        "environment": settings.ENVIRONMENT,
        "debug": settings.DEBUG,
        "log_level": settings.log_level,
        "database_pool_size": settings.DATABASE_POOL_SIZE,
        "database_max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "batch_pause_seconds": settings.purge.batch_pause_seconds,
        "default_dry_run": settings.purge.default_dry_run,
        "salt_configured": bool(settings.purge.pseudonym_salt.get_secret_value()),
        "notifications_configured": settings.notification_webhook_url is not None,
    }
