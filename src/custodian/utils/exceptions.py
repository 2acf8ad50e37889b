"""Custom exceptions for Custodian."""


class CustodianError(Exception):
    """Base exception for all Custodian errors."""

    pass


class ConfigurationError(CustodianError):
    """Error in configuration or settings."""

    pass
