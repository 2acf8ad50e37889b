"""Deterministic pseudonymisation of PII values.

Values are replaced by a salted SHA-256 token so the same input always maps
to the same token under the same salt, which keeps joins and distinct
counts in downstream analytics meaningful after anonymisation.
"""

import hashlib
from typing import Any

from custodian.config.settings import PurgeSettings


class Pseudonymizer:
    """Replace personal values with ``<prefix><hex>`` tokens.

    ``None`` is preserved, so anonymising an empty column never invents data.
    """

    def __init__(self, salt: str = "", prefix: str = "ANON_", length: int = 12):
        if length <= 0 or length > 64:
            raise ValueError("Pseudonym length must be between 1 and 64")
        self._salt = salt
        self.prefix = prefix
        self.length = length

    @classmethod
    def from_settings(cls, settings: PurgeSettings) -> "Pseudonymizer":
        """Build a pseudonymizer from purge settings."""
        return cls(
            salt=settings.pseudonym_salt.get_secret_value(),
            prefix=settings.pseudonym_prefix,
            length=settings.pseudonym_length,
        )

    def pseudonymize(self, value: Any) -> str | None:
        """Pseudonymize a single value.

        Args:
            value: Value to replace

        Returns:
            Token for the value, or None when value is None
        """
        if value is None:
            return None
        digest = hashlib.sha256(f"{self._salt}:{value}".encode()).hexdigest()
        return f"{self.prefix}{digest[: self.length]}"
