"""Custodian: policy-driven data retention and purge engine."""

__version__ = "0.1.0"
