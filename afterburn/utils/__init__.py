"""Utility modules for the Afterburn engine."""

from afterburn.utils.config import settings, validate_settings
from afterburn.utils.logging import (
    setup_logging,
    redact_dict,
    redact_sensitive_data,
    redact_sensitive_url,
)
from afterburn.utils.guards import (
    AfterburnError,
    GuardError,
    validate_url,
    validate_public_url,
    validate_navigation_url,
    validate_max_pages,
    validate_selector,
    sanitize_value,
)
from afterburn.utils.urls import normalize_url

__all__ = [
    'settings',
    'validate_settings',
    'setup_logging',
    'redact_dict',
    'redact_sensitive_data',
    'redact_sensitive_url',
    'AfterburnError',
    'GuardError',
    'validate_url',
    'validate_public_url',
    'validate_navigation_url',
    'validate_max_pages',
    'validate_selector',
    'sanitize_value',
    'normalize_url',
]
