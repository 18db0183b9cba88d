"""
Services package for the HOS compliance engine.

Contains the rule evaluation and log validation logic, kept free of any
persistence or transport concerns.
"""

from .hos_service import ComplianceService, HOSConfig
from .log_validation import validate_log_entry, ValidationResult

__all__ = ['ComplianceService', 'HOSConfig', 'validate_log_entry', 'ValidationResult']
