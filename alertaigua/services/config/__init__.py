"""
Config Service

Validation of the resolved service configuration.
"""

from .validator import ConfigValidator

__all__ = ["ConfigValidator"]
