"""
Service layer for py2nbd.
"""

from .configuration_service import ConfigurationService

__all__ = ['ConfigurationService']
