"""
Data models for py2nbd.
"""

from .connection import ConnectionConfig, TLSConfig
from .export import ExportInfo

__all__ = ['ConnectionConfig', 'TLSConfig', 'ExportInfo']
