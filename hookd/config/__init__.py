"""
Configuration for hookd.
"""

from .retention_config import RetentionSettings, load_retention_settings

__all__ = ['RetentionSettings', 'load_retention_settings']
