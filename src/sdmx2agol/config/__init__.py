"""
Configuration module for the SDMX-to-ArcGIS pipeline.
"""

from .settings import (
    AGOLCredentials,
    Config,
    ConfigurationError,
    PublishConfig,
    RemoteConfig,
)

__all__ = [
    'Config',
    'ConfigurationError',
    'AGOLCredentials',
    'PublishConfig',
    'RemoteConfig',
]
