"""
Model Keeper Configuration Management

Environment-driven settings for the models directory, host application
version, retry behaviour, verification limits and logging.
"""

from .settings import LogLevel, ModelKeeperSettings, load_settings

__all__ = [
    "LogLevel",
    "ModelKeeperSettings",
    "load_settings",
]
