"""
Config Module

YAML settings and graph configuration loading and validation.
"""

from .loader import ConfigLoader, SchedulerSettings, RemoteSettings, GraphConfig, TaskConfig

__all__ = [
    "ConfigLoader",
    "SchedulerSettings",
    "RemoteSettings",
    "GraphConfig",
    "TaskConfig",
]
