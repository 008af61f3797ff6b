"""Data models for thinker."""

from thinker.models.config import AppConfig, ConnectionConfig, LoggingConfig, SyncSettings
from thinker.models.table import IndexDescriptor, TableDescriptor
from thinker.models.value import ValueClass, classify, compare_values, values_equal

__all__ = [
    "AppConfig",
    "ConnectionConfig",
    "LoggingConfig",
    "SyncSettings",
    "IndexDescriptor",
    "TableDescriptor",
    "ValueClass",
    "classify",
    "compare_values",
    "values_equal",
]
