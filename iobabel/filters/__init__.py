"""
iobabel Filters Module

Poll-based log and block filters backed by Redis.
"""

from .logs import LogQuery, build_native_filter, fetch_logs, resolve_range
from .manager import FilterManager
from .store import FilterKind, FilterStore, new_filter_id

__all__ = [
    "FilterKind",
    "FilterManager",
    "FilterStore",
    "LogQuery",
    "build_native_filter",
    "fetch_logs",
    "new_filter_id",
    "resolve_range",
]
