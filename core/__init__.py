"""
Core utilities and infrastructure for the activity bot.

This package contains:
- config: Guild configuration (report channels, thresholds) loading and validation
- constants: Configuration keys
- io_utils: File I/O helpers
- paths: Path resolution
- permissions: Member protection and command capability checks
- scheduling: Daily wall-clock report loops
- storage: Persistent per-member activity records
- types: Dataclasses and type definitions
- utils: General utilities
"""
from .constants import ConfigKey, K, ReportKind
from .types import (
    ActivityRecord,
    HydrationStats,
    InactiveMember,
    RemovalResult,
)

__all__ = [
    # Constants
    "ConfigKey",
    "K",
    "ReportKind",
    # Types
    "ActivityRecord",
    "HydrationStats",
    "InactiveMember",
    "RemovalResult",
]
