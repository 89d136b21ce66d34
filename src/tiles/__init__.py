"""Tile partition policy.

This module provides:
- TileCachePolicy: entry ceiling, optional expiry, maintenance trigger
- MaintenanceReport: result of one maintenance pass
"""

from tiles.policy import MaintenanceReport, TileCachePolicy

__all__ = [
    'MaintenanceReport',
    'TileCachePolicy',
]
