"""
Polling-based synchronisation of order and refund state.
"""

from storefront.sync.watcher import SnapshotChange, changed_fields, wait_for_change, watch

__all__ = ["SnapshotChange", "changed_fields", "wait_for_change", "watch"]
