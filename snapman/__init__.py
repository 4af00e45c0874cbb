"""
snapman - client-side operation controller for snapd

Tracks install, refresh, remove and abort changes run by the daemon:
- Reconciled per-package state (installed + catalog data)
- Reattaches to changes that were already running
- Aggregated progress across several changes
"""

__version__ = "0.1.0"
