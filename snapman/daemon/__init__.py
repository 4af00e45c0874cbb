"""Daemon clients for snapman"""

from .client import DaemonClient
from .snapd import SnapdClient

__all__ = ['DaemonClient', 'SnapdClient']
