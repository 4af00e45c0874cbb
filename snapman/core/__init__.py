"""Core modules for snapman"""

from .errors import (ChangeFailedError, DaemonError, OperationInProgressError,
                     PackageNotFoundError, PreconditionError, SnapmanError)
from .installed import InstalledPackagesView
from .operations import OperationController
from .store import PackageState, PackageStateStore

__all__ = [
    'ChangeFailedError', 'DaemonError', 'OperationInProgressError',
    'PackageNotFoundError', 'PreconditionError', 'SnapmanError',
    'InstalledPackagesView', 'OperationController',
    'PackageState', 'PackageStateStore',
]
