"""Error taxonomy for snapman operations.

Only the daemon's "not found" condition on lookups is recovered locally
(it becomes an absent local or catalog entry). Everything else reaches the
caller awaiting the operation, and where relevant the package's state.
"""

from typing import Optional

# Daemon error kind meaning "no such package" (not installed / not in store)
NOT_FOUND_KIND = "snap-not-found"


class SnapmanError(Exception):
    """Base class for all snapman errors."""


class DaemonError(SnapmanError):
    """Raised when the daemon rejects a request or cannot be reached."""

    def __init__(self, message: str, kind: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.message = message
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.kind == NOT_FOUND_KIND

    def __repr__(self):
        return (f"DaemonError({self.message!r}, kind={self.kind!r}, "
                f"status_code={self.status_code!r})")


class PackageNotFoundError(SnapmanError):
    """Neither the local system nor the catalog knows the package."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Package not found: {name}")


class PreconditionError(SnapmanError):
    """An operation was requested in a state that does not allow it."""

    def __init__(self, action: str, name: str, reason: str):
        self.action = action
        self.name = name
        self.reason = reason
        super().__init__(f"Cannot {action} {name}: {reason}")


class OperationInProgressError(PreconditionError):
    """Another change is already in flight for the package."""

    def __init__(self, action: str, name: str,
                 change_id: Optional[str] = None):
        self.change_id = change_id
        if change_id:
            reason = f"change {change_id} is still in progress"
        else:
            reason = "another operation is still in progress"
        super().__init__(action, name, reason)


class ChangeFailedError(SnapmanError):
    """A daemon change reached a terminal state with an error."""

    def __init__(self, change_id: str, message: str):
        self.change_id = change_id
        self.message = message
        super().__init__(message)
