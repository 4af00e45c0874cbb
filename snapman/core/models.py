"""Data model shared by the daemon client, the state store and the controller."""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar

from .errors import DaemonError

T = TypeVar('T')


class Confinement(Enum):
    """Isolation mode of a package build."""
    STRICT = "strict"
    CLASSIC = "classic"
    DEVMODE = "devmode"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'Confinement':
        try:
            return cls(value)
        except ValueError:
            return cls.STRICT


# =============================================================================
# Daemon payloads
# =============================================================================

@dataclass(frozen=True)
class ChannelInfo:
    """One release channel of a catalog entry."""
    name: str
    confinement: Confinement = Confinement.STRICT
    version: str = ""
    revision: str = ""
    released_at: str = ""

    @classmethod
    def from_dict(cls, name: str, d: Dict[str, Any]) -> 'ChannelInfo':
        return cls(
            name=name,
            confinement=Confinement.parse(d.get('confinement')),
            version=d.get('version', ''),
            revision=str(d.get('revision', '')),
            released_at=d.get('released-at', ''),
        )


@dataclass(frozen=True)
class LocalInfo:
    """Metadata of an installed package."""
    name: str
    version: str = ""
    revision: str = ""
    tracking_channel: Optional[str] = None
    confinement: Confinement = Confinement.STRICT

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'LocalInfo':
        return cls(
            name=d['name'],
            version=d.get('version', ''),
            revision=str(d.get('revision', '')),
            tracking_channel=d.get('tracking-channel') or d.get('channel') or None,
            confinement=Confinement.parse(d.get('confinement')),
        )


@dataclass(frozen=True)
class CatalogInfo:
    """Metadata of a package as published in the remote catalog."""
    name: str
    channels: Dict[str, ChannelInfo] = field(default_factory=dict)
    default_track: Optional[str] = None
    version: str = ""

    @property
    def default_channel(self) -> Optional[str]:
        """Stable risk of the default track, when the catalog offers it."""
        candidate = f"{self.default_track or 'latest'}/stable"
        return candidate if candidate in self.channels else None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CatalogInfo':
        channels = {
            name: ChannelInfo.from_dict(name, info)
            for name, info in (d.get('channels') or {}).items()
        }
        return cls(
            name=d['name'],
            channels=channels,
            default_track=d.get('default-track'),
            version=d.get('version', ''),
        )


@dataclass(frozen=True)
class TaskProgress:
    """Progress counters of a single task within a change."""
    done: float = 0
    total: float = 0


@dataclass(frozen=True)
class ChangeRecord:
    """Snapshot of a daemon change. Immutable once ``ready`` is true."""
    id: str
    ready: bool = False
    error: Optional[str] = None
    tasks: Tuple[TaskProgress, ...] = ()
    kind: str = ""
    summary: str = ""
    status: str = ""

    @property
    def progress(self) -> float:
        """Fraction of work done across all tasks, 0 when nothing is counted."""
        done = sum(task.done for task in self.tasks)
        total = sum(task.total for task in self.tasks)
        return done / total if total else 0.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ChangeRecord':
        tasks = tuple(
            TaskProgress(
                done=task.get('progress', {}).get('done', 0),
                total=task.get('progress', {}).get('total', 0),
            )
            for task in d.get('tasks') or []
        )
        return cls(
            id=str(d['id']),
            ready=bool(d.get('ready', False)),
            error=d.get('err') or None,
            tasks=tasks,
            kind=d.get('kind', ''),
            summary=d.get('summary', ''),
            status=d.get('status', ''),
        )


# =============================================================================
# Lookup results
# =============================================================================

class LookupStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not-found"
    ERROR = "error"


@dataclass(frozen=True)
class Lookup(Generic[T]):
    """Tagged outcome of a daemon lookup: found, not found, or failed."""
    status: LookupStatus
    value: Optional[T] = None
    error: Optional[DaemonError] = None

    @classmethod
    def found(cls, value: T) -> 'Lookup[T]':
        return cls(LookupStatus.FOUND, value=value)

    @classmethod
    def not_found(cls) -> 'Lookup[T]':
        return cls(LookupStatus.NOT_FOUND)

    @classmethod
    def failed(cls, error: DaemonError) -> 'Lookup[T]':
        return cls(LookupStatus.ERROR, error=error)

    @property
    def is_found(self) -> bool:
        return self.status is LookupStatus.FOUND

    @property
    def is_error(self) -> bool:
        return self.status is LookupStatus.ERROR


# =============================================================================
# Package state
# =============================================================================

@dataclass(frozen=True)
class PackageRecord:
    """Reconciled view of one package."""
    name: str
    local_info: Optional[LocalInfo] = None
    catalog_info: Optional[CatalogInfo] = None
    selected_channel: Optional[str] = None
    active_change_id: Optional[str] = None
    has_update: bool = False

    @property
    def is_installed(self) -> bool:
        return self.local_info is not None

    @property
    def has_catalog_info(self) -> bool:
        return self.catalog_info is not None

    @property
    def selected_channel_info(self) -> Optional[ChannelInfo]:
        if self.catalog_info is None or self.selected_channel is None:
            return None
        return self.catalog_info.channels.get(self.selected_channel)

    def copy_with(self, **changes) -> 'PackageRecord':
        return dataclasses.replace(self, **changes)


class ValueStatus(Enum):
    LOADING = "loading"
    DATA = "data"
    ERROR = "error"


@dataclass(frozen=True)
class AsyncValue:
    """Observable state of a package: loading, a record, or an error."""
    status: ValueStatus
    record: Optional[PackageRecord] = None
    error: Optional[BaseException] = None

    @classmethod
    def loading(cls) -> 'AsyncValue':
        return cls(ValueStatus.LOADING)

    @classmethod
    def data(cls, record: PackageRecord) -> 'AsyncValue':
        return cls(ValueStatus.DATA, record=record)

    @classmethod
    def failure(cls, error: BaseException) -> 'AsyncValue':
        return cls(ValueStatus.ERROR, error=error)

    @property
    def is_loading(self) -> bool:
        return self.status is ValueStatus.LOADING

    @property
    def has_value(self) -> bool:
        return self.status is ValueStatus.DATA


class Phase(Enum):
    """Where a package's operation state machine currently stands."""
    IDLE = "idle"
    REQUESTED = "requested"
    IN_PROGRESS = "in-progress"
    ABORTING = "aborting"
