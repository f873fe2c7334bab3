"""Data models for profiles, events and event logs."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional


@dataclass
class Profile:
    """Participant / user record."""
    profile_id: str
    name: str
    timezone: str
    is_admin: bool
    created_at: datetime
    updated_at: datetime


@dataclass
class EventRequest:
    """Raw event creation input, as received from a caller."""
    title: str
    profiles: List[str]
    start_date: str
    end_date: str
    created_by: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    timezone: str = 'UTC'
    description: Optional[str] = None


@dataclass
class Event:
    """Validated and normalized event."""
    event_id: str
    title: str
    description: Optional[str]
    profiles: List[str]
    timezone: str
    start_instant: datetime
    end_instant: datetime
    created_by: str
    created_at: datetime
    updated_at: datetime
    version: int = 1


@dataclass
class EventPatch:
    """Partial update for an event. None means 'not supplied'."""
    title: Optional[str] = None
    description: Optional[str] = None
    profiles: Optional[List[str]] = None
    timezone: Optional[str] = None
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    end_date: Optional[str] = None
    end_time: Optional[str] = None
    expected_version: Optional[int] = None


@dataclass
class FieldChange:
    """One audited field change."""
    field: str
    old_value: Any
    new_value: Any


@dataclass
class EventLog:
    """Immutable audit record of one event update."""
    log_id: str
    event_id: str
    updated_by: str
    user_timezone: str
    timestamp: datetime
    changes: List[FieldChange] = field(default_factory=list)


@dataclass
class UpdateResult:
    """Result of an update operation."""
    event: Event
    changes: List[FieldChange]
    log: Optional[EventLog] = None

    @property
    def changed(self) -> bool:
        return bool(self.changes)
