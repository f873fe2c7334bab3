"""Event processor for validating, creating and updating events."""
import logging
import uuid
from typing import Any, Dict, List, Optional

from scheduling.change_auditor import describe_change, diff_fields, snapshot
from scheduling.errors import (
    ConflictError,
    NotFoundError,
    UnknownProfileError,
    ValidationError,
)
from scheduling.interval import (
    ensure_timezone,
    format_instant,
    normalize_interval,
    resolve_instant,
    utc_now,
    validate_ordering,
)
from scheduling.models import (
    Event,
    EventLog,
    EventPatch,
    EventRequest,
    UpdateResult,
)

logger = logging.getLogger(__name__)


class EventProcessor:
    """Create, update and read events through a storage manager."""
    
    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000
    
    def __init__(self, storage):
        """
        Args:
            storage: DynamoDBManager (or compatible) used for persistence
        """
        self.storage = storage
    
    def create_event(self, request: EventRequest) -> Event:
        """
        Validate and persist a new event.
        
        Args:
            request: Raw creation input
            
        Returns:
            The persisted Event
            
        Raises:
            ValidationError: Missing or malformed required field
            UnknownProfileError: A participant or the creator does not exist
            InvalidTimestampError: Date, time or timezone fails to resolve
            InvalidIntervalError: End is not strictly after start
        """
        title = self._clean_title(request.title)
        profiles = self._clean_profiles(request.profiles)
        
        if not request.start_date or not request.end_date:
            raise ValidationError('Start and end dates are required')
        created_by = self._clean_actor(request.created_by, 'Creator')
        
        self._ensure_profiles_exist(profiles)
        if self.storage.get_profile(created_by) is None:
            logger.warning(f"Creator not found: {created_by}")
            raise UnknownProfileError([created_by])
        
        timezone = self._clean_timezone(request.timezone or 'UTC')
        start_instant, end_instant = normalize_interval(
            request.start_date, request.start_time,
            request.end_date, request.end_time,
            timezone
        )
        validate_ordering(start_instant, end_instant)
        
        now = utc_now()
        event = Event(
            event_id=str(uuid.uuid4()),
            title=title,
            description=self._clean_description(request.description),
            profiles=profiles,
            timezone=timezone,
            start_instant=start_instant,
            end_instant=end_instant,
            created_by=created_by,
            created_at=now,
            updated_at=now
        )
        self.storage.put_event(event)
        
        logger.info(
            f"Event created: {event.event_id}",
            extra={'event_id': event.event_id, 'profiles': len(profiles)}
        )
        return event
    
    def update_event(self, event_id: str, updated_by: str,
                     user_timezone: Optional[str],
                     patch: EventPatch) -> UpdateResult:
        """
        Apply a partial update to an event and record its audit log.
        
        Boundaries in the patch are resolved in the patched timezone when
        one is given, otherwise in the event's timezone. A timezone change
        on its own leaves the stored instants untouched.
        
        Args:
            event_id: Event to update
            updated_by: Profile ID performing the update
            user_timezone: Timezone the updater is viewing in (default UTC)
            patch: Fields to change
            
        Returns:
            UpdateResult; result.changed is False when nothing differed
            
        Raises:
            NotFoundError: Event does not exist
            ConflictError: Event changed since expected_version / since read
        """
        user_timezone = self._clean_timezone(user_timezone or 'UTC')
        ensure_timezone(user_timezone)
        updated_by = self._clean_actor(updated_by, 'Updater')
        
        event = self.get_event(event_id)
        
        if (patch.expected_version is not None
                and patch.expected_version != event.version):
            raise ConflictError(
                f"Event {event_id} is at version {event.version}, "
                f"expected {patch.expected_version}"
            )
        
        if self.storage.get_profile(updated_by) is None:
            logger.warning(f"Updater not found: {updated_by}")
            raise UnknownProfileError([updated_by])
        
        proposed = self._build_proposed(event, patch)
        
        if 'start_instant' in proposed or 'end_instant' in proposed:
            validate_ordering(
                proposed.get('start_instant', event.start_instant),
                proposed.get('end_instant', event.end_instant)
            )
        
        changes = diff_fields(snapshot(event), proposed)
        if not changes:
            logger.info(f"No changes detected for event {event_id}")
            return UpdateResult(event=event, changes=[])
        
        expected_version = event.version
        now = utc_now()
        for change in changes:
            setattr(event, change.field, change.new_value)
        event.updated_at = now
        event.version = expected_version + 1
        
        log = EventLog(
            log_id=str(uuid.uuid4()),
            event_id=event_id,
            updated_by=updated_by,
            user_timezone=user_timezone,
            timestamp=now,
            changes=changes
        )
        self.storage.update_event(event, expected_version, log)
        
        logger.info(
            f"Event updated: {event_id}",
            extra={
                'event_id': event_id,
                'fields': [c.field for c in changes],
                'version': event.version
            }
        )
        return UpdateResult(event=event, changes=changes, log=log)
    
    def get_event(self, event_id: str) -> Event:
        event = self.storage.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event not found: {event_id}")
        return event
    
    def list_events(self) -> List[Event]:
        return self.storage.list_events()
    
    def list_events_for_profile(self, profile_id: str) -> List[Event]:
        return self.storage.list_events_for_profile(profile_id)
    
    def get_event_logs(self, event_id: str) -> List[EventLog]:
        return self.storage.list_logs(event_id)
    
    def describe_event(self, event: Event,
                       viewer_timezone: Optional[str] = None) -> Dict[str, Any]:
        """
        Render an event for callers, with instants in the viewer's timezone
        and participant/creator references expanded.
        """
        viewer_timezone = viewer_timezone or 'UTC'
        ensure_timezone(viewer_timezone)
        
        known = self.storage.find_profiles(event.profiles + [event.created_by])
        return self._render_event(event, known, viewer_timezone)
    
    def describe_events(self, events: List[Event],
                        viewer_timezone: Optional[str] = None) -> List[Dict[str, Any]]:
        """Render several events with one profile lookup for all of them."""
        viewer_timezone = viewer_timezone or 'UTC'
        ensure_timezone(viewer_timezone)
        if not events:
            return []
        
        profile_ids = []
        for event in events:
            profile_ids.extend(event.profiles)
            profile_ids.append(event.created_by)
        known = self.storage.find_profiles(profile_ids)
        
        return [self._render_event(event, known, viewer_timezone)
                for event in events]
    
    def _render_event(self, event: Event, known: Dict[str, Any],
                      viewer_timezone: str) -> Dict[str, Any]:
        creator = known.get(event.created_by)
        
        return {
            'event_id': event.event_id,
            'title': event.title,
            'description': event.description,
            'profiles': [
                {
                    'profile_id': pid,
                    'name': known[pid].name,
                    'timezone': known[pid].timezone
                } if pid in known else {'profile_id': pid}
                for pid in event.profiles
            ],
            'timezone': event.timezone,
            'start_instant': format_instant(event.start_instant, viewer_timezone),
            'end_instant': format_instant(event.end_instant, viewer_timezone),
            'created_by': {
                'profile_id': event.created_by,
                'name': creator.name if creator else None
            },
            'created_at': format_instant(event.created_at, viewer_timezone),
            'updated_at': format_instant(event.updated_at, viewer_timezone),
            'version': event.version
        }
    
    def describe_log(self, log: EventLog,
                     viewer_timezone: Optional[str] = None) -> Dict[str, Any]:
        viewer_timezone = viewer_timezone or 'UTC'
        ensure_timezone(viewer_timezone)
        
        updater = self.storage.get_profile(log.updated_by)
        return {
            'log_id': log.log_id,
            'event_id': log.event_id,
            'updated_by': {
                'profile_id': log.updated_by,
                'name': updater.name if updater else None
            },
            'user_timezone': log.user_timezone,
            'timestamp': format_instant(log.timestamp, viewer_timezone),
            'changes': [describe_change(change) for change in log.changes]
        }
    
    def _build_proposed(self, event: Event, patch: EventPatch) -> Dict[str, Any]:
        """Validate the patch and resolve it into auditable field values."""
        proposed = {}
        
        if patch.title is not None:
            proposed['title'] = self._clean_title(patch.title)
        
        if patch.description is not None:
            proposed['description'] = self._clean_description(patch.description)
        
        if patch.profiles is not None:
            profiles = self._clean_profiles(patch.profiles)
            self._ensure_profiles_exist(profiles)
            proposed['profiles'] = profiles
        
        if patch.timezone is not None:
            proposed['timezone'] = self._clean_timezone(patch.timezone)
            ensure_timezone(proposed['timezone'])
        
        timezone = proposed.get('timezone', event.timezone)
        
        if patch.start_date is not None:
            proposed['start_instant'] = resolve_instant(
                patch.start_date, patch.start_time, timezone
            )
        elif patch.start_time is not None:
            raise ValidationError('start_time requires start_date')
        
        if patch.end_date is not None:
            proposed['end_instant'] = resolve_instant(
                patch.end_date, patch.end_time, timezone
            )
        elif patch.end_time is not None:
            raise ValidationError('end_time requires end_date')
        
        return proposed
    
    def _ensure_profiles_exist(self, profile_ids: List[str]) -> None:
        found = self.storage.find_profiles(profile_ids)
        missing = [pid for pid in profile_ids if pid not in found]
        if missing:
            logger.warning(f"Some profiles not found: {missing}")
            raise UnknownProfileError(missing)
    
    def _clean_title(self, title: Optional[str]) -> str:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError('Title is required')
        title = title.strip()
        if len(title) > self.MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Title exceeds {self.MAX_TITLE_LENGTH} characters"
            )
        return title
    
    def _clean_description(self, description: Optional[str]) -> Optional[str]:
        if description is None:
            return None
        if not isinstance(description, str):
            raise ValidationError('Description must be a string')
        description = description.strip()
        if len(description) > self.MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description exceeds {self.MAX_DESCRIPTION_LENGTH} characters"
            )
        return description
    
    def _clean_timezone(self, timezone: Any) -> str:
        if not isinstance(timezone, str):
            raise ValidationError('Timezone must be a string')
        return timezone.strip()
    
    def _clean_actor(self, profile_id: Any, role: str) -> str:
        if not profile_id:
            raise ValidationError(f"{role} is required")
        if not isinstance(profile_id, str):
            raise ValidationError(f"{role} must be a string")
        return profile_id
    
    def _clean_profiles(self, profiles: Any) -> List[str]:
        """Require a non-empty list of IDs; collapse duplicates, keep order."""
        if not isinstance(profiles, list) or not profiles:
            raise ValidationError('Profiles must be a non-empty array')
        if not all(isinstance(pid, str) and pid for pid in profiles):
            raise ValidationError('Profile IDs must be non-empty strings')
        return list(dict.fromkeys(profiles))

