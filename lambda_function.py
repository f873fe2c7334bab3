"""AWS Lambda handler for the event scheduling API (API Gateway proxy)."""
import json
import logging
import os
import re
import time
from typing import Any, Callable, Dict, Optional, Tuple

from scheduling.change_auditor import describe_change
from scheduling.errors import SchedulingError, ValidationError
from scheduling.event_processor import EventProcessor
from scheduling.interval import format_instant, utc_now
from scheduling.models import EventPatch, EventRequest
from scheduling.profile_processor import ProfileProcessor, describe_profile
from storage.dynamodb_manager import DynamoDBManager


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""
    
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }
        
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        
        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.
    
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    
    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)
    
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


class Request:
    """The parts of an API Gateway proxy event the handlers need."""
    
    def __init__(self, event: Dict[str, Any]):
        self.method = (event.get('httpMethod') or 'GET').upper()
        self.path = event.get('path') or '/'
        self.headers = {
            key.lower(): value
            for key, value in (event.get('headers') or {}).items()
        }
        self.query = event.get('queryStringParameters') or {}
        self._raw_body = event.get('body')
    
    def json(self) -> Dict[str, Any]:
        if not self._raw_body:
            return {}
        try:
            body = json.loads(self._raw_body)
        except ValueError:
            raise ValidationError('Request body is not valid JSON')
        if not isinstance(body, dict):
            raise ValidationError('Request body must be a JSON object')
        return body
    
    @property
    def viewer_timezone(self) -> Optional[str]:
        return self.query.get('timezone')
    
    @property
    def user_id(self) -> Optional[str]:
        return self.headers.get('user-id')


class Services:
    def __init__(self, profiles: ProfileProcessor, events: EventProcessor):
        self.profiles = profiles
        self.events = events


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def handle_health(services, request):
    return 200, {'message': 'API is working!', 'timestamp': format_instant(utc_now())}


def handle_setup_admin(services, request):
    body = request.json()
    profile = services.profiles.setup_admin(body.get('name'), body.get('timezone'))
    return 201, {
        'message': 'Admin created successfully',
        'user': describe_profile(profile)
    }


def handle_me(services, request):
    return 200, describe_profile(services.profiles.current_profile(request.user_id))


def handle_list_profiles(services, request):
    return 200, [describe_profile(p) for p in services.profiles.list_profiles()]


def handle_create_profile(services, request):
    body = request.json()
    profile = services.profiles.create_profile(body.get('name'), body.get('timezone'))
    return 201, describe_profile(profile)


def handle_get_profile(services, request, profile_id):
    return 200, describe_profile(services.profiles.get_profile(profile_id))


def handle_update_timezone(services, request, profile_id):
    body = request.json()
    profile = services.profiles.update_timezone(profile_id, body.get('timezone'))
    return 200, describe_profile(profile)


def handle_list_events(services, request):
    events = services.events.list_events()
    return 200, services.events.describe_events(events, request.viewer_timezone)


def handle_list_events_for_profile(services, request, profile_id):
    events = services.events.list_events_for_profile(profile_id)
    return 200, services.events.describe_events(events, request.viewer_timezone)


def handle_create_event(services, request):
    body = request.json()
    event = services.events.create_event(EventRequest(
        title=body.get('title'),
        description=body.get('description'),
        profiles=body.get('profiles'),
        timezone=body.get('timezone') or 'UTC',
        start_date=body.get('start_date'),
        start_time=body.get('start_time'),
        end_date=body.get('end_date'),
        end_time=body.get('end_time'),
        created_by=body.get('created_by')
    ))
    return 201, services.events.describe_event(event, request.viewer_timezone)


def handle_get_event(services, request, event_id):
    event = services.events.get_event(event_id)
    return 200, services.events.describe_event(event, request.viewer_timezone)


def handle_update_event(services, request, event_id):
    body = request.json()
    
    expected_version = body.get('expected_version')
    if expected_version is not None and (
            isinstance(expected_version, bool)
            or not isinstance(expected_version, int)):
        raise ValidationError('expected_version must be an integer')
    
    patch = EventPatch(
        title=body.get('title'),
        description=body.get('description'),
        profiles=body.get('profiles'),
        timezone=body.get('timezone'),
        start_date=body.get('start_date'),
        start_time=body.get('start_time'),
        end_date=body.get('end_date'),
        end_time=body.get('end_time'),
        expected_version=expected_version
    )
    result = services.events.update_event(
        event_id,
        updated_by=body.get('updated_by') or request.user_id,
        user_timezone=body.get('user_timezone'),
        patch=patch
    )
    
    described = services.events.describe_event(result.event, request.viewer_timezone)
    if not result.changed:
        return 200, {'message': 'No changes detected', 'event': described}
    return 200, {
        'message': 'Event updated',
        'event': described,
        'changes': [describe_change(c) for c in result.changes]
    }


def handle_event_logs(services, request, event_id):
    logs = services.events.get_event_logs(event_id)
    return 200, [
        services.events.describe_log(log, request.viewer_timezone) for log in logs
    ]


ROUTES = [
    ('GET', r'/health', handle_health),
    ('POST', r'/auth/setup', handle_setup_admin),
    ('GET', r'/auth/me', handle_me),
    ('GET', r'/profiles', handle_list_profiles),
    ('POST', r'/profiles', handle_create_profile),
    ('GET', r'/profiles/(?P<profile_id>[^/]+)', handle_get_profile),
    ('PUT', r'/profiles/(?P<profile_id>[^/]+)/timezone', handle_update_timezone),
    ('GET', r'/events', handle_list_events),
    ('POST', r'/events', handle_create_event),
    ('GET', r'/events/user/(?P<profile_id>[^/]+)', handle_list_events_for_profile),
    ('GET', r'/events/(?P<event_id>[^/]+)/logs', handle_event_logs),
    ('GET', r'/events/(?P<event_id>[^/]+)', handle_get_event),
    ('PUT', r'/events/(?P<event_id>[^/]+)', handle_update_event),
]


def resolve_route(method: str, path: str
                  ) -> Tuple[Optional[Callable], Dict[str, str]]:
    """
    Find the handler for a method and path.
    
    Returns:
        Tuple of (handler, path parameters); handler is None if no route matches
    """
    path = path.rstrip('/') or '/'
    for route_method, pattern, handler in ROUTES:
        if route_method != method:
            continue
        match = re.fullmatch(pattern, path)
        if match:
            return handler, match.groupdict()
    return None, {}


def build_services() -> Services:
    """Create processors from environment configuration."""
    manager = DynamoDBManager(
        profiles_table=os.environ.get('PROFILES_TABLE', 'scheduling-profiles'),
        events_table=os.environ.get('EVENTS_TABLE', 'scheduling-events'),
        event_logs_table=os.environ.get('EVENT_LOGS_TABLE', 'scheduling-event-logs')
    )
    return Services(
        profiles=ProfileProcessor(manager),
        events=EventProcessor(manager)
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the scheduling API.
    
    Args:
        event: API Gateway proxy event
        context: Lambda context object
        
    Returns:
        API Gateway proxy response dict
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)
    
    start_time = time.time()
    request = Request(event)
    logger.info(
        f"Request started: {request.method} {request.path}",
        extra={'method': request.method, 'path': request.path}
    )
    
    handler, params = resolve_route(request.method, request.path)
    if handler is None:
        logger.warning(f"No route for {request.method} {request.path}")
        return _response(404, {
            'message': 'Not found',
            'error_type': 'not_found',
            'retryable': False
        })
    
    try:
        services = build_services()
        status_code, body = handler(services, request, **params)
        
    except SchedulingError as e:
        logger.warning(
            f"Request rejected: {e.message}",
            extra={'error_type': e.kind}
        )
        return _response(e.status_code, {
            'message': e.message,
            'error_type': e.kind,
            'retryable': e.retryable
        })
        
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Request failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Server error',
            'error': str(e),
            'error_type': type(e).__name__,
            'retryable': False
        })
    
    duration = time.time() - start_time
    logger.info(
        f"Request completed: {request.method} {request.path} -> {status_code}",
        extra={'duration_seconds': round(duration, 2)}
    )
    return _response(status_code, body)
