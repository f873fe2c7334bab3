"""DynamoDB manager for profile, event and event log storage."""
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from scheduling.change_auditor import serialize_value
from scheduling.errors import ConflictError, ThrottledError
from scheduling.interval import format_instant, parse_instant
from scheduling.models import Event, EventLog, FieldChange, Profile

logger = logging.getLogger(__name__)


class DynamoDBManager:
    """Manager for DynamoDB operations across the scheduling tables."""
    
    BATCH_GET_SIZE = 100  # DynamoDB BatchGetItem key limit
    MAX_UNPROCESSED_RETRIES = 5
    RETRY_BASE_DELAY = 0.05  # seconds
    
    def __init__(self, profiles_table: str, events_table: str,
                 event_logs_table: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB resource and table references.
        
        Args:
            profiles_table: Name of the profiles table (hash key profile_id)
            events_table: Name of the events table (hash key event_id)
            event_logs_table: Name of the event logs table (hash key log_id)
            region_name: AWS region, defaults to the boto3 configuration
        """
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.client = self.dynamodb.meta.client
        self.profiles_table = self.dynamodb.Table(profiles_table)
        self.events_table = self.dynamodb.Table(events_table)
        self.event_logs_table = self.dynamodb.Table(event_logs_table)
        logger.info(
            f"Initialized DynamoDBManager for tables: {profiles_table}, "
            f"{events_table}, {event_logs_table}"
        )
    
    # Profiles
    
    def get_profile(self, profile_id: str) -> Optional[Profile]:
        try:
            response = self.profiles_table.get_item(
                Key={'profile_id': profile_id}
            )
        except ClientError as e:
            logger.error(f"Error reading profile {profile_id}: {e}")
            raise
        item = response.get('Item')
        return self._item_to_profile(item) if item else None
    
    def find_profiles(self, profile_ids: List[str]) -> Dict[str, Profile]:
        """
        Look up many profiles at once with BatchGetItem.
        
        Args:
            profile_ids: Profile IDs to resolve (duplicates allowed)
            
        Returns:
            Dictionary mapping profile_id to Profile for the IDs that exist
        """
        unique_ids = list(dict.fromkeys(profile_ids))
        profiles = {}
        table_name = self.profiles_table.name
        
        # Process in batches of 100 (DynamoDB limit)
        for i in range(0, len(unique_ids), self.BATCH_GET_SIZE):
            batch = unique_ids[i:i + self.BATCH_GET_SIZE]
            request = {
                table_name: {
                    'Keys': [{'profile_id': pid} for pid in batch]
                }
            }
            
            try:
                attempt = 0
                while request:
                    if attempt > 0:
                        if attempt > self.MAX_UNPROCESSED_RETRIES:
                            logger.error(
                                f"Profile batch {i // self.BATCH_GET_SIZE + 1} still "
                                f"unprocessed after {self.MAX_UNPROCESSED_RETRIES} retries"
                            )
                            raise ThrottledError(
                                'Profile lookup throttled, please retry'
                            )
                        # Exponential backoff before retrying unprocessed keys
                        delay = self.RETRY_BASE_DELAY * (2 ** (attempt - 1))
                        logger.warning(
                            f"Retrying unprocessed profile keys "
                            f"(attempt {attempt}/{self.MAX_UNPROCESSED_RETRIES}) "
                            f"in {delay} seconds"
                        )
                        time.sleep(delay)
                    
                    response = self.dynamodb.batch_get_item(
                        RequestItems=request
                    )
                    for item in response.get('Responses', {}).get(table_name, []):
                        profile = self._item_to_profile(item)
                        profiles[profile.profile_id] = profile
                    request = response.get('UnprocessedKeys') or None
                    attempt += 1
            except ClientError as e:
                logger.error(
                    f"Error reading profile batch {i // self.BATCH_GET_SIZE + 1}: {e}"
                )
                raise
        
        return profiles
    
    def find_admin(self) -> Optional[Profile]:
        items = self._scan(
            self.profiles_table,
            FilterExpression=Attr('is_admin').eq(True)
        )
        return self._item_to_profile(items[0]) if items else None
    
    def list_profiles(self) -> List[Profile]:
        profiles = [
            self._item_to_profile(item)
            for item in self._scan(self.profiles_table)
        ]
        profiles.sort(key=lambda p: p.created_at)
        return profiles
    
    def put_profile(self, profile: Profile) -> None:
        try:
            self.profiles_table.put_item(
                Item=self._profile_to_item(profile),
                ConditionExpression=Attr('profile_id').not_exists()
            )
        except ClientError as e:
            logger.error(f"Error writing profile {profile.profile_id}: {e}")
            raise
    
    def update_profile_timezone(self, profile_id: str, timezone: str,
                                updated_at: datetime) -> Optional[Profile]:
        """
        Set a profile's timezone.
        
        Returns:
            The updated Profile, or None if no such profile exists
        """
        try:
            response = self.profiles_table.update_item(
                Key={'profile_id': profile_id},
                UpdateExpression='SET #tz = :tz, updated_at = :updated_at',
                ConditionExpression=Attr('profile_id').exists(),
                ExpressionAttributeNames={'#tz': 'timezone'},
                ExpressionAttributeValues={
                    ':tz': timezone,
                    ':updated_at': format_instant(updated_at)
                },
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                return None
            logger.error(f"Error updating profile {profile_id}: {e}")
            raise
        return self._item_to_profile(response['Attributes'])
    
    # Events
    
    def get_event(self, event_id: str) -> Optional[Event]:
        try:
            response = self.events_table.get_item(Key={'event_id': event_id})
        except ClientError as e:
            logger.error(f"Error reading event {event_id}: {e}")
            raise
        item = response.get('Item')
        return self._item_to_event(item) if item else None
    
    def list_events(self) -> List[Event]:
        """Return all events ordered by start instant."""
        events = [
            self._item_to_event(item)
            for item in self._scan(self.events_table)
        ]
        events.sort(key=lambda e: e.start_instant)
        return events
    
    def list_events_for_profile(self, profile_id: str) -> List[Event]:
        """Return events the profile participates in, ordered by start."""
        items = self._scan(
            self.events_table,
            FilterExpression=Attr('profiles').contains(profile_id)
        )
        events = [self._item_to_event(item) for item in items]
        events.sort(key=lambda e: e.start_instant)
        return events
    
    def put_event(self, event: Event) -> None:
        try:
            self.events_table.put_item(
                Item=self._event_to_item(event),
                ConditionExpression=Attr('event_id').not_exists()
            )
        except ClientError as e:
            logger.error(f"Error writing event {event.event_id}: {e}")
            raise
    
    def update_event(self, event: Event, expected_version: int,
                     log: EventLog) -> None:
        """
        Replace an event and append its audit log in one transaction.
        
        The write only succeeds while the stored version still equals
        expected_version; neither item is written otherwise.
        
        Raises:
            ConflictError: If the stored version changed since it was read
        """
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        'Put': {
                            'TableName': self.events_table.name,
                            'Item': self._event_to_item(event),
                            'ConditionExpression': '#version = :expected',
                            'ExpressionAttributeNames': {'#version': 'version'},
                            'ExpressionAttributeValues': {
                                ':expected': expected_version
                            }
                        }
                    },
                    {
                        'Put': {
                            'TableName': self.event_logs_table.name,
                            'Item': self._log_to_item(log),
                            'ConditionExpression': 'attribute_not_exists(log_id)'
                        }
                    }
                ]
            )
        except ClientError as e:
            if self._is_conditional_failure(e):
                logger.warning(
                    f"Concurrent update detected for event {event.event_id} "
                    f"(expected version {expected_version})"
                )
                raise ConflictError(
                    f"Event {event.event_id} was modified by another request"
                )
            logger.error(f"Error updating event {event.event_id}: {e}")
            raise
    
    # Event logs
    
    def append_log(self, log: EventLog) -> None:
        try:
            self.event_logs_table.put_item(
                Item=self._log_to_item(log),
                ConditionExpression=Attr('log_id').not_exists()
            )
        except ClientError as e:
            logger.error(f"Error writing event log {log.log_id}: {e}")
            raise
    
    def list_logs(self, event_id: str) -> List[EventLog]:
        """Return the audit logs of an event, most recent first."""
        items = self._scan(
            self.event_logs_table,
            FilterExpression=Attr('event_id').eq(event_id)
        )
        logs = [self._item_to_log(item) for item in items]
        logs.sort(key=lambda log: log.timestamp, reverse=True)
        return logs
    
    # Helpers
    
    def _scan(self, table, **kwargs) -> List[dict]:
        """Scan a table, following LastEvaluatedKey pagination."""
        try:
            response = table.scan(**kwargs)
            items = response.get('Items', [])
            
            while 'LastEvaluatedKey' in response:
                response = table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))
            
            return items
            
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table {table.name}: {e}")
            raise
    
    @staticmethod
    def _is_conditional_failure(error: ClientError) -> bool:
        code = error.response.get('Error', {}).get('Code')
        if code == 'ConditionalCheckFailedException':
            return True
        if code != 'TransactionCanceledException':
            return False
        reasons = error.response.get('CancellationReasons') or []
        if any(r.get('Code') == 'ConditionalCheckFailed' for r in reasons):
            return True
        return 'ConditionalCheckFailed' in error.response['Error'].get('Message', '')
    
    def _item_to_profile(self, item: dict) -> Profile:
        return Profile(
            profile_id=item['profile_id'],
            name=item['name'],
            timezone=item.get('timezone', 'UTC'),
            is_admin=bool(item.get('is_admin', False)),
            created_at=parse_instant(item['created_at']),
            updated_at=parse_instant(item['updated_at'])
        )
    
    def _profile_to_item(self, profile: Profile) -> dict:
        return {
            'profile_id': profile.profile_id,
            'name': profile.name,
            'timezone': profile.timezone,
            'is_admin': profile.is_admin,
            'created_at': format_instant(profile.created_at),
            'updated_at': format_instant(profile.updated_at)
        }
    
    def _item_to_event(self, item: dict) -> Event:
        return Event(
            event_id=item['event_id'],
            title=item['title'],
            description=item.get('description'),
            profiles=list(item.get('profiles', [])),
            timezone=item.get('timezone', 'UTC'),
            start_instant=parse_instant(item['start_instant']),
            end_instant=parse_instant(item['end_instant']),
            created_by=item['created_by'],
            created_at=parse_instant(item['created_at']),
            updated_at=parse_instant(item['updated_at']),
            version=int(item.get('version', 1))
        )
    
    def _event_to_item(self, event: Event) -> dict:
        item = {
            'event_id': event.event_id,
            'title': event.title,
            'profiles': list(event.profiles),
            'timezone': event.timezone,
            'start_instant': format_instant(event.start_instant),
            'end_instant': format_instant(event.end_instant),
            'created_by': event.created_by,
            'created_at': format_instant(event.created_at),
            'updated_at': format_instant(event.updated_at),
            'version': event.version
        }
        
        # Add optional fields if present
        if event.description is not None:
            item['description'] = event.description
        
        return item
    
    def _item_to_log(self, item: dict) -> EventLog:
        return EventLog(
            log_id=item['log_id'],
            event_id=item['event_id'],
            updated_by=item['updated_by'],
            user_timezone=item.get('user_timezone', 'UTC'),
            timestamp=parse_instant(item['timestamp']),
            changes=[
                FieldChange(
                    field=change['field'],
                    old_value=change.get('old_value'),
                    new_value=change.get('new_value')
                )
                for change in item.get('changes', [])
            ]
        )
    
    def _log_to_item(self, log: EventLog) -> dict:
        return {
            'log_id': log.log_id,
            'event_id': log.event_id,
            'updated_by': log.updated_by,
            'user_timezone': log.user_timezone,
            'timestamp': format_instant(log.timestamp),
            'changes': [
                {
                    'field': change.field,
                    'old_value': serialize_value(change.old_value),
                    'new_value': serialize_value(change.new_value)
                }
                for change in log.changes
            ]
        }

