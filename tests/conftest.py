"""Shared fixtures: mocked DynamoDB tables and processors."""
import boto3
import pytest
from moto import mock_aws

from scheduling.event_processor import EventProcessor
from scheduling.profile_processor import ProfileProcessor
from storage.dynamodb_manager import DynamoDBManager

PROFILES_TABLE = 'test-profiles'
EVENTS_TABLE = 'test-events'
EVENT_LOGS_TABLE = 'test-event-logs'


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials and regions."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


def _create_table(dynamodb, name, key):
    return dynamodb.create_table(
        TableName=name,
        KeySchema=[{'AttributeName': key, 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': key, 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )


@pytest.fixture
def dynamodb_tables():
    """Create mock DynamoDB tables for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
        yield {
            'profiles': _create_table(dynamodb, PROFILES_TABLE, 'profile_id'),
            'events': _create_table(dynamodb, EVENTS_TABLE, 'event_id'),
            'event_logs': _create_table(dynamodb, EVENT_LOGS_TABLE, 'log_id'),
        }


@pytest.fixture
def dynamodb_manager(dynamodb_tables):
    """Create DynamoDBManager instance with mock tables."""
    return DynamoDBManager(
        PROFILES_TABLE, EVENTS_TABLE, EVENT_LOGS_TABLE, region_name='us-east-1'
    )


@pytest.fixture
def profile_processor(dynamodb_manager):
    return ProfileProcessor(dynamodb_manager)


@pytest.fixture
def event_processor(dynamodb_manager):
    return EventProcessor(dynamodb_manager)


@pytest.fixture
def alice(profile_processor):
    return profile_processor.setup_admin('Alice', 'America/New_York')


@pytest.fixture
def bob(profile_processor):
    return profile_processor.create_profile('Bob', 'Europe/Paris')
