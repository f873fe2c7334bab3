"""Unit tests for the change auditor."""
from datetime import datetime

import pytz

from scheduling.change_auditor import (
    AUDITED_FIELDS,
    describe_change,
    diff_fields,
    serialize_value,
    snapshot,
)
from scheduling.models import Event, FieldChange


def utc(*args):
    return pytz.utc.localize(datetime(*args))


def make_before(**overrides):
    before = {
        'title': 'Standup',
        'description': 'old',
        'profiles': ['p1', 'p2'],
        'timezone': 'America/New_York',
        'start_instant': utc(2024, 6, 1, 14, 0),
        'end_instant': utc(2024, 6, 1, 14, 30),
    }
    before.update(overrides)
    return before


class TestDiffFields:
    """Test cases for diff_fields."""
    
    def test_title_change_single_entry(self):
        """Test a title change yields exactly one entry."""
        changes = diff_fields(make_before(), {'title': 'Daily Standup'})
        
        assert changes == [
            FieldChange(field='title', old_value='Standup',
                        new_value='Daily Standup')
        ]
    
    def test_unchanged_description_is_empty(self):
        """Test an identical description produces no changes."""
        assert diff_fields(make_before(), {'description': 'old'}) == []
    
    def test_profiles_reordered_is_not_a_change(self):
        """Test participant order does not matter."""
        assert diff_fields(make_before(), {'profiles': ['p2', 'p1']}) == []
    
    def test_profiles_membership_change(self):
        changes = diff_fields(make_before(), {'profiles': ['p1', 'p3']})
        
        assert len(changes) == 1
        assert changes[0].field == 'profiles'
        assert changes[0].old_value == ['p1', 'p2']
        assert changes[0].new_value == ['p1', 'p3']
    
    def test_same_instant_in_other_zone_is_not_a_change(self):
        """Test instants compare as absolute points in time."""
        paris = pytz.timezone('Europe/Paris')
        same = utc(2024, 6, 1, 14, 0).astimezone(paris)
        assert diff_fields(make_before(), {'start_instant': same}) == []
    
    def test_sub_millisecond_difference_is_not_a_change(self):
        nearly = utc(2024, 6, 1, 14, 0, 0, 400)
        assert diff_fields(make_before(), {'start_instant': nearly}) == []
    
    def test_millisecond_difference_is_a_change(self):
        later = utc(2024, 6, 1, 14, 0, 0, 1000)
        changes = diff_fields(make_before(), {'start_instant': later})
        assert [c.field for c in changes] == ['start_instant']
    
    def test_missing_and_empty_description_are_equal(self):
        before = make_before(description=None)
        assert diff_fields(before, {'description': ''}) == []
    
    def test_absent_fields_are_ignored(self):
        """Test None values mean 'not supplied'."""
        assert diff_fields(make_before(), {'title': None, 'timezone': None}) == []
    
    def test_output_follows_field_order(self):
        """Test entries come out in audited field order, not patch order."""
        patch = {
            'end_instant': utc(2024, 6, 1, 15, 0),
            'timezone': 'Europe/Paris',
            'title': 'Retro',
        }
        changes = diff_fields(make_before(), patch)
        assert [c.field for c in changes] == ['title', 'timezone', 'end_instant']
    
    def test_fields_of_interest_limits_comparison(self):
        changes = diff_fields(
            make_before(),
            {'title': 'Retro', 'timezone': 'UTC'},
            fields_of_interest=('timezone',)
        )
        assert [c.field for c in changes] == ['timezone']
    
    def test_unknown_patch_keys_are_ignored(self):
        assert diff_fields(make_before(), {'location': 'Room 1'}) == []


class TestSnapshotAndSerialization:
    """Test cases for snapshot and value serialization."""
    
    def test_snapshot_contains_audited_fields(self):
        event = Event(
            event_id='e1',
            title='Standup',
            description=None,
            profiles=['p1'],
            timezone='UTC',
            start_instant=utc(2024, 6, 1, 10),
            end_instant=utc(2024, 6, 1, 11),
            created_by='p1',
            created_at=utc(2024, 5, 1),
            updated_at=utc(2024, 5, 1)
        )
        
        assert set(snapshot(event)) == set(AUDITED_FIELDS)
        assert snapshot(event)['title'] == 'Standup'
    
    def test_serialize_instant(self):
        assert serialize_value(utc(2024, 6, 1, 10)) == '2024-06-01T10:00:00.000Z'
    
    def test_describe_change(self):
        change = FieldChange('end_instant', utc(2024, 6, 1, 11),
                             utc(2024, 6, 1, 12))
        assert describe_change(change) == {
            'field': 'end_instant',
            'old_value': '2024-06-01T11:00:00.000Z',
            'new_value': '2024-06-01T12:00:00.000Z'
        }
