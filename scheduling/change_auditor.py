"""Field-level change detection for event audit logs."""
from datetime import datetime
from typing import Any, Dict, List, Sequence

from scheduling.interval import format_instant, truncate_to_millis
from scheduling.models import Event, FieldChange

AUDITED_FIELDS = (
    'title',
    'description',
    'profiles',
    'timezone',
    'start_instant',
    'end_instant',
)


def snapshot(event: Event) -> Dict[str, Any]:
    """Return the auditable fields of an event."""
    return {name: getattr(event, name) for name in AUDITED_FIELDS}


def _values_equal(field_name: str, old: Any, new: Any) -> bool:
    if field_name == 'profiles':
        # Participant lists are sets; order is not meaningful
        return set(old or []) == set(new or [])

    if isinstance(old, datetime) and isinstance(new, datetime):
        return truncate_to_millis(old) == truncate_to_millis(new)

    if field_name == 'description':
        return (old or '') == (new or '')

    return old == new


def diff_fields(before: Dict[str, Any], proposed_patch: Dict[str, Any],
                fields_of_interest: Sequence[str] = AUDITED_FIELDS
                ) -> List[FieldChange]:
    """
    Compare a proposed partial update against the persisted snapshot.

    Only fields present in proposed_patch with a non-None value are
    considered. The result follows the order of fields_of_interest and
    holds at most one entry per field.

    Args:
        before: Current auditable field values
        proposed_patch: New values for a subset of fields
        fields_of_interest: Field names eligible for auditing

    Returns:
        List of FieldChange entries; empty when nothing changed
    """
    changes = []

    for field_name in fields_of_interest:
        if proposed_patch.get(field_name) is None:
            continue

        old_value = before.get(field_name)
        new_value = proposed_patch[field_name]

        if _values_equal(field_name, old_value, new_value):
            continue

        changes.append(FieldChange(
            field=field_name,
            old_value=old_value,
            new_value=new_value
        ))

    return changes


def serialize_value(value: Any) -> Any:
    """Convert an audited value into a DynamoDB/JSON friendly form."""
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, (list, tuple, set)):
        return [serialize_value(v) for v in value]
    return value


def describe_change(change: FieldChange) -> Dict[str, Any]:
    return {
        'field': change.field,
        'old_value': serialize_value(change.old_value),
        'new_value': serialize_value(change.new_value)
    }
