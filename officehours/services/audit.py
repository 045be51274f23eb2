import json
import logging

audit_logger = logging.getLogger('officehours.audit')

APPOINTMENT_BOOKED = 'APPOINTMENT_BOOKED'
APPOINTMENT_CANCELLED = 'APPOINTMENT_CANCELLED'
APPOINTMENT_UPDATED = 'APPOINTMENT_UPDATED'
WAITLIST_JOINED = 'WAITLIST_JOINED'
WAITLIST_LEFT = 'WAITLIST_LEFT'
WAITLIST_PROMOTED = 'WAITLIST_PROMOTED'
REMINDER_SENT = 'REMINDER_SENT'
SLOT_CREATED = 'SLOT_CREATED'
SLOTS_BULK_CREATED = 'SLOTS_BULK_CREATED'
SLOT_UPDATED = 'SLOT_UPDATED'
SLOT_DELETED = 'SLOT_DELETED'
RECURRING_PATTERN_CREATED = 'RECURRING_PATTERN_CREATED'
RECURRING_PATTERN_DELETED = 'RECURRING_PATTERN_DELETED'
SLOTS_GENERATED = 'SLOTS_GENERATED'


def completion_action(status: str) -> str:
    return 'APPOINTMENT_' + status.upper().replace('-', '_')


def record(actor_id: int | None, action: str, details: dict | None = None) -> None:
    """Write an audit record. Never raises."""
    try:
        payload = json.dumps(details or {}, default=str, sort_keys=True)
    except (TypeError, ValueError):
        payload = repr(details)
    audit_logger.info('%s | user=%s | %s', action, actor_id if actor_id is not None else 'system', payload)


def record_effect(_db, actor_id: int | None, action: str, details: dict | None = None) -> None:
    """Outbox-compatible wrapper around ``record``."""
    record(actor_id, action, details)
