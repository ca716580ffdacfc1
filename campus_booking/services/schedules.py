from datetime import datetime, timezone

from campus_booking.services.documents import TEACHER_SCHEDULES, DocumentNotFound, DocumentStore

AVAILABLE_SLOTS = 'available_slots'


def normalize_slot(value: datetime) -> datetime:
    # Naive instants are taken as UTC; seconds are dropped like the slot picker does.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(second=0, microsecond=0)


def slot_key(value: datetime) -> str:
    return normalize_slot(value).isoformat()


def list_slots(store: DocumentStore, teacher_id: str) -> list[datetime]:
    snapshot = store.get(TEACHER_SCHEDULES, teacher_id)
    if not snapshot.exists:
        return []
    return sorted(datetime.fromisoformat(raw) for raw in snapshot.data.get(AVAILABLE_SLOTS) or [])


def add_slot(store: DocumentStore, teacher_id: str, slot: datetime) -> bool:
    """Append ``slot`` to the schedule. Returns True when the schedule was created."""
    key = slot_key(slot)
    try:
        store.array_union(TEACHER_SCHEDULES, teacher_id, AVAILABLE_SLOTS, [key])
    except DocumentNotFound:
        store.set(TEACHER_SCHEDULES, teacher_id, {AVAILABLE_SLOTS: [key]})
        return True
    return False


def has_slot(store: DocumentStore, teacher_id: str, slot: datetime) -> bool:
    snapshot = store.get(TEACHER_SCHEDULES, teacher_id)
    return snapshot.exists and slot_key(slot) in (snapshot.data.get(AVAILABLE_SLOTS) or [])
