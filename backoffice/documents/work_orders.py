"""Work order lifecycle.

draft -> scheduled -> in_progress <-> on_hold -> completed, with cancelled
reachable from every non-terminal state. Completed work orders that have not
been invoiced yet are eligible for invoice conversion.
"""

import logging
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from backoffice.documents.errors import InvalidStateTransitionError, ValidationError
from backoffice.documents.line_items import ensure_ready_to_issue, update_details
from backoffice.documents.money import round2
from backoffice.documents.schema import Priority, TimeEntry, WorkOrderDocument, WorkOrderStatus

logger = logging.getLogger(__name__)

DETAIL_FIELDS = frozenset(
    {"service_address", "scheduled_time", "instructions", "customer_notes", "internal_notes"}
)

TERMINAL_STATES: tuple[WorkOrderStatus, ...] = ("completed", "cancelled")

ALLOWED_FROM: dict[str, tuple[WorkOrderStatus, ...]] = {
    "schedule": ("draft", "scheduled"),
    "start": ("scheduled", "on_hold"),
    "put on hold": ("in_progress",),
    "complete": ("in_progress",),
    "cancel": ("draft", "scheduled", "in_progress", "on_hold"),
}


def _transition(
    work_order: WorkOrderDocument, transition: str, now: datetime, update: dict[str, Any]
) -> WorkOrderDocument:
    if work_order.status not in ALLOWED_FROM[transition]:
        raise InvalidStateTransitionError("work order", transition, work_order.status)

    logger.debug(f"Work order {work_order.document_number}: {work_order.status} -> {update['status']}")
    return work_order.model_copy(update={**update, "updated_at": now})


def _ensure_open(work_order: WorkOrderDocument, action: str) -> None:
    if work_order.status in TERMINAL_STATES:
        raise InvalidStateTransitionError("work order", action, work_order.status)


def schedule_work_order(
    work_order: WorkOrderDocument,
    scheduled_date: date,
    now: datetime,
    scheduled_time: str | None = None,
) -> WorkOrderDocument:
    """Schedule a draft work order, or reschedule a scheduled one.

    Raises:
        InvalidStateTransitionError: If work has started or ended
        ValidationError: If customer or line items are missing
    """
    if work_order.status == "draft":
        ensure_ready_to_issue(work_order)
    return _transition(
        work_order,
        "schedule",
        now,
        {"status": "scheduled", "scheduled_date": scheduled_date, "scheduled_time": scheduled_time},
    )


def start_work_order(work_order: WorkOrderDocument, now: datetime) -> WorkOrderDocument:
    """Begin or resume work. ``started_at`` records the first start only."""
    update: dict[str, Any] = {"status": "in_progress"}
    if work_order.started_at is None:
        update["started_at"] = now
    return _transition(work_order, "start", now, update)


def put_work_order_on_hold(work_order: WorkOrderDocument, now: datetime) -> WorkOrderDocument:
    return _transition(work_order, "put on hold", now, {"status": "on_hold"})


def complete_work_order(work_order: WorkOrderDocument, now: datetime) -> WorkOrderDocument:
    return _transition(work_order, "complete", now, {"status": "completed", "completed_at": now})


def cancel_work_order(work_order: WorkOrderDocument, now: datetime) -> WorkOrderDocument:
    return _transition(work_order, "cancel", now, {"status": "cancelled"})


def is_ready_for_invoicing(work_order: WorkOrderDocument) -> bool:
    return work_order.status == "completed" and work_order.converted_to_invoice_id is None


def assign_work_order(
    work_order: WorkOrderDocument, member_ids: Sequence[str], now: datetime
) -> WorkOrderDocument:
    """Replace the crew assigned to an open work order (duplicates dropped, order kept)."""
    _ensure_open(work_order, "assign")
    assigned = list(dict.fromkeys(member_id for member_id in member_ids if member_id))
    return work_order.model_copy(update={"assigned_to": assigned, "updated_at": now})


def set_work_order_priority(
    work_order: WorkOrderDocument, priority: Priority, now: datetime
) -> WorkOrderDocument:
    _ensure_open(work_order, "reprioritize")
    return work_order.model_copy(update={"priority": priority, "updated_at": now})


def update_work_order_details(
    work_order: WorkOrderDocument, changes: dict[str, Any], now: datetime
) -> WorkOrderDocument:
    """Edit address, arrival window or notes while the work order is open."""
    return update_details(work_order, changes, DETAIL_FIELDS, now)


def build_time_entry(
    id: str,
    user_id: str,
    start_time: datetime,
    end_time: datetime | None = None,
    hours: Decimal | float | None = None,
    user_name: str = "",
    notes: str | None = None,
) -> TimeEntry:
    """Create a time entry, deriving hours from start and end when not given.

    Raises:
        ValidationError: If the entry ends before it starts
    """
    if end_time is not None and end_time < start_time:
        raise ValidationError("Time entry cannot end before it starts")
    if hours is None:
        if end_time is None:
            hours = Decimal("0")
        else:
            hours = round2(Decimal(str((end_time - start_time).total_seconds())) / Decimal(3600))
    try:
        return TimeEntry(
            id=id,
            user_id=user_id,
            user_name=user_name,
            start_time=start_time,
            end_time=end_time,
            hours=round2(hours),
            notes=notes,
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid time entry: {e}") from e


def add_time_entry(work_order: WorkOrderDocument, entry: TimeEntry, now: datetime) -> WorkOrderDocument:
    """Log labor time. Allowed while the work order is open."""
    _ensure_open(work_order, "log time on")
    if any(existing.id == entry.id for existing in work_order.time_tracking):
        raise ValidationError(f"Duplicate time entry id: {entry.id}")
    return work_order.model_copy(
        update={"time_tracking": [*work_order.time_tracking, entry], "updated_at": now}
    )


def update_time_entry(
    work_order: WorkOrderDocument, entry_id: str, changes: dict[str, Any], now: datetime
) -> WorkOrderDocument:
    """Correct a logged time entry on an open work order.

    Hours are derived again from the new start and end unless ``hours`` is
    part of the change.

    Raises:
        InvalidStateTransitionError: If the work order is completed or cancelled
        ValidationError: If the entry is unknown or the change is invalid
    """
    _ensure_open(work_order, "edit time on")
    if "id" in changes:
        raise ValidationError("Time entry id cannot be changed")
    unknown = sorted(changes.keys() - TimeEntry.model_fields.keys())
    if unknown:
        raise ValidationError(f"Unknown time entry fields: {', '.join(unknown)}")
    cleared = sorted(name for name in ("user_id", "start_time") if name in changes and changes[name] is None)
    if cleared:
        raise ValidationError(f"Time entry fields cannot be null: {', '.join(cleared)}")
    entries = {entry.id: entry for entry in work_order.time_tracking}
    if entry_id not in entries:
        raise ValidationError(f"Unknown time entry id: {entry_id}")

    current = entries[entry_id].model_dump()
    if "hours" not in changes and changes.keys() & {"start_time", "end_time"}:
        current["hours"] = None
    merged = {**current, **changes}
    revised = build_time_entry(
        id=entry_id,
        user_id=merged["user_id"],
        start_time=merged["start_time"],
        end_time=merged["end_time"],
        hours=merged["hours"],
        user_name=merged["user_name"],
        notes=merged["notes"],
    )
    time_tracking = [revised if entry.id == entry_id else entry for entry in work_order.time_tracking]
    return work_order.model_copy(update={"time_tracking": time_tracking, "updated_at": now})


def remove_time_entry(work_order: WorkOrderDocument, entry_id: str, now: datetime) -> WorkOrderDocument:
    _ensure_open(work_order, "edit time on")
    time_tracking = [entry for entry in work_order.time_tracking if entry.id != entry_id]
    if len(time_tracking) == len(work_order.time_tracking):
        raise ValidationError(f"Unknown time entry id: {entry_id}")
    return work_order.model_copy(update={"time_tracking": time_tracking, "updated_at": now})


def total_hours(work_order: WorkOrderDocument) -> Decimal:
    return round2(sum((entry.hours for entry in work_order.time_tracking), Decimal("0")))


def add_photo(work_order: WorkOrderDocument, photo_url: str, now: datetime) -> WorkOrderDocument:
    if photo_url in work_order.photos:
        return work_order
    return work_order.model_copy(update={"photos": [*work_order.photos, photo_url], "updated_at": now})


def remove_photo(work_order: WorkOrderDocument, photo_url: str, now: datetime) -> WorkOrderDocument:
    if photo_url not in work_order.photos:
        raise ValidationError(f"Photo not attached to work order: {photo_url}")
    photos = [url for url in work_order.photos if url != photo_url]
    return work_order.model_copy(update={"photos": photos, "updated_at": now})
