"""Estimate lifecycle: draft -> sent -> viewed -> accepted | declined.

``expired`` is never stored. It is derived on read from ``valid_until`` so
that a status flag can never go stale. No transition is allowed while an
estimate is expired; a draft can get a new validity date instead.
"""

import logging
from datetime import datetime
from typing import Any

from backoffice.documents.errors import InvalidStateTransitionError, ValidationError
from backoffice.documents.line_items import ensure_ready_to_issue, update_details
from backoffice.documents.schema import EffectiveEstimateStatus, EstimateDocument, EstimateStatus

logger = logging.getLogger(__name__)

DETAIL_FIELDS = frozenset({"service_address", "billing_address", "notes", "terms_and_conditions"})

# transition name -> states it may start from
ALLOWED_FROM: dict[str, tuple[EstimateStatus, ...]] = {
    "send": ("draft",),
    "mark viewed": ("sent",),
    "accept": ("sent", "viewed"),
    "decline": ("sent", "viewed"),
}


def is_estimate_expired(estimate: EstimateDocument, now: datetime) -> bool:
    """An estimate is expired once ``now`` passes ``valid_until`` unless accepted."""
    return now > estimate.valid_until and estimate.status != "accepted"


def get_estimate_status(estimate: EstimateDocument, now: datetime) -> EffectiveEstimateStatus:
    """Status to display: the stored status with ``expired`` overlaid.

    Declined estimates keep showing as declined; the customer's decision
    outranks the lapse of the offer.
    """
    if estimate.status != "declined" and is_estimate_expired(estimate, now):
        return "expired"
    return estimate.status


def _transition(
    estimate: EstimateDocument, transition: str, now: datetime, update: dict[str, Any]
) -> EstimateDocument:
    if estimate.status not in ALLOWED_FROM[transition]:
        raise InvalidStateTransitionError("estimate", transition, estimate.status)
    if is_estimate_expired(estimate, now):
        raise InvalidStateTransitionError("estimate", transition, "expired")

    logger.debug(f"Estimate {estimate.document_number}: {estimate.status} -> {update['status']}")
    return estimate.model_copy(update={**update, "updated_at": now})


def send_estimate(estimate: EstimateDocument, now: datetime) -> EstimateDocument:
    """Mark a draft estimate as sent to the customer.

    Raises:
        InvalidStateTransitionError: If the estimate is not a live draft
        ValidationError: If customer or line items are missing
    """
    if estimate.status == "draft":
        ensure_ready_to_issue(estimate)
    return _transition(estimate, "send", now, {"status": "sent", "sent_at": now})


def mark_estimate_viewed(estimate: EstimateDocument, now: datetime) -> EstimateDocument:
    return _transition(estimate, "mark viewed", now, {"status": "viewed", "viewed_at": now})


def accept_estimate(estimate: EstimateDocument, now: datetime) -> EstimateDocument:
    """Record customer acceptance. Accepted estimates may then be converted."""
    return _transition(estimate, "accept", now, {"status": "accepted", "accepted_at": now})


def decline_estimate(estimate: EstimateDocument, now: datetime) -> EstimateDocument:
    return _transition(estimate, "decline", now, {"status": "declined", "declined_at": now})


def set_estimate_validity(
    estimate: EstimateDocument, valid_until: datetime, now: datetime
) -> EstimateDocument:
    """Move the validity date of a draft estimate.

    Raises:
        InvalidStateTransitionError: If the estimate was already sent
        ValidationError: If ``valid_until`` is not in the future
    """
    if estimate.status != "draft":
        raise InvalidStateTransitionError("estimate", "change validity of", estimate.status)
    if valid_until <= now:
        raise ValidationError("Estimate validity date must be in the future")
    return estimate.model_copy(update={"valid_until": valid_until, "updated_at": now})


def update_estimate_details(
    estimate: EstimateDocument, changes: dict[str, Any], now: datetime
) -> EstimateDocument:
    """Edit addresses, notes or terms of a draft estimate."""
    return update_details(estimate, changes, DETAIL_FIELDS, now)
