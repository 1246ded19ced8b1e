"""Per-type document numbering (EST-0001, WO-0001, INV-0001).

Numbers are derived from the caller-supplied history only: the next number is
the highest existing suffix for the prefix plus one. Gaps left by deletions
are never backfilled. Callers that allocate concurrently must insert under a
uniqueness check (see ``DocumentService``).
"""

import re
from collections.abc import Iterable

ESTIMATE_PREFIX = "EST"
WORK_ORDER_PREFIX = "WO"
INVOICE_PREFIX = "INV"

_NUMBER_PATTERN = re.compile(r"^([A-Z]+)-(\d+)$")


def format_document_number(prefix: str, number: int, min_digits: int = 4) -> str:
    """Format ``prefix-number`` with the number zero-padded to ``min_digits``."""
    return f"{prefix}-{number:0{min_digits}d}"


def parse_document_number(document_number: str) -> tuple[str, int] | None:
    """Split a document number into prefix and numeric suffix.

    Returns:
        (prefix, number) or None if the value is not a document number
    """
    match = _NUMBER_PATTERN.match(document_number.strip())
    if not match:
        return None
    return match.group(1), int(match.group(2))


def next_document_number(prefix: str, existing_numbers: Iterable[str], min_digits: int = 4) -> str:
    """Return the number following the highest existing one for ``prefix``.

    Values with another prefix or a non-numeric suffix are ignored.
    """
    highest = 0
    for value in existing_numbers:
        parsed = parse_document_number(value)
        if parsed and parsed[0] == prefix:
            highest = max(highest, parsed[1])
    return format_document_number(prefix, highest + 1, min_digits)


def generate_estimate_number(existing_numbers: Iterable[str], min_digits: int = 4) -> str:
    return next_document_number(ESTIMATE_PREFIX, existing_numbers, min_digits)


def generate_work_order_number(existing_numbers: Iterable[str], min_digits: int = 4) -> str:
    return next_document_number(WORK_ORDER_PREFIX, existing_numbers, min_digits)


def generate_invoice_number(existing_numbers: Iterable[str], min_digits: int = 4) -> str:
    return next_document_number(INVOICE_PREFIX, existing_numbers, min_digits)
