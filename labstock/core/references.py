"""Helpers for the human-readable identifiers printed on ledger entries.

Two kinds of identifier exist:

* group ids (``TRX-ADD-...``, ``TRX-ISS-...``, ``TRX-BAT-...``) that tie
  ledger entries of one operation together. The prefix tells a batch issue
  apart from a single one.
* issue reference numbers such as ``LAMBDA/UTL/2024-25/007`` that are
  numbered per financial year.
"""

from __future__ import annotations

import re
import time
from datetime import date, datetime
from uuid import uuid4

__all__ = [
    "ADD_PREFIX",
    "BATCH_PREFIX",
    "ISSUE_PREFIX",
    "financial_year",
    "format_reference_number",
    "generate_transaction_id",
    "is_batch_transaction_id",
    "reference_sequence",
]

ADD_PREFIX = "TRX-ADD-"
ISSUE_PREFIX = "TRX-ISS-"
BATCH_PREFIX = "TRX-BAT-"

_PREFIXES = {"ADD": ADD_PREFIX, "ISSUE": ISSUE_PREFIX, "BATCH": BATCH_PREFIX}
_SEQUENCE_RE = re.compile(r"/(\d+)$")


def generate_transaction_id(kind: str) -> str:
    """Return a fresh group id for ``kind`` (``ADD``, ``ISSUE`` or ``BATCH``)."""

    try:
        prefix = _PREFIXES[kind]
    except KeyError:
        raise ValueError(f"unknown transaction kind: {kind!r}") from None
    millis = int(time.time() * 1000)
    return f"{prefix}{millis}-{uuid4().hex[:12]}"


def is_batch_transaction_id(transaction_id: str | None) -> bool:
    return bool(transaction_id) and transaction_id.startswith(BATCH_PREFIX)


def financial_year(on: date | datetime, start_month: int = 4) -> str:
    """Label of the financial year containing ``on``.

    With the default April start, 2024-05-10 and 2025-03-31 both belong to
    ``2024-25`` while 2025-04-01 opens ``2025-26``.
    """

    first_year = on.year if on.month >= start_month else on.year - 1
    if start_month == 1:
        return str(first_year)
    return f"{first_year}-{str(first_year + 1)[2:]}"


def format_reference_number(prefix: str, fiscal_year: str, sequence: int) -> str:
    return f"{prefix}/{fiscal_year}/{sequence:03d}"


def reference_sequence(reference_number: str | None) -> int:
    """Trailing sequence number of a reference, ``0`` when there is none."""

    if not reference_number:
        return 0
    match = _SEQUENCE_RE.search(reference_number.strip())
    return int(match.group(1)) if match else 0
