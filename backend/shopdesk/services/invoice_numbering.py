# Overview: Invoice number allocation; atomic per-scope serials and the number format.

"""
Invoice numbering

SCOPE: serials are unique and strictly increasing per (org, prefix, period).
The prefix stored on the counter includes the branch code when branch
prefixing is on, so each outlet gets its own sequence.

FORMAT: {prefix}{branch_code-}{serial zero-padded}{-period}
    INV-, padding 4, serial 7               -> INV-0007
    INV-, padding 4, serial 7, 2024-06      -> INV-0007-2024-06
    A,    padding 4, serial 1, 2024-06      -> A0001-2024-06
    INV-, padding 4, serial 12, branch BLR  -> INV-BLR-0012

ALLOCATION: allocate_invoice_number runs inside the caller's transaction so
the counter bump and the invoice insert commit (or roll back) together.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InvoiceCounter


class InvoiceNumberingConflict(Exception):
    """Concurrent allocation collided; the unit of work should be retried."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class AllocatedNumber:
    invoice_number: str
    prefix: str
    serial: int
    period: str | None


def compute_period(reset_cycle: str, at: datetime) -> str | None:
    """never -> None, monthly -> "YYYY-MM", yearly -> "YYYY"."""
    if reset_cycle == "never":
        return None
    if reset_cycle == "monthly":
        return f"{at.year:04d}-{at.month:02d}"
    if reset_cycle == "yearly":
        return f"{at.year:04d}"
    raise ValueError(f"Unknown invoice reset cycle: {reset_cycle}")


def scope_prefix(prefix: str, branch_code: str | None = None) -> str:
    """The literal text in front of the serial."""
    if branch_code:
        return f"{prefix}{branch_code}-"
    return prefix


def format_invoice_number(
    prefix: str,
    serial: int,
    padding: int,
    period: str | None = None,
    branch_code: str | None = None,
) -> str:
    if serial < 1:
        raise ValueError("serial must be >= 1")
    number = f"{scope_prefix(prefix, branch_code)}{serial:0{padding}d}"
    if period:
        number = f"{number}-{period}"
    return number


_NUMBER_TAIL = re.compile(r"^(?P<serial>\d+)(?:-(?P<period>\d{4}(?:-\d{2})?))?$")


def parse_invoice_number(number: str, prefix: str, branch_code: str | None = None) -> tuple[int, str | None]:
    """
    Inverse of format_invoice_number: returns (serial, period).

    Raises ValueError if the number was not produced with this prefix.
    """
    head = scope_prefix(prefix, branch_code)
    if not number.startswith(head):
        raise ValueError(f"Invoice number {number!r} does not start with {head!r}")
    match = _NUMBER_TAIL.match(number[len(head):])
    if not match:
        raise ValueError(f"Invoice number {number!r} is not well formed")
    return int(match.group("serial")), match.group("period")


def _bump_counter(org_id: int, prefix: str, period: str) -> int | None:
    stmt = (
        update(InvoiceCounter)
        .where(
            InvoiceCounter.org_id == org_id,
            InvoiceCounter.prefix == prefix,
            InvoiceCounter.period == period,
        )
        .values(last_serial=InvoiceCounter.last_serial + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    return (
        db.session.query(InvoiceCounter.last_serial)
        .filter_by(org_id=org_id, prefix=prefix, period=period)
        .scalar()
    )


def allocate_invoice_number(
    org_id: int,
    config,
    issued_at: datetime,
    branch_code: str | None = None,
) -> AllocatedNumber:
    """
    Reserve the next serial in the scope derived from config and issued_at.

    The counter row is bumped with a single UPDATE ... SET last_serial =
    last_serial + 1, which the database serializes per row. The first
    allocation in a scope inserts the row; if a concurrent request inserted
    it first the unique constraint fires and InvoiceNumberingConflict is
    raised so the caller rolls back and retries the whole unit of work.

    Does not commit.
    """
    period = compute_period(config.reset_cycle, issued_at)
    prefix = scope_prefix(config.prefix, branch_code if config.branch_prefix_enabled else None)
    period_key = period or ""

    serial = _bump_counter(org_id, prefix, period_key)
    if serial is None:
        counter = InvoiceCounter(org_id=org_id, prefix=prefix, period=period_key, last_serial=1)
        db.session.add(counter)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise InvoiceNumberingConflict(
                "Invoice counter was created concurrently",
                details={"org_id": org_id, "prefix": prefix, "period": period},
            ) from exc
        serial = 1

    return AllocatedNumber(
        invoice_number=format_invoice_number(prefix, serial, config.padding, period),
        prefix=prefix,
        serial=serial,
        period=period,
    )
