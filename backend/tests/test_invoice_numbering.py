"""Invoice number formatting, parsing and per-scope allocation."""

from datetime import datetime

import pytest

from shopdesk.extensions import db
from shopdesk.models import InvoiceCounter
from shopdesk.services.invoice_numbering import (
    allocate_invoice_number,
    compute_period,
    format_invoice_number,
    parse_invoice_number,
)
from shopdesk.services.invoice_settings_service import InvoiceConfig


def _config(**overrides):
    values = dict(
        enabled=True,
        prefix="INV-",
        branch_prefix_enabled=False,
        reset_cycle="monthly",
        padding=4,
        display_format="A4",
        include_logo=False,
        logo_url=None,
        gst_enabled=False,
        tax_rate_bps=0,
        currency="INR",
    )
    values.update(overrides)
    return InvoiceConfig(**values)


JUNE = datetime(2024, 6, 15, 10, 30)
JULY = datetime(2024, 7, 1, 0, 0)


class TestComputePeriod:
    def test_never_has_no_period(self):
        assert compute_period("never", JUNE) is None

    def test_monthly(self):
        assert compute_period("monthly", JUNE) == "2024-06"

    def test_yearly(self):
        assert compute_period("yearly", JUNE) == "2024"

    def test_unknown_cycle(self):
        with pytest.raises(ValueError):
            compute_period("weekly", JUNE)


class TestFormatInvoiceNumber:
    def test_plain(self):
        assert format_invoice_number("INV-", 7, 4) == "INV-0007"

    def test_monthly_period_suffix(self):
        assert format_invoice_number("INV-", 7, 4, period="2024-06") == "INV-0007-2024-06"

    def test_prefix_without_separator(self):
        assert format_invoice_number("A", 1, 4, period="2024-06") == "A0001-2024-06"

    def test_branch_code(self):
        assert format_invoice_number("INV-", 12, 4, branch_code="BLR") == "INV-BLR-0012"

    def test_serial_wider_than_padding(self):
        assert format_invoice_number("INV-", 123456, 4) == "INV-123456"

    def test_rejects_zero_serial(self):
        with pytest.raises(ValueError):
            format_invoice_number("INV-", 0, 4)

    @pytest.mark.parametrize(
        "prefix,serial,padding,period,branch",
        [
            ("INV-", 7, 4, None, None),
            ("INV-", 7, 4, "2024-06", None),
            ("A", 1, 4, "2024-06", None),
            ("INV/", 99, 6, "2024", "MAIN"),
        ],
    )
    def test_parse_returns_serial_and_period(self, prefix, serial, padding, period, branch):
        number = format_invoice_number(prefix, serial, padding, period=period, branch_code=branch)
        assert parse_invoice_number(number, prefix, branch_code=branch) == (serial, period)

    def test_parse_rejects_foreign_prefix(self):
        with pytest.raises(ValueError):
            parse_invoice_number("BILL-0001", "INV-")

    def test_parse_rejects_garbage_tail(self):
        with pytest.raises(ValueError):
            parse_invoice_number("INV-00x1", "INV-")


class TestAllocateInvoiceNumber:
    def test_serials_increase_within_scope(self, db_session, org_a):
        config = _config(reset_cycle="never")
        numbers = [allocate_invoice_number(org_a.id, config, JUNE) for _ in range(3)]
        db_session.commit()

        assert [n.serial for n in numbers] == [1, 2, 3]
        assert [n.invoice_number for n in numbers] == ["INV-0001", "INV-0002", "INV-0003"]
        assert all(n.period is None for n in numbers)

    def test_monthly_reset(self, db_session, org_a):
        config = _config(prefix="A", reset_cycle="monthly", padding=4)

        june = allocate_invoice_number(org_a.id, config, JUNE)
        june_2 = allocate_invoice_number(org_a.id, config, JUNE)
        july = allocate_invoice_number(org_a.id, config, JULY)
        db_session.commit()

        assert june.invoice_number == "A0001-2024-06"
        assert june_2.invoice_number == "A0002-2024-06"
        assert july.serial == 1
        assert july.invoice_number == "A0001-2024-07"

    def test_yearly_period(self, db_session, org_a):
        allocated = allocate_invoice_number(org_a.id, _config(reset_cycle="yearly"), JUNE)
        db_session.commit()
        assert allocated.invoice_number == "INV-0001-2024"

    def test_branch_prefix_gives_each_outlet_its_own_sequence(self, db_session, org_a):
        config = _config(branch_prefix_enabled=True, reset_cycle="never")

        first_a1 = allocate_invoice_number(org_a.id, config, JUNE, branch_code="A1")
        first_a2 = allocate_invoice_number(org_a.id, config, JUNE, branch_code="A2")
        second_a1 = allocate_invoice_number(org_a.id, config, JUNE, branch_code="A1")
        db_session.commit()

        assert first_a1.invoice_number == "INV-A1-0001"
        assert first_a2.invoice_number == "INV-A2-0001"
        assert second_a1.invoice_number == "INV-A1-0002"

    def test_branch_code_ignored_when_disabled(self, db_session, org_a):
        allocated = allocate_invoice_number(org_a.id, _config(reset_cycle="never"), JUNE, branch_code="A1")
        db_session.commit()
        assert allocated.invoice_number == "INV-0001"

    def test_scopes_are_per_organization(self, db_session, org_a, org_b):
        config = _config(reset_cycle="never")
        a = allocate_invoice_number(org_a.id, config, JUNE)
        b = allocate_invoice_number(org_b.id, config, JUNE)
        db_session.commit()
        assert a.serial == b.serial == 1

    def test_rolled_back_allocation_is_reused(self, db_session, org_a):
        """A rolled-back allocation leaves the counter where it was."""
        config = _config(reset_cycle="never")
        allocate_invoice_number(org_a.id, config, JUNE)
        db_session.commit()

        allocate_invoice_number(org_a.id, config, JUNE)
        db_session.rollback()

        again = allocate_invoice_number(org_a.id, config, JUNE)
        db_session.commit()
        assert again.serial == 2

        counter = db.session.query(InvoiceCounter).filter_by(org_id=org_a.id).one()
        assert counter.last_serial == 2
        assert counter.period == ""
