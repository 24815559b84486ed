"""Invoice numbering, payments, updates, reminders and the overdue sweep."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from sqlalchemy import func, select

from wholesale.application.audit import AuditLogger
from wholesale.application.errors import (
    ConflictError, InvalidInputError, NotFoundError, PersistenceError, UnauthorizedError,
)
from wholesale.application.invoicing import InvoiceService, calculate_invoice_status, generate_invoice_number
from wholesale.application.lifecycle import OrderLifecycleCoordinator
from wholesale.application.rbac import Actor
from wholesale.application.schemas import InvoiceUpdate, OrderUpdate, PaymentCreate
from wholesale.domain.models import AuditLog, Invoice, InvoiceStatus, OrderStatus, Role, utcnow
from conftest import FailingDispatcher


def numbers(*values):
    return iter(values).__next__


@pytest.fixture
def approve(db, dispatcher, manager):
    def _approve(order, number_factory=None):
        invoices = InvoiceService(db, number_factory=number_factory) if number_factory else None
        coordinator = OrderLifecycleCoordinator(db, dispatcher, invoices=invoices)
        return coordinator.update_status(order.id, OrderUpdate(status=OrderStatus.APPROVED), manager).invoice
    return _approve


@pytest.fixture
def invoice(place_order, approve):
    return approve(place_order())


class TestNumbering:
    def test_format(self):
        number = generate_invoice_number(datetime(2025, 3, 7))
        assert number.startswith("GBINV-250307-")
        assert len(number.split("-")[2]) == 4

    def test_collision_is_retried(self, db, place_order, approve):
        approve(place_order(), numbers("GBINV-250101-AAAA"))
        second = approve(place_order(), numbers("GBINV-250101-AAAA", "GBINV-250101-BBBB"))
        assert second.invoice_number == "GBINV-250101-BBBB"
        assert db.scalar(select(func.count(Invoice.id))) == 2

    def test_gives_up_after_repeated_collisions(self, db, place_order, approve):
        approve(place_order(), numbers("GBINV-250101-AAAA"))
        order = place_order()
        with pytest.raises(PersistenceError):
            approve(order, lambda: "GBINV-250101-AAAA")
        db.expire_all()
        assert order.status == OrderStatus.PENDING.value
        assert db.scalar(select(func.count(Invoice.id))) == 1

    def test_second_invoice_for_order_conflicts(self, db, place_order, approve):
        order = place_order()
        approve(order)
        with pytest.raises(ConflictError):
            InvoiceService(db).create_for_order(order)


class TestInvoiceStatus:
    def test_pending_past_due_is_overdue(self):
        due = datetime(2025, 1, 15)
        assert calculate_invoice_status(due, "PENDING", now=datetime(2025, 1, 16)) == "OVERDUE"
        assert calculate_invoice_status(due, "PENDING", now=datetime(2025, 1, 14)) == "PENDING"

    @pytest.mark.parametrize("status", ["PAID", "CANCELLED", "DRAFT", "OVERDUE"])
    def test_other_statuses_are_kept(self, status):
        assert calculate_invoice_status(datetime(2025, 1, 1), status, now=datetime(2025, 6, 1)) == status


class TestPayments:
    def test_partial_then_full_payment(self, db, invoice, manager):
        service = InvoiceService(db)
        service.record_payment(invoice.id, PaymentCreate(amount=Decimal("200.00")), manager)
        assert invoice.status == InvoiceStatus.PENDING.value
        assert invoice.paid_at is None

        service.record_payment(invoice.id, PaymentCreate(amount=Decimal("250.00"), method="WIRE", reference="W-1"), manager)
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.paid_at is not None
        assert invoice.payment_method == "WIRE"
        assert [p.amount for p in invoice.payments] == [Decimal("200.00"), Decimal("250.00")]

        entries = db.scalars(select(AuditLog).where(AuditLog.action == "PAYMENT_RECORDED").order_by(AuditLog.id)).all()
        assert [e.meta["newStatus"] for e in entries] == ["PENDING", "PAID"]
        assert entries[1].meta["amountPaid"] == 450.0

    def test_pending_payments_do_not_settle(self, db, invoice, manager):
        InvoiceService(db).record_payment(invoice.id, PaymentCreate(amount=Decimal("450.00"), status="PENDING"), manager)
        assert invoice.status == InvoiceStatus.PENDING.value

    def test_cancelled_invoice(self, db, invoice, manager):
        service = InvoiceService(db)
        service.update(invoice.id, InvoiceUpdate(status=InvoiceStatus.CANCELLED), manager)
        with pytest.raises(InvalidInputError):
            service.record_payment(invoice.id, PaymentCreate(amount=Decimal("10.00")), manager)

    def test_unknown_invoice(self, db, manager):
        with pytest.raises(NotFoundError):
            InvoiceService(db).record_payment(12345, PaymentCreate(amount=Decimal("1.00")), manager)


class TestUpdate:
    def test_staff_marks_paid(self, db, invoice, manager):
        updated = InvoiceService(db).update(
            invoice.id, InvoiceUpdate(status=InvoiceStatus.PAID, payment_method="CHECK"), manager
        )
        assert updated.status == InvoiceStatus.PAID.value
        assert updated.paid_at is not None
        entry = db.scalar(select(AuditLog).where(AuditLog.action == "INVOICE_UPDATED"))
        assert entry.meta["changes"]["status"] == ["PENDING", "PAID"]
        assert entry.meta["changes"]["payment_method"] == [None, "CHECK"]

    def test_reopening_clears_paid_at(self, db, invoice, manager):
        service = InvoiceService(db)
        service.update(invoice.id, InvoiceUpdate(status=InvoiceStatus.PAID), manager)
        service.update(invoice.id, InvoiceUpdate(status=InvoiceStatus.PENDING), manager)
        assert invoice.paid_at is None

    def test_due_date_is_stored_naive_utc(self, db, invoice, manager):
        due = datetime(2030, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=-4)))
        InvoiceService(db).update(invoice.id, InvoiceUpdate(due_date=due), manager)
        assert invoice.due_date == datetime(2030, 5, 1, 16, 0)

    def test_owner_may_edit_notes(self, db, invoice, customer):
        updated = InvoiceService(db).update(invoice.id, InvoiceUpdate(notes="PO 4471"), customer)
        assert updated.notes == "PO 4471"

    def test_owner_may_not_change_status(self, db, invoice, customer):
        with pytest.raises(UnauthorizedError):
            InvoiceService(db).update(invoice.id, InvoiceUpdate(status=InvoiceStatus.PAID), customer)
        assert invoice.status == InvoiceStatus.PENDING.value

    def test_other_customer_is_refused(self, db, invoice, seed):
        stranger = Actor(user_id=seed["other"], role=Role.VERIFIED)
        with pytest.raises(UnauthorizedError):
            InvoiceService(db).get(invoice.id, stranger)

    def test_unchanged_values_write_nothing(self, db, invoice, manager):
        InvoiceService(db).update(invoice.id, InvoiceUpdate(status=InvoiceStatus.PENDING), manager)
        assert db.scalar(select(func.count(AuditLog.id)).where(AuditLog.action == "INVOICE_UPDATED")) == 0


class TestListing:
    def test_customer_sees_own_invoices(self, db, place_order, approve, seed, customer, manager):
        mine = approve(place_order())
        other = Actor(user_id=seed["other"], role=Role.VERIFIED)
        theirs = approve(place_order(actor=other))

        service = InvoiceService(db)
        assert [i.id for i in service.list(customer)] == [mine.id]
        assert {i.id for i in service.list(manager)} == {mine.id, theirs.id}
        assert service.list(manager, status=InvoiceStatus.PAID) == []


class TestReminders:
    def test_sent(self, db, invoice, manager, dispatcher):
        sent, error = InvoiceService(db).send_reminder(invoice.id, manager, dispatcher, "https://shop.example")
        assert error is None
        assert sent.id == invoice.id
        reminder = dispatcher.reminders[-1]
        assert reminder.to == "buyer@dispensary.com"
        assert reminder.days_overdue == 0
        assert not reminder.is_final
        entry = db.scalar(select(AuditLog).where(AuditLog.action == "INVOICE_REMINDER_SENT"))
        assert entry.meta["invoiceNumber"] == invoice.invoice_number

    def test_failure_is_reported_and_audited(self, db, invoice, manager):
        _, error = InvoiceService(db).send_reminder(
            invoice.id, manager, FailingDispatcher(), "https://shop.example", final=True
        )
        assert "unreachable" in error
        entry = db.scalar(select(AuditLog).where(AuditLog.action == "EMAIL_FAILED"))
        assert entry.entity == "Invoice"
        assert entry.entity_id == str(invoice.id)

    def test_paid_invoice_needs_no_reminder(self, db, invoice, manager, dispatcher):
        service = InvoiceService(db)
        service.update(invoice.id, InvoiceUpdate(status=InvoiceStatus.PAID), manager)
        with pytest.raises(InvalidInputError):
            service.send_reminder(invoice.id, manager, dispatcher, "https://shop.example")
        assert dispatcher.reminders == []


class TestOverdueSweep:
    def test_marks_only_pending_past_due(self, db, place_order, approve, manager):
        late = approve(place_order())
        paid = approve(place_order())
        InvoiceService(db).update(paid.id, InvoiceUpdate(status=InvoiceStatus.PAID), manager)

        updated = InvoiceService(db).mark_overdue(manager, now=utcnow() + timedelta(days=16))

        assert [i.id for i in updated] == [late.id]
        assert late.status == InvoiceStatus.OVERDUE.value
        assert paid.status == InvoiceStatus.PAID.value
        entry = db.scalar(select(AuditLog).where(AuditLog.action == "INVOICE_OVERDUE"))
        assert entry.meta["newStatus"] == "OVERDUE"

    def test_nothing_due(self, db, invoice, manager):
        assert InvoiceService(db).mark_overdue(manager) == []
        assert invoice.status == InvoiceStatus.PENDING.value


class TestAuditQuery:
    def test_filters(self, db, invoice, manager):
        logger = AuditLogger(db)
        assert [e.action for e in logger.list(entity="Invoice")] == []
        actions = [e.action for e in logger.list(entity="OrderRequest")]
        assert set(actions) == {"CREATE_ORDER", "ORDER_APPROVED"}
        assert len(logger.list(limit=1)) == 1
        assert [e.action for e in logger.list(action="ORDER_APPROVED")] == ["ORDER_APPROVED"]
