from __future__ import annotations
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional
import random
import string
from wholesale.domain.models import (
    Invoice, InvoiceStatus, OrderRequest, Payment, PaymentStatus, utcnow,
)
from shared.core import get_logger
from .audit import AuditLogger, ENTITY_INVOICE
from .errors import ConflictError, InvalidInputError, NotFoundError, PersistenceError, UnauthorizedError
from .notifications import NotificationDispatcher, reminder_for
from .rbac import Actor, ensure_owner_or_staff
from .schemas import InvoiceUpdate, PaymentCreate

logger = get_logger(__name__)

INVOICE_PREFIX = "GBINV"
DEFAULT_PAYMENT_TERM_DAYS = 15
MAX_NUMBER_ATTEMPTS = 5
SETTLED_STATUSES = (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value)


def _random_suffix(length: int = 4) -> str:
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))


def generate_invoice_number(now: Optional[datetime] = None) -> str:
    """``GBINV-YYMMDD-XXXX``; uniqueness is enforced by the database."""
    now = now or utcnow()
    return f"{INVOICE_PREFIX}-{now:%y%m%d}-{_random_suffix()}"


def calculate_invoice_status(due_date: datetime, current: str, now: Optional[datetime] = None) -> str:
    """PENDING invoices past their due date are OVERDUE; settled ones never change."""
    if current in SETTLED_STATUSES:
        return current
    now = now or utcnow()
    if now > due_date and current == InvoiceStatus.PENDING.value:
        return InvoiceStatus.OVERDUE.value
    return current


def _json_value(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


class InvoiceService:
    def __init__(
        self,
        db: Session,
        payment_term_days: int = DEFAULT_PAYMENT_TERM_DAYS,
        number_factory: Callable[[], str] = generate_invoice_number,
    ):
        self.db = db
        self.payment_term_days = payment_term_days
        self.number_factory = number_factory
        self.audit = AuditLogger(db)

    def create_for_order(self, order: OrderRequest) -> Invoice:
        """Create the order's invoice inside the caller's transaction.

        Each insert runs in a savepoint; a clashing invoice number is retried
        with a fresh one, a second invoice for the same order is a conflict.
        """
        issue_date = utcnow()
        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            invoice = Invoice(
                invoice_number=self.number_factory(),
                user_id=order.user_id,
                order_request_id=order.id,
                total=order.total_price,
                status=InvoiceStatus.PENDING.value,
                issue_date=issue_date,
                due_date=issue_date + timedelta(days=self.payment_term_days),
                created_at=issue_date,
                updated_at=issue_date,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(invoice)
            except IntegrityError:
                existing = self.db.scalar(select(Invoice.id).where(Invoice.order_request_id == order.id))
                if existing is not None:
                    raise ConflictError(f"Order {order.order_id} already has an invoice")
                logger.warning(
                    f"Invoice number collision, retrying ({attempt}/{MAX_NUMBER_ATTEMPTS})",
                    extra={'extra_fields': {'invoice_number': invoice.invoice_number}}
                )
                continue
            order.invoice = invoice
            logger.info(
                f"Invoice {invoice.invoice_number} created for order {order.order_id}",
                extra={'extra_fields': {'total': float(invoice.total), 'due_date': invoice.due_date}}
            )
            return invoice
        raise PersistenceError("Could not allocate a unique invoice number")

    def _load(self, invoice_id: int) -> Invoice:
        invoice = self.db.scalar(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(selectinload(Invoice.payments), selectinload(Invoice.user))
        )
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    def get(self, invoice_id: int, actor: Actor) -> Invoice:
        invoice = self._load(invoice_id)
        ensure_owner_or_staff(actor, invoice.user_id)
        return invoice

    def list(self, actor: Actor, status: Optional[InvoiceStatus] = None):
        query = select(Invoice).options(selectinload(Invoice.payments), selectinload(Invoice.user))
        if not actor.is_staff:
            query = query.where(Invoice.user_id == actor.user_id)
        if status:
            query = query.where(Invoice.status == status.value)
        return list(self.db.scalars(query.order_by(Invoice.created_at.desc(), Invoice.id.desc())))

    def update(self, invoice_id: int, data: InvoiceUpdate, actor: Actor) -> Invoice:
        invoice = self._load(invoice_id)
        ensure_owner_or_staff(actor, invoice.user_id)

        requested = data.model_dump(exclude_unset=True, exclude_none=True)
        if not actor.is_staff and set(requested) - {"notes"}:
            raise UnauthorizedError("Customers may only update invoice notes")

        changes = {}
        for field, value in requested.items():
            value = value.value if hasattr(value, "value") else value
            if isinstance(value, datetime) and value.tzinfo is not None:
                value = value.astimezone(timezone.utc).replace(tzinfo=None)
            current = getattr(invoice, field)
            if current != value:
                changes[field] = [_json_value(current), _json_value(value)]
                setattr(invoice, field, value)

        if "status" in changes:
            if invoice.status == InvoiceStatus.PAID.value:
                invoice.paid_at = utcnow()
            else:
                invoice.paid_at = None

        if not changes:
            return invoice

        invoice.updated_at = utcnow()
        self.audit.record(actor, "INVOICE_UPDATED", ENTITY_INVOICE, invoice.id, {
            "invoiceNumber": invoice.invoice_number,
            "changes": changes,
        })
        self._commit("Failed to update invoice")
        return invoice

    def record_payment(self, invoice_id: int, data: PaymentCreate, actor: Actor) -> Invoice:
        invoice = self._load(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise InvalidInputError("Cannot record a payment on a cancelled invoice")

        payment = Payment(
            amount=data.amount,
            method=data.method.value,
            status=data.status.value,
            reference=data.reference,
            created_at=utcnow(),
        )
        invoice.payments.append(payment)

        previous_status = invoice.status
        paid = sum(
            (Decimal(p.amount) for p in invoice.payments if p.status == PaymentStatus.COMPLETED.value),
            Decimal("0"),
        )
        if paid >= invoice.total and invoice.status != InvoiceStatus.PAID.value:
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = utcnow()
            invoice.payment_method = data.method.value
        invoice.updated_at = utcnow()

        self.audit.record(actor, "PAYMENT_RECORDED", ENTITY_INVOICE, invoice.id, {
            "invoiceNumber": invoice.invoice_number,
            "amount": float(data.amount),
            "method": data.method.value,
            "paymentStatus": data.status.value,
            "reference": data.reference,
            "amountPaid": float(paid),
            "previousStatus": previous_status,
            "newStatus": invoice.status,
        })
        self._commit("Failed to record payment")
        return invoice

    def send_reminder(
        self,
        invoice_id: int,
        actor: Actor,
        dispatcher: NotificationDispatcher,
        storefront_url: str,
        final: bool = False,
    ) -> tuple[Invoice, Optional[str]]:
        """Email a payment reminder. Returns the invoice and the delivery error, if any."""
        invoice = self._load(invoice_id)
        if invoice.status in SETTLED_STATUSES:
            raise InvalidInputError(f"Invoice is already {invoice.status}")

        message = reminder_for(invoice, storefront_url, final=final)
        error = None
        try:
            dispatcher.send_invoice_reminder(message)
        except Exception as exc:
            error = str(exc)
            logger.error(f"Failed to send reminder for invoice {invoice.invoice_number}", exc_info=True)

        if error is None:
            self.audit.record(actor, "INVOICE_REMINDER_SENT", ENTITY_INVOICE, invoice.id, {
                "invoiceNumber": invoice.invoice_number,
                "final": final,
                "daysOverdue": message.days_overdue,
            })
        else:
            self.audit.record(actor, "EMAIL_FAILED", ENTITY_INVOICE, invoice.id, {
                "invoiceNumber": invoice.invoice_number,
                "error": error,
            })
        self._commit("Failed to record reminder")
        return invoice, error

    def mark_overdue(self, actor: Actor, now: Optional[datetime] = None) -> list[Invoice]:
        now = now or utcnow()
        candidates = self.db.scalars(
            select(Invoice).where(
                Invoice.status == InvoiceStatus.PENDING.value,
                Invoice.due_date < now,
            ).order_by(Invoice.id)
        ).all()

        updated = []
        for invoice in candidates:
            new_status = calculate_invoice_status(invoice.due_date, invoice.status, now)
            if new_status == invoice.status:
                continue
            invoice.status = new_status
            invoice.updated_at = now
            self.audit.record(actor, "INVOICE_OVERDUE", ENTITY_INVOICE, invoice.id, {
                "invoiceNumber": invoice.invoice_number,
                "previousStatus": InvoiceStatus.PENDING.value,
                "newStatus": new_status,
                "dueDate": invoice.due_date.isoformat(),
            })
            updated.append(invoice)

        if updated:
            self._commit("Failed to mark invoices overdue")
            logger.info(f"Marked {len(updated)} invoice(s) overdue")
        return updated

    def _commit(self, message: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(message, exc_info=True)
            raise PersistenceError(message) from exc
