"""Order status transitions and their side effects.

``OrderLifecycleCoordinator.update_status`` is the only code path that changes
an order's status. Within one transaction it re-reads the order, validates the
requested edge, applies the change, creates the invoice on first approval and
appends the audit entry. The invoice email goes out after commit and may fail
without undoing anything.
"""

from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from wholesale.domain.models import Invoice, OrderRequest, OrderStatus, utcnow
from shared.core import get_logger
from .audit import AuditLogger, ENTITY_ORDER
from .errors import ConflictError, DomainError, InvalidTransitionError, NotFoundError, PersistenceError
from .invoicing import InvoiceService
from .notifications import NotificationDispatcher, invoice_email_for
from .rbac import Actor
from .schemas import OrderUpdate
from .service import order_query

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.APPROVED, OrderStatus.REJECTED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.PAID, OrderStatus.FULFILLED, OrderStatus.REJECTED}),
    OrderStatus.PAID: frozenset({OrderStatus.FULFILLED, OrderStatus.REJECTED}),
    OrderStatus.FULFILLED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}


def can_transition(current: str, requested: str) -> bool:
    return OrderStatus(requested) in ALLOWED_TRANSITIONS[OrderStatus(current)]


@dataclass
class TransitionResult:
    order: OrderRequest
    previous_status: str
    status_changed: bool = False
    notes_changed: bool = False
    invoice: Optional[Invoice] = None
    invoice_created: bool = False

    @property
    def changed(self) -> bool:
        return self.status_changed or self.notes_changed


class OrderLifecycleCoordinator:
    MAX_ATTEMPTS = 3

    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher,
        invoices: Optional[InvoiceService] = None,
        storefront_url: str = "",
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.invoices = invoices or InvoiceService(db)
        self.storefront_url = storefront_url
        self.audit = AuditLogger(db)

    def update_status(self, order_id: int, data: OrderUpdate, actor: Actor) -> TransitionResult:
        """Apply a status and/or notes change for a staff actor.

        Raises NotFoundError, InvalidTransitionError, ConflictError or
        PersistenceError; on any of them nothing has been written.
        """
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                result = self._apply(order_id, data, actor)
                self.db.commit()
                break
            except StaleDataError:
                # Another writer committed first; start over from its state
                self.db.rollback()
                logger.warning(
                    f"Concurrent update on order {order_id}, retrying ({attempt}/{self.MAX_ATTEMPTS})"
                )
            except DomainError:
                self.db.rollback()
                raise
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error(f"Failed to update order {order_id}", exc_info=True)
                raise PersistenceError("Failed to update order") from exc
        else:
            raise ConflictError("Order is being updated concurrently, try again")

        if result.changed:
            logger.info(
                f"Order {result.order.order_id} updated: {result.previous_status} -> {result.order.status}",
                extra={'extra_fields': {
                    'order_id': result.order.id,
                    'previous_status': result.previous_status,
                    'new_status': result.order.status,
                    'invoice_created': result.invoice_created,
                }}
            )
        if result.invoice_created:
            self._notify_invoice(result, actor)
        return result

    def _apply(self, order_id: int, data: OrderUpdate, actor: Actor) -> TransitionResult:
        # Row lock first (a no-op on SQLite), then a fresh read of the graph
        locked = self.db.scalar(
            select(OrderRequest.id).where(OrderRequest.id == order_id).with_for_update()
        )
        if locked is None:
            raise NotFoundError("Order not found")
        order = self.db.scalar(
            order_query()
            .where(OrderRequest.id == order_id)
            .execution_options(populate_existing=True)
        )
        if data.version is not None and data.version != order.version:
            raise ConflictError(
                f"Order was modified (version {order.version}, request had {data.version})"
            )

        previous = order.status
        requested = data.status.value if data.status is not None else None
        result = TransitionResult(order=order, previous_status=previous, invoice=order.invoice)
        result.status_changed = requested is not None and requested != previous
        # An explicit null clears the notes; an omitted field leaves them alone
        result.notes_changed = "notes" in data.model_fields_set and data.notes != order.notes

        if result.status_changed and not can_transition(previous, requested):
            raise InvalidTransitionError(previous, requested)
        if not result.changed:
            return result

        if result.status_changed:
            order.status = requested
        if result.notes_changed:
            order.notes = data.notes
        order.last_actor_id = actor.user_id
        order.last_actor_role = actor.role.value
        order.updated_at = utcnow()

        if (
            requested == OrderStatus.APPROVED.value
            and previous != OrderStatus.APPROVED.value
            and order.invoice is None
        ):
            result.invoice = self.invoices.create_for_order(order)
            result.invoice_created = True

        self.audit.record(actor, *self._audit_entry(result))
        self.db.flush()
        return result

    @staticmethod
    def _audit_entry(result: TransitionResult):
        order = result.order
        if result.invoice_created:
            return "ORDER_APPROVED", ENTITY_ORDER, order.id, {
                "previousStatus": result.previous_status,
                "newStatus": order.status,
                "invoiceNumber": result.invoice.invoice_number,
                "invoiceId": result.invoice.id,
                "totalAmount": float(order.total_price),
            }
        if result.status_changed:
            meta = {"previousStatus": result.previous_status, "newStatus": order.status}
            if result.notes_changed:
                meta["notesUpdated"] = True
            return f"ORDER_{order.status}", ENTITY_ORDER, order.id, meta
        return "UPDATE_ORDER_NOTES", ENTITY_ORDER, order.id, {
            "status": order.status,
            "notesUpdated": True,
        }

    def _notify_invoice(self, result: TransitionResult, actor: Actor) -> None:
        """Send the new invoice to the customer; failures are recorded, not raised."""
        order, invoice = result.order, result.invoice
        try:
            self.dispatcher.send_invoice_email(invoice_email_for(order, invoice, self.storefront_url))
        except Exception as exc:
            logger.error(
                f"Failed to send invoice email for order {order.order_id}",
                exc_info=True,
                extra={'extra_fields': {'invoice_number': invoice.invoice_number}}
            )
            self._record_email_failure(order, invoice, actor, exc)
            return
        logger.info(f"Invoice email sent for order {order.order_id}")

    def _record_email_failure(self, order: OrderRequest, invoice: Invoice, actor: Actor, exc: Exception) -> None:
        try:
            self.audit.record(actor, "EMAIL_FAILED", ENTITY_ORDER, order.id, {
                "error": str(exc),
                "invoiceNumber": invoice.invoice_number,
            })
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Could not record email failure for order {order.order_id}", exc_info=True)
