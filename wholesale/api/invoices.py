from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from wholesale.core_settings import Settings, get_settings
from wholesale.infrastructure.db import get_db
from wholesale.infrastructure.email import get_dispatcher
from wholesale.application.invoicing import InvoiceService
from wholesale.application.notifications import NotificationDispatcher
from wholesale.application.rbac import Actor
from wholesale.application.schemas import (
    InvoiceRead, InvoiceUpdate, OverdueSweepResult, PaymentCreate, ReminderRequest, ReminderResult,
)
from wholesale.domain.models import InvoiceStatus
from .deps import get_current_actor, require_permission

router = APIRouter(prefix="/invoices", tags=["invoices"])

def _service(db: Session, settings: Settings) -> InvoiceService:
    return InvoiceService(db, payment_term_days=settings.INVOICE_PAYMENT_TERM_DAYS)

@router.get("/", response_model=list[InvoiceRead])
def list_invoices(
    status: Optional[InvoiceStatus] = Query(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(require_permission("view_own_orders")),
):
    return _service(db, settings).list(actor, status=status)

@router.post("/mark-overdue", response_model=OverdueSweepResult)
def mark_overdue(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(require_permission("manage_invoices")),
):
    updated = _service(db, settings).mark_overdue(actor)
    return OverdueSweepResult(updated=len(updated), invoice_numbers=[i.invoice_number for i in updated])

@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(get_current_actor),
):
    return _service(db, settings).get(invoice_id, actor)

@router.patch("/{invoice_id}", response_model=InvoiceRead)
def update_invoice(
    invoice_id: int,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(get_current_actor),
):
    """Staff may change any field; the owning customer only the notes."""
    return _service(db, settings).update(invoice_id, payload, actor)

@router.post("/{invoice_id}/payments", response_model=InvoiceRead, status_code=201)
def record_payment(
    invoice_id: int,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(require_permission("manage_invoices")),
):
    return _service(db, settings).record_payment(invoice_id, payload, actor)

@router.post("/{invoice_id}/send-reminder", response_model=ReminderResult)
def send_reminder(
    invoice_id: int,
    payload: Optional[ReminderRequest] = Body(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_permission("manage_invoices")),
):
    final = payload.final if payload else False
    invoice, error = _service(db, settings).send_reminder(
        invoice_id, actor, dispatcher, settings.STOREFRONT_URL, final=final
    )
    return ReminderResult(sent=error is None, invoice_number=invoice.invoice_number, error=error)
