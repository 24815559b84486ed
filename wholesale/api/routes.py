from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.orm import Session
from typing import Any, Optional
from wholesale.core_settings import Settings, get_settings
from wholesale.infrastructure.db import get_db
from wholesale.infrastructure.email import get_dispatcher
from wholesale.application.lifecycle import OrderLifecycleCoordinator
from wholesale.application.invoicing import InvoiceService
from wholesale.application.notifications import NotificationDispatcher
from wholesale.application.rbac import Actor
from wholesale.application.service import OrderService, parse_order_payload
from wholesale.application.schemas import OrderCreated, OrderRead, OrderUpdate
from wholesale.domain.models import OrderStatus
from .deps import get_current_actor, require_permission

router = APIRouter(prefix="/order-requests", tags=["order-requests"])

@router.get("/", response_model=list[OrderRead])
def list_orders(
    status: Optional[OrderStatus] = Query(None),
    user_id: Optional[int] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("view_own_orders")),
):
    """Customers get their own orders; staff may filter by customer."""
    return OrderService(db).list(actor, status=status, user_id=user_id)

@router.post("/", response_model=OrderCreated, status_code=201)
def create_order(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(require_permission("submit_order")),
):
    data = parse_order_payload(payload, accept_legacy=settings.ACCEPT_LEGACY_ORDER_PAYLOADS)
    order = OrderService(db).create(data, actor)
    return OrderCreated(data=OrderRead.model_validate(order))

@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return OrderService(db).get(order_id, actor)

@router.put("/{order_id}", response_model=OrderRead)
def update_order(
    order_id: int,
    payload: OrderUpdate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_permission("manage_orders")),
):
    """Status/notes change; approval creates the invoice and emails it."""
    coordinator = OrderLifecycleCoordinator(
        db,
        dispatcher,
        invoices=InvoiceService(db, payment_term_days=settings.INVOICE_PAYMENT_TERM_DAYS),
        storefront_url=settings.STOREFRONT_URL,
    )
    return coordinator.update_status(order_id, payload, actor).order

@router.delete("/{order_id}", status_code=204)
def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("delete_orders")),
):
    OrderService(db).delete(order_id, actor)
    return Response(status_code=204)
