from __future__ import annotations
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from pydantic import ValidationError
from fastapi.encoders import jsonable_encoder
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional
import random
import string
from wholesale.domain.models import OrderRequest, OrderItem, OrderStatus, User, Invoice, utcnow
from shared.core import get_logger
from .audit import AuditLogger, ENTITY_ORDER
from .catalog import CatalogService
from .errors import InvalidInputError, NotFoundError, PersistenceError, AuthenticationError
from .rbac import Actor, ensure_owner_or_staff
from .schemas import OrderCreate, OrderItemCreate

logger = get_logger(__name__)

ORDER_PREFIX = "GBORD"
CENT = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def generate_order_number(now: Optional[datetime] = None) -> str:
    """Display order number in format GBORD-YYMMDD-XXXX"""
    now = now or utcnow()
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"{ORDER_PREFIX}-{now:%y%m%d}-{suffix}"


def normalize_order_payload(raw: Any, accept_legacy: bool = True) -> dict:
    """Bring an order request body into the canonical ``{"items": [...]}`` shape.

    Older storefront builds posted ``orders``, ``cartItems`` (``id``/``price``
    instead of ``productId``/``unitPrice``), a bare list or a single item.
    Those are translated when ``accept_legacy`` is set and rejected otherwise.
    Shared notes fill item notes that are missing.
    """
    if isinstance(raw, dict) and isinstance(raw.get("items"), list):
        body = dict(raw)
        items = body["items"]
    elif not accept_legacy:
        raise InvalidInputError("Invalid payload: expected an object with an 'items' list")
    elif isinstance(raw, list):
        body, items = {}, raw
    elif isinstance(raw, dict) and isinstance(raw.get("orders"), list):
        body = {k: v for k, v in raw.items() if k != "orders"}
        items = raw["orders"]
    elif isinstance(raw, dict) and isinstance(raw.get("cartItems"), list):
        body = {k: v for k, v in raw.items() if k != "cartItems"}
        items = [
            {
                "productId": item.get("id"),
                "variantId": item.get("variantId"),
                "quantity": item.get("quantity"),
                "unitPrice": item.get("price"),
                "strain": item.get("strain"),
                "notes": item.get("notes"),
            } if isinstance(item, dict) else item
            for item in raw["cartItems"]
        ]
    elif isinstance(raw, dict) and "productId" in raw:
        body = {k: raw[k] for k in ("notes", "company") if k in raw}
        items = [raw]
    else:
        raise InvalidInputError("Invalid payload: no order items provided")

    notes = body.get("notes")
    shared_notes = notes.strip() if isinstance(notes, str) and notes.strip() else None
    body["notes"] = shared_notes
    body["items"] = [
        {**item, "notes": item.get("notes") or shared_notes} if isinstance(item, dict) else item
        for item in items
    ]
    return body


def parse_order_payload(raw: Any, accept_legacy: bool = True) -> OrderCreate:
    body = normalize_order_payload(raw, accept_legacy)
    if not body["items"]:
        raise InvalidInputError("Invalid payload: no order items provided")
    try:
        return OrderCreate.model_validate(body)
    except ValidationError as exc:
        raise InvalidInputError(jsonable_encoder(exc.errors())) from exc


def order_query():
    return select(OrderRequest).options(
        selectinload(OrderRequest.items).selectinload(OrderItem.product),
        selectinload(OrderRequest.user),
        selectinload(OrderRequest.invoice).selectinload(Invoice.payments),
    )


class OrderService:
    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)
        self.audit = AuditLogger(db)

    def _generate_order_number(self) -> str:
        for _ in range(5):
            number = generate_order_number()
            taken = self.db.scalar(select(OrderRequest.id).where(OrderRequest.order_id == number))
            if taken is None:
                return number
        raise PersistenceError("Could not allocate a unique order number")

    def list(self, actor: Actor, status: Optional[OrderStatus] = None, user_id: Optional[int] = None):
        query = order_query()
        if not actor.is_staff:
            query = query.where(OrderRequest.user_id == actor.user_id)
        elif user_id is not None:
            query = query.where(OrderRequest.user_id == user_id)
        if status:
            query = query.where(OrderRequest.status == status.value)
        return list(self.db.scalars(query.order_by(OrderRequest.created_at.desc(), OrderRequest.id.desc())))

    def get(self, order_id: int, actor: Actor) -> OrderRequest:
        order = self.db.scalar(order_query().where(OrderRequest.id == order_id))
        if not order:
            raise NotFoundError("Order not found")
        ensure_owner_or_staff(actor, order.user_id)
        return order

    def _validate_lines(self, items: list[OrderItemCreate]) -> list[dict]:
        """Check products, variants and strains; return item column values."""
        product_ids = list(dict.fromkeys(item.product_id for item in items))
        found = {p.id for p in self.catalog.find_products_by_ids(product_ids)}
        missing = [str(pid) for pid in product_ids if pid not in found]
        if missing:
            raise InvalidInputError(f"Product(s) not found: {', '.join(missing)}")

        lines = []
        for index, item in enumerate(items):
            # Compared verbatim: a label with stray whitespace is a mismatch
            strain = item.strain or None
            if item.variant_id is not None:
                variant = self.catalog.find_variant(item.variant_id)
                if variant is None or variant.product_id != item.product_id:
                    raise InvalidInputError(
                        f"Item {index}: variant {item.variant_id} does not belong to product {item.product_id}"
                    )
                if strain is None:
                    strain = variant.subcategory
                elif strain != variant.subcategory:
                    raise InvalidInputError(
                        f"Item {index}: strain '{strain}' does not match variant subcategory '{variant.subcategory}'"
                    )
            elif strain is not None:
                raise InvalidInputError(f"Item {index}: strain '{strain}' requires a variantId")

            unit_price = money(item.unit_price)
            if unit_price <= 0:
                raise InvalidInputError(f"Item {index}: unit price must be at least 0.01")
            lines.append({
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "strain": strain,
                "quantity": item.quantity,
                "unit_price": unit_price,
                "total_price": money(unit_price * item.quantity),
                "notes": item.notes,
            })
        return lines

    def create(self, data: OrderCreate, actor: Actor) -> OrderRequest:
        user = self.db.get(User, actor.user_id)
        if user is None:
            raise AuthenticationError("Unknown user")

        lines = self._validate_lines(data.items)
        total = sum((line["total_price"] for line in lines), Decimal("0.00"))
        now = utcnow()

        order = OrderRequest(
            order_id=self._generate_order_number(),
            user_id=user.id,
            status=OrderStatus.PENDING.value,
            total_price=total,
            notes=data.notes,
            last_actor_id=actor.user_id,
            last_actor_role=actor.role.value,
            created_at=now,
            updated_at=now,
            items=[OrderItem(**line) for line in lines],
        )

        company_backfilled = False
        if not user.company and data.company and data.company.strip():
            user.company = data.company.strip()
            company_backfilled = True

        try:
            self.db.add(order)
            self.db.flush()  # assign id
            meta = {
                "orderId": order.order_id,
                "totalPrice": float(total),
                "itemCount": len(lines),
                "productIds": list(dict.fromkeys(line["product_id"] for line in lines)),
                "variantIds": [line["variant_id"] for line in lines if line["variant_id"] is not None],
            }
            if company_backfilled:
                meta["companyBackfilled"] = True
            self.audit.record(actor, "CREATE_ORDER", ENTITY_ORDER, order.id, meta)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to create order", exc_info=True)
            raise PersistenceError("Failed to create order") from exc

        logger.info(
            f"Order {order.order_id} created",
            extra={'extra_fields': {'order_id': order.id, 'total': float(total), 'items': len(lines)}}
        )
        return self.db.scalar(order_query().where(OrderRequest.id == order.id).execution_options(populate_existing=True))

    def delete(self, order_id: int, actor: Actor) -> None:
        order = self.db.scalar(order_query().where(OrderRequest.id == order_id))
        if not order:
            raise NotFoundError("Order not found")

        meta = {
            "orderId": order.order_id,
            "status": order.status,
            "totalPrice": float(order.total_price),
            "invoiceNumber": order.invoice.invoice_number if order.invoice else None,
        }
        try:
            self.db.delete(order)
            self.audit.record(actor, "DELETE_ORDER", ENTITY_ORDER, order_id, meta)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to delete order", exc_info=True)
            raise PersistenceError("Failed to delete order") from exc
        logger.info(f"Order {meta['orderId']} deleted")
