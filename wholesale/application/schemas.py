from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from decimal import Decimal
from typing import Optional
from wholesale.domain.models import (
    OrderStatus, InvoiceStatus, PaymentMethod, PaymentStatus, ProductStatus, Tier, TierProposalStatus,
)

class ApiModel(BaseModel):
    """Accepts snake_case or camelCase, serializes camelCase."""
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

# Orders

class OrderItemCreate(ApiModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(gt=0)
    strain: Optional[str] = None
    notes: Optional[str] = None

class OrderCreate(ApiModel):
    items: list[OrderItemCreate] = Field(min_length=1)
    notes: Optional[str] = None
    # Used once to fill an empty company on the customer's profile
    company: Optional[str] = None

class OrderUpdate(ApiModel):
    status: Optional[OrderStatus] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    # Version the caller last saw; a mismatch is rejected with 409
    version: Optional[int] = None

class ProductSummary(ApiModel):
    id: int
    name: str
    category: str

class UserSummary(ApiModel):
    id: int
    email: str
    name: Optional[str] = None
    company: Optional[str] = None
    tier: Optional[str] = None

class OrderItemRead(ApiModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    strain: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float
    notes: Optional[str] = None
    product: Optional[ProductSummary] = None

class PaymentRead(ApiModel):
    id: int
    invoice_id: int
    amount: float
    method: str
    status: str
    reference: Optional[str] = None
    created_at: datetime

class InvoiceSummary(ApiModel):
    id: int
    invoice_number: str
    status: str
    total: float
    issue_date: datetime
    due_date: datetime
    paid_at: Optional[datetime] = None

class OrderRead(ApiModel):
    id: int
    order_id: str
    user_id: int
    status: str
    total_price: float
    total_amount: float
    notes: Optional[str] = None
    last_actor_id: Optional[int] = None
    last_actor_role: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead]
    user: Optional[UserSummary] = None
    invoice: Optional[InvoiceSummary] = None

class OrderCreated(ApiModel):
    success: bool = True
    data: OrderRead

# Invoices

class InvoiceRead(ApiModel):
    id: int
    invoice_number: str
    user_id: int
    order_request_id: int
    total: float
    status: str
    issue_date: datetime
    due_date: datetime
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    payments: list[PaymentRead] = []
    user: Optional[UserSummary] = None

class InvoiceUpdate(ApiModel):
    status: Optional[InvoiceStatus] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    payment_method: Optional[PaymentMethod] = None

class PaymentCreate(ApiModel):
    amount: Decimal = Field(gt=0)
    method: PaymentMethod = PaymentMethod.ACH
    status: PaymentStatus = PaymentStatus.COMPLETED
    reference: Optional[str] = Field(default=None, max_length=100)

class ReminderRequest(ApiModel):
    final: bool = False

class ReminderResult(ApiModel):
    sent: bool
    invoice_number: str
    error: Optional[str] = None

class OverdueSweepResult(ApiModel):
    updated: int
    invoice_numbers: list[str]

# Audit

class AuditLogRead(ApiModel):
    id: int
    actor_id: Optional[int] = None
    actor_role: Optional[str] = None
    action: str
    entity: str
    entity_id: str
    meta: Optional[dict] = None
    created_at: datetime

# Tier proposals

class TierProposalCreate(ApiModel):
    proposed_tier: Tier
    reason: str = Field(min_length=1, max_length=1000)
    # Staff propose for a customer; customers may only propose for themselves
    user_id: Optional[int] = None

class TierProposalDecision(ApiModel):
    status: TierProposalStatus
    decision_note: Optional[str] = Field(default=None, max_length=1000)

class TierProposalRead(ApiModel):
    id: int
    user_id: int
    current_tier: str
    proposed_tier: str
    reason: str
    status: str
    created_by: int
    decided_by: Optional[int] = None
    decided_at: Optional[datetime] = None
    decision_note: Optional[str] = None
    created_at: datetime
    user: Optional[UserSummary] = None

# Catalog

class VariantCreate(ApiModel):
    subcategory: str = Field(min_length=1, max_length=100)
    price_gold: Decimal = Field(ge=0)
    price_platinum: Decimal = Field(ge=0)
    price_diamond: Decimal = Field(ge=0)

class ProductCreate(ApiModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: str = Field(min_length=1, max_length=50)
    status: ProductStatus = ProductStatus.ACTIVE
    price_gold: Decimal = Field(ge=0)
    price_platinum: Decimal = Field(ge=0)
    price_diamond: Decimal = Field(ge=0)
    variants: list[VariantCreate] = []

class VariantPublicRead(ApiModel):
    id: int
    subcategory: str

class VariantRead(VariantPublicRead):
    price_gold: float
    price_platinum: float
    price_diamond: float

class ProductPublicRead(ApiModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    category: str
    variants: list[VariantPublicRead] = []

class ProductRead(ProductPublicRead):
    price_gold: float
    price_platinum: float
    price_diamond: float
    variants: list[VariantRead] = []
