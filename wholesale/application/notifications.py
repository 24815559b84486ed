"""Invoice emails: message types, rendering and the dispatcher contract.

Delivery itself lives in ``wholesale.infrastructure.email``. The lifecycle
coordinator only sees the ``NotificationDispatcher`` protocol and treats every
send as a best-effort side effect after commit.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Optional, Protocol
from wholesale.domain.models import Invoice, OrderRequest, utcnow


@dataclass
class InvoiceEmailItem:
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    strain: Optional[str] = None


@dataclass
class InvoiceEmail:
    to: str
    invoice_number: str
    customer_name: str
    order_id: str
    total_amount: Decimal
    due_date: datetime
    items: list[InvoiceEmailItem] = field(default_factory=list)
    company_name: Optional[str] = None
    invoice_url: Optional[str] = None


@dataclass
class InvoiceReminder:
    to: str
    invoice_number: str
    customer_name: str
    total_amount: Decimal
    due_date: datetime
    company_name: Optional[str] = None
    invoice_url: Optional[str] = None
    is_final: bool = False
    days_overdue: int = 0


class NotificationDispatcher(Protocol):
    def send_invoice_email(self, message: InvoiceEmail) -> None: ...

    def send_invoice_reminder(self, message: InvoiceReminder) -> None: ...


def format_currency(amount) -> str:
    return f"${Decimal(amount):,.2f}"


def _display_name(customer_name: str, company_name: Optional[str]) -> str:
    return f"{customer_name} ({company_name})" if company_name else customer_name


def customer_name_for(user) -> str:
    return user.name or user.email.split("@")[0]


def invoice_email_for(order: OrderRequest, invoice: Invoice, storefront_url: str) -> InvoiceEmail:
    return InvoiceEmail(
        to=order.user.email,
        invoice_number=invoice.invoice_number,
        customer_name=customer_name_for(order.user),
        company_name=order.user.company or None,
        order_id=order.order_id,
        total_amount=order.total_price,
        due_date=invoice.due_date,
        invoice_url=f"{storefront_url}/dashboard/invoices-payment?id={invoice.invoice_number}",
        items=[
            InvoiceEmailItem(
                name=item.product.name if item.product else "Product",
                strain=item.strain,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in order.items
        ],
    )


def reminder_for(invoice: Invoice, storefront_url: str, final: bool = False, now: datetime = None) -> InvoiceReminder:
    now = now or utcnow()
    days_overdue = max((now - invoice.due_date).days, 0)
    return InvoiceReminder(
        to=invoice.user.email,
        invoice_number=invoice.invoice_number,
        customer_name=customer_name_for(invoice.user),
        company_name=invoice.user.company or None,
        total_amount=invoice.total,
        due_date=invoice.due_date,
        invoice_url=f"{storefront_url}/dashboard/invoices-payment?id={invoice.invoice_number}",
        is_final=final,
        days_overdue=days_overdue,
    )


def render_invoice_email(message: InvoiceEmail) -> tuple[str, str]:
    """Return ``(subject, html)`` for a new invoice."""
    rows = "".join(
        "<tr>"
        f"<td>{escape(item.name)}{' - ' + escape(item.strain) if item.strain else ''}</td>"
        f"<td>{item.quantity}</td>"
        f"<td>{format_currency(item.unit_price)}</td>"
        f"<td>{format_currency(item.total_price)}</td>"
        "</tr>"
        for item in message.items
    )
    link = f'<p><a href="{escape(message.invoice_url)}">View and pay invoice</a></p>' if message.invoice_url else ""
    html = (
        "<html><body>"
        f"<h2>Invoice #{escape(message.invoice_number)}</h2>"
        f"<p>Hello {escape(_display_name(message.customer_name, message.company_name))},</p>"
        f"<p>Your order {escape(message.order_id)} has been approved.</p>"
        "<table><tr><th>Item</th><th>Qty</th><th>Unit price</th><th>Total</th></tr>"
        f"{rows}</table>"
        f"<p><strong>Total due: {format_currency(message.total_amount)}</strong></p>"
        f"<p>Due date: {message.due_date:%B %d, %Y}</p>"
        f"{link}"
        "</body></html>"
    )
    return f"Invoice #{message.invoice_number} - GatorBudz", html


def render_invoice_reminder(message: InvoiceReminder, now: datetime = None) -> tuple[str, str]:
    """Return ``(subject, html)`` for a payment reminder."""
    now = now or utcnow()
    overdue = now > message.due_date
    if message.is_final:
        subject = f"FINAL REMINDER: Overdue Invoice #{message.invoice_number} - Action Required"
    elif overdue:
        subject = f"Reminder: Overdue Invoice #{message.invoice_number}"
    else:
        subject = f"Reminder: Upcoming Invoice #{message.invoice_number}"
    overdue_line = f"<p>This invoice is {message.days_overdue} day(s) overdue.</p>" if overdue else ""
    link = f'<p><a href="{escape(message.invoice_url)}">View and pay invoice</a></p>' if message.invoice_url else ""
    html = (
        "<html><body>"
        f"<p>Hello {escape(_display_name(message.customer_name, message.company_name))},</p>"
        f"<p>Invoice #{escape(message.invoice_number)} for {format_currency(message.total_amount)} "
        f"is due {message.due_date:%B %d, %Y}.</p>"
        f"{overdue_line}{link}"
        "</body></html>"
    )
    return subject, html
