"""Invoice email rendering and the HTTP email dispatcher."""

import json
import httpx
import pytest
from datetime import datetime
from decimal import Decimal

from wholesale.application.errors import NotificationError
from wholesale.application.notifications import (
    InvoiceEmail, InvoiceEmailItem, InvoiceReminder, format_currency,
    render_invoice_email, render_invoice_reminder,
)
from wholesale.infrastructure.email import HttpEmailDispatcher


@pytest.fixture
def invoice_email():
    return InvoiceEmail(
        to="buyer@dispensary.com",
        invoice_number="GBINV-250101-AB12",
        customer_name="Jamie Buyer",
        company_name="Green Leaf",
        order_id="GBORD-250101-ZZ99",
        total_amount=Decimal("1450.50"),
        due_date=datetime(2025, 1, 16),
        invoice_url="https://shop.example/dashboard/invoices-payment?id=GBINV-250101-AB12",
        items=[InvoiceEmailItem(name="Premium Flower", strain="Blue Dream", quantity=2,
                                unit_price=Decimal("725.25"), total_price=Decimal("1450.50"))],
    )


@pytest.fixture
def reminder():
    return InvoiceReminder(
        to="buyer@dispensary.com",
        invoice_number="GBINV-250101-AB12",
        customer_name="Jamie Buyer",
        total_amount=Decimal("1450.50"),
        due_date=datetime(2025, 1, 16),
        days_overdue=4,
    )


class TestRendering:
    def test_currency(self):
        assert format_currency(Decimal("1450.5")) == "$1,450.50"

    def test_invoice_email(self, invoice_email):
        subject, html = render_invoice_email(invoice_email)
        assert subject == "Invoice #GBINV-250101-AB12 - GatorBudz"
        assert "Jamie Buyer (Green Leaf)" in html
        assert "Premium Flower - Blue Dream" in html
        assert "$1,450.50" in html
        assert "January 16, 2025" in html

    def test_markup_is_escaped(self, invoice_email):
        invoice_email.customer_name = "<script>x</script>"
        _, html = render_invoice_email(invoice_email)
        assert "<script>" not in html

    def test_reminder_subjects(self, reminder):
        before_due = datetime(2025, 1, 10)
        after_due = datetime(2025, 1, 20)
        assert render_invoice_reminder(reminder, now=before_due)[0] == "Reminder: Upcoming Invoice #GBINV-250101-AB12"
        subject, html = render_invoice_reminder(reminder, now=after_due)
        assert subject == "Reminder: Overdue Invoice #GBINV-250101-AB12"
        assert "4 day(s) overdue" in html
        reminder.is_final = True
        assert render_invoice_reminder(reminder, now=after_due)[0].startswith("FINAL REMINDER")


class TestHttpEmailDispatcher:
    def make(self, handler):
        return HttpEmailDispatcher(
            api_url="https://mail.test/emails",
            api_key="re_test",
            sender="GatorBudz <billing@gatorbudz.test>",
            transport=httpx.MockTransport(handler),
        )

    def test_posts_message(self, invoice_email):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "email_1"})

        self.make(handler).send_invoice_email(invoice_email)

        request = seen[0]
        assert request.headers["Authorization"] == "Bearer re_test"
        payload = json.loads(request.content)
        assert payload["to"] == ["buyer@dispensary.com"]
        assert payload["from"] == "GatorBudz <billing@gatorbudz.test>"
        assert payload["subject"] == "Invoice #GBINV-250101-AB12 - GatorBudz"

    def test_provider_error(self, reminder):
        dispatcher = self.make(lambda request: httpx.Response(422, json={"message": "invalid to"}))
        with pytest.raises(NotificationError) as exc_info:
            dispatcher.send_invoice_reminder(reminder)
        assert "422" in str(exc_info.value)

    def test_network_error(self, invoice_email):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NotificationError) as exc_info:
            self.make(handler).send_invoice_email(invoice_email)
        assert "unreachable" in str(exc_info.value)
