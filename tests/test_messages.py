"""Tests for outbound message rendering."""

from tidybatch.services.messages import (
    build_form_link,
    build_missing_fields_message,
    build_payment_details_message,
    build_thank_you_reply,
    field_label,
    mask_phone,
)


class TestMessageTemplates:
    """Tests for the message templates."""

    def test_form_link(self):
        assert build_form_link("https://app.example.com/", "abc") == "https://app.example.com/verify/abc"

    def test_missing_fields_message(self):
        message = build_missing_fields_message(
            "Siti", ["bank", "accountNumber"], "https://app.example.com/verify/abc"
        )
        assert message == (
            "Hi Siti,\n\n"
            "We need some additional information to process your payment.\n\n"
            "Missing: bank, accountNumber\n\n"
            "Please fill out this secure form:\n"
            "https://app.example.com/verify/abc\n\n"
            "This link expires in 24 hours.\n\n"
            "- RytFlow"
        )

    def test_payment_details_message(self):
        message = build_payment_details_message(
            "Ali",
            {"amount": "5000.00", "bank": "MBB", "accountNumber": ""},
            "https://app.example.com/verify/x",
            sender="Payroll Team",
            ttl_hours=48,
        )
        assert "- Amount: 5000.00\n" in message
        assert "- Account: N/A\n" in message
        assert "- Date: N/A\n" in message
        assert "If this looks correct, reply OK." in message
        assert message.endswith("This link expires in 48 hours.\n\n- Payroll Team")

    def test_thank_you_reply(self):
        assert build_thank_you_reply("accountNumber", "5566778899") == (
            'Thank you! We\'ve received your account number: "5566778899". '
            "Your payment will be processed shortly."
        )

    def test_field_label(self):
        assert field_label("bank") == "bank"
        assert field_label("accountNumber") == "account number"

    def test_mask_phone(self):
        assert mask_phone("+60123456789") == "***6789"
        assert mask_phone(None) == "<none>"
