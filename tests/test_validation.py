"""
Tests for Input Validation Utilities
"""
from decimal import Decimal

import pytest

from errands.core.exceptions import ValidationException
from errands.core.validation import (
    AmountValidator,
    ProofValidator,
    TextSanitizer,
    sanitized_text_validator,
    to_money,
)


class TestToMoney:

    @pytest.mark.unit
    @pytest.mark.parametrize("value, expected", [
        (100, "100.00"),
        (0.1, "0.10"),
        ("12.345", "12.35"),
        (Decimal("7.005"), "7.01"),
    ])
    def test_rounds_to_cents(self, value, expected):
        assert to_money(value) == Decimal(expected)

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", float("inf")])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationException) as exc_info:
            to_money(value, field="original_amount")
        assert exc_info.value.details["field"] == "original_amount"


class TestAmountValidator:
    """Tests for monetary amount validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("amount,expected", [
        (Decimal("0.01"), True),
        (Decimal("100.00"), True),
        (Decimal("10000.00"), True),
        (Decimal("0.00"), False),
        (Decimal("10000.01"), False),
        (Decimal("1.005"), False),
    ])
    def test_errand_bounds(self, amount, expected):
        is_valid, _ = AmountValidator.validate(amount, min_value=Decimal("0.01"), max_value=Decimal("10000"))
        assert is_valid == expected

    @pytest.mark.unit
    def test_require_returns_decimal(self):
        assert AmountValidator.require("17", min_value=Decimal("0.01")) == Decimal("17.00")

    @pytest.mark.unit
    def test_require_reports_field(self):
        with pytest.raises(ValidationException) as exc_info:
            AmountValidator.require(-3, field="amount", min_value=Decimal("0.01"))
        assert "at least" in exc_info.value.message
        assert exc_info.value.to_dict()["errors"] == {"amount": [exc_info.value.message]}


class TestTextSanitizer:

    @pytest.mark.unit
    def test_strips_controls_and_collapses_spaces(self):
        assert TextSanitizer.sanitize("  Wrong\x00   amount\x07 ") == "Wrong amount"

    @pytest.mark.unit
    def test_truncates(self):
        assert len(TextSanitizer.sanitize("x" * 600, max_length=500)) == 500

    @pytest.mark.unit
    def test_blank_becomes_none(self):
        assert sanitized_text_validator("   ") is None
        assert sanitized_text_validator(None) is None


class TestProofValidator:

    @pytest.mark.unit
    @pytest.mark.parametrize("proof,expected", [
        ("https://uploads.example.com/receipts/1.jpg", True),
        ("data:image/png;base64,iVBORw0KGgo=", True),
        ("data:application/pdf;base64,JVBERi0=", False),
        ("ftp://example.com/receipt.jpg", False),
        ("", False),
        ("   ", False),
        (None, False),
    ])
    def test_formats(self, proof, expected):
        is_valid, _ = ProofValidator.validate(proof, max_length=1000)
        assert is_valid == expected

    @pytest.mark.unit
    def test_too_large(self):
        is_valid, error = ProofValidator.validate("https://x.example.com/" + "a" * 100, max_length=50)
        assert not is_valid
        assert "too large" in error
