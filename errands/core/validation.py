"""
Input Validation Utilities

Provides validation for payment inputs:
- Monetary amounts (Decimal, two decimal places)
- Free text sanitization for notes and rejection reasons
- Proof of purchase / payment payloads
"""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from errands.core.exceptions import ValidationException

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value, field: str = "amount") -> Decimal:
    """
    Convert a number to an unrounded Decimal.

    Floats go through str() first so 0.1 stays 0.1 instead of
    0.1000000000000000055511151231257827.

    Raises:
        ValidationException: value is not a finite number
    """
    if value is None:
        raise ValidationException(f"{field} is required", field=field)
    if isinstance(value, bool):
        raise ValidationException(f"{field} must be a number", field=field)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationException(f"{field} must be a number", field=field)
    if not amount.is_finite():
        raise ValidationException(f"{field} must be a finite number", field=field)
    return amount


def to_money(value, field: str = "amount") -> Decimal:
    """Convert a number to a Decimal rounded to cents"""
    return to_decimal(value, field).quantize(CENTS, rounding=ROUND_HALF_UP)


class AmountValidator:
    """Monetary amount validation"""

    @staticmethod
    def validate(
        amount: Decimal,
        min_value: Decimal | float = ZERO,
        max_value: Decimal | float | None = None
    ) -> tuple[bool, str | None]:
        """
        Validate monetary amount.

        Args:
            amount: Amount to validate
            min_value: Minimum allowed value (inclusive)
            max_value: Maximum allowed value (inclusive), None for unbounded

        Returns:
            Tuple of (is_valid, error_message)
        """
        minimum = to_money(min_value, field="min_value")
        if amount < minimum:
            return False, f"Amount must be at least {minimum}"

        if max_value is not None:
            maximum = to_money(max_value, field="max_value")
            if amount > maximum:
                return False, f"Amount cannot exceed {maximum}"

        # Reject sub-cent precision instead of silently rounding it away
        if amount != amount.quantize(CENTS):
            return False, "Amount cannot have more than 2 decimal places"

        return True, None

    @staticmethod
    def require(
        value,
        field: str = "amount",
        min_value: Decimal | float = ZERO,
        max_value: Decimal | float | None = None
    ) -> Decimal:
        """Validate and return the amount as Decimal, raising ValidationException on failure"""
        raw = to_decimal(value, field)
        is_valid, error = AmountValidator.validate(raw, min_value, max_value)
        if not is_valid:
            raise ValidationException(error, field=field)
        return raw.quantize(CENTS)


class TextSanitizer:
    """Text sanitization for notes, reasons and descriptions"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 500) -> str:
        """
        Sanitize text input for safe storage.

        Note: This does NOT HTML escape, that is the frontend's job at
        display time. This function only:
        - Trims whitespace
        - Enforces max length
        - Removes null bytes and control characters

        Args:
            text: Text to sanitize
            max_length: Maximum allowed length

        Returns:
            Sanitized text
        """
        if not text:
            return ""

        sanitized = TextSanitizer.remove_control_characters(text).strip()
        sanitized = sanitized[:max_length]

        # Collapse multiple spaces into one
        sanitized = re.sub(r" +", " ", sanitized)

        return sanitized

    @staticmethod
    def remove_control_characters(text: str) -> str:
        """Remove control characters, keeping newlines and tabs"""
        if not text:
            return ""

        return "".join(
            char for char in text
            if char >= " " or char in "\n\r\t"
        )


class ProofValidator:
    """Proof of purchase / payment: a base64 image data URL or an uploaded file link"""

    DATA_URL = re.compile(r"^data:image/(jpeg|jpg|png|gif|webp);base64,", re.IGNORECASE)
    LINK = re.compile(r"^https?://\S+$", re.IGNORECASE)

    @staticmethod
    def validate(proof: str | None, max_length: int) -> tuple[bool, str | None]:
        if not proof or not proof.strip():
            return False, "Proof is required"

        if len(proof) > max_length:
            return False, f"Proof is too large (maximum {max_length} characters)"

        if not (ProofValidator.DATA_URL.match(proof) or ProofValidator.LINK.match(proof)):
            return False, "Proof must be an image data URL or an http(s) link"

        return True, None


# Pydantic field validators for reuse
def sanitized_text_validator(v: str | None, max_length: int = 500) -> str | None:
    """Pydantic field validator for free text, empty input becomes None"""
    if v is None:
        return None
    return TextSanitizer.sanitize(v, max_length) or None
