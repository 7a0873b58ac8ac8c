"""Field validation rules for claim payloads."""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from claimflow.business.errors import ClaimValidationError


TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 2000
RECEIPT_REF_MAX_LENGTH = 1024
AMOUNT_QUANTUM = Decimal("0.01")
AMOUNT_MAX = Decimal("9999999999.99")

EDITABLE_FIELDS = ("title", "description", "amount", "receipt_ref")


def validate_title(title: Optional[str]) -> str:
    if title is None or not title.strip():
        raise ClaimValidationError("Title must not be blank", field="title")
    title = title.strip()
    if len(title) > TITLE_MAX_LENGTH:
        raise ClaimValidationError(
            f"Title must be at most {TITLE_MAX_LENGTH} characters", field="title"
        )
    return title


def validate_amount(amount: Any) -> Decimal:
    """
    Coerce ``amount`` to a two-digit Decimal and require it to be positive.
    
    Floats are converted through ``str`` so that ``100.1`` stays ``100.10``.
    
    Raises:
        ClaimValidationError: If the amount is missing, not a finite number,
            has more than two fractional digits, or is not strictly positive
    """
    if amount is None or isinstance(amount, bool):
        raise ClaimValidationError("Amount is required", field="amount")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ClaimValidationError("Amount must be a number", field="amount")
    
    if not value.is_finite():
        raise ClaimValidationError("Amount must be a finite number", field="amount")
    if value <= 0:
        raise ClaimValidationError("Amount must be greater than zero", field="amount")
    if value != value.quantize(AMOUNT_QUANTUM):
        raise ClaimValidationError(
            "Amount must have at most two decimal places", field="amount"
        )
    if value > AMOUNT_MAX:
        raise ClaimValidationError("Amount is too large", field="amount")
    return value.quantize(AMOUNT_QUANTUM)


def _optional_text(value: Optional[str], field: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if len(value) > max_length:
        raise ClaimValidationError(
            f"{field} must be at most {max_length} characters", field=field
        )
    return value or None


def validate_description(description: Optional[str]) -> Optional[str]:
    return _optional_text(description, "description", DESCRIPTION_MAX_LENGTH)


def validate_receipt_ref(receipt_ref: Optional[str]) -> Optional[str]:
    return _optional_text(receipt_ref, "receipt_ref", RECEIPT_REF_MAX_LENGTH)


def validate_update_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial update payload.
    
    Only keys present in ``fields`` are validated and returned; unknown keys
    are rejected so a typo never silently becomes a no-op.
    
    Args:
        fields: Mapping of editable field name to new value
        
    Returns:
        Dict[str, Any]: Normalized values keyed by field name
    """
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ClaimValidationError(
            f"Unknown claim fields: {', '.join(sorted(unknown))}",
            field=sorted(unknown)[0]
        )
    
    validators = {
        "title": validate_title,
        "description": validate_description,
        "amount": validate_amount,
        "receipt_ref": validate_receipt_ref,
    }
    return {name: validators[name](value) for name, value in fields.items()}
