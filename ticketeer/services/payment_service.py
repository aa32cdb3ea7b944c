"""
Payment capture stub.

No money moves. The card fields are checked for shape and reduced to a
masked reference that is stored on the confirmed booking.
"""

import re
from datetime import datetime
from typing import Any, Dict, Optional

from ..models.base import utcnow
from ..utils.exceptions import ValidationError

_EXPIRY = re.compile(r"^(0[1-9]|1[0-2])/([0-9]{2})$")


class PaymentService:
    """Validates card details and produces a masked payment reference."""

    def capture(
        self,
        card_number: str,
        expiry_date: str,
        cvv: str,
        cardholder_name: str,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Return the masked reference for a card payment.

        Raises:
            ValidationError: If any card field is malformed or the card expired
        """
        now = now or utcnow()
        errors: Dict[str, list] = {}

        digits = re.sub(r"[\s-]", "", card_number or "")
        if not (digits.isascii() and digits.isdigit()) or not 12 <= len(digits) <= 19:
            errors["card_number"] = ["must be 12 to 19 digits"]

        match = _EXPIRY.match((expiry_date or "").strip())
        if not match:
            errors["expiry_date"] = ["must be formatted MM/YY"]
        else:
            month, year = int(match.group(1)), 2000 + int(match.group(2))
            if (year, month) < (now.year, now.month):
                errors["expiry_date"] = ["card has expired"]

        if not re.fullmatch(r"[0-9]{3,4}", (cvv or "").strip()):
            errors["cvv"] = ["must be 3 or 4 digits"]

        if not (cardholder_name or "").strip():
            errors["cardholder_name"] = ["required"]

        if errors:
            raise ValidationError("Invalid payment details", field_errors=errors)

        return {
            "card_last_four": digits[-4:],
            "cardholder_name": cardholder_name.strip(),
            "payment_date": now.isoformat(),
        }
