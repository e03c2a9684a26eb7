"""
Validation utilities
"""
import re
from datetime import date
from decimal import Decimal, InvalidOperation


def normalize_decimal_input(value: str) -> str:
    """
    Normalize an amount typed by staff: strip thousands separators and spaces

    Example:
        >>> normalize_decimal_input("1,499.50")
        "1499.50"
        >>> normalize_decimal_input(" 999 ")
        "999"
    """
    return value.replace(",", "").replace(" ", "").strip()


def validate_decimal_amount(value: str, max_decimal_places: int = 2) -> tuple[bool, str | None]:
    """
    Validate a money amount

    Returns:
        (is_valid, error_message)

    Example:
        >>> validate_decimal_amount("100.50")
        (True, None)
        >>> validate_decimal_amount("100.505")
        (False, "At most 2 decimal places")
    """
    normalized = normalize_decimal_input(value)

    try:
        Decimal(normalized)
    except (InvalidOperation, ValueError):
        return False, "Invalid amount"

    pattern = rf"^-?\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        return False, f"At most {max_decimal_places} decimal places"

    return True, None


def validate_and_normalize_amount(value: str, max_decimal_places: int = 2) -> str:
    """
    Validate and normalize an amount (raises on failure)

    Raises:
        ValueError: if validation fails
    """
    is_valid, error = validate_decimal_amount(value, max_decimal_places)
    if not is_valid:
        raise ValueError(error)

    return normalize_decimal_input(value)


def validate_philippine_mobile_number(number: str) -> tuple[bool, str | None]:
    """
    Philippine mobile number: 11 digits starting with 09 (spaces/dashes ignored)

    Example:
        >>> validate_philippine_mobile_number("0917-123-4567")
        (True, None)
        >>> validate_philippine_mobile_number("9171234567")
        (False, "Mobile number must start with 09")
    """
    cleaned = re.sub(r"[\s-]", "", number or "")

    if not cleaned:
        return False, "Mobile number is required"
    if not cleaned.isdigit():
        return False, "Mobile number must contain only digits"
    if not cleaned.startswith("09"):
        return False, "Mobile number must start with 09"
    if len(cleaned) != 11:
        return False, "Mobile number must be exactly 11 digits"
    return True, None


def validate_installation_date(
    install_date: date | None, status: str, today: date | None = None,
) -> tuple[bool, str | None]:
    """
    Installation date rules by prospect status:
      Closed Won: must not be in the future
      Open:       must be in the future
    """
    if install_date is None:
        return False, "Installation date is required"
    if today is None:
        today = date.today()

    if status == "Closed Won" and install_date > today:
        return False, "Installation date cannot be in the future for Closed Won status"
    if status == "Open" and install_date <= today:
        return False, "Installation date must be a future date for Open status"
    return True, None
