"""
Field rules for accounts and stores.

Validators never stop at the first failure: they return every violated rule
so callers can report them together.
"""

import re
from typing import Any, List, Optional

from email_validator import EmailNotValidError, validate_email

from errors import ValidationFailed, Violation

NAME_MIN = 20
NAME_MAX = 60
ADDRESS_MAX = 400

PASSWORD_RE = re.compile(r"^(?=.*[A-Z])(?=.*[!@#$%^&*])[A-Za-z0-9!@#$%^&*]{8,16}$")

NAME_MESSAGE = f"Name must be {NAME_MIN}-{NAME_MAX} characters"
EMAIL_MESSAGE = "Invalid email format"
PASSWORD_MESSAGE = "Password must be 8-16 characters with one uppercase letter and one special character (!@#$%^&*)"
ADDRESS_MESSAGE = f"Address must be at most {ADDRESS_MAX} characters"


def is_valid_name(value: Any) -> bool:
    return isinstance(value, str) and NAME_MIN <= len(value) <= NAME_MAX


def is_valid_email(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_valid_password(value: Any) -> bool:
    return isinstance(value, str) and PASSWORD_RE.match(value) is not None


def is_valid_address(value: Any) -> bool:
    return value is None or (isinstance(value, str) and len(value) <= ADDRESS_MAX)


def _field(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def check_name(value: Any, prefix: str = "") -> List[Violation]:
    if is_valid_name(value):
        return []
    return [Violation(field=_field(prefix, "name"), rule="length", message=NAME_MESSAGE)]


def check_email(value: Any, prefix: str = "") -> List[Violation]:
    if is_valid_email(value):
        return []
    return [Violation(field=_field(prefix, "email"), rule="format", message=EMAIL_MESSAGE)]


def check_password(value: Any, prefix: str = "", field: str = "password") -> List[Violation]:
    if value is None or value == "":
        return [Violation(field=_field(prefix, field), rule="required", message="Password is required")]
    if is_valid_password(value):
        return []
    return [Violation(field=_field(prefix, field), rule="format", message=PASSWORD_MESSAGE)]


def check_address(value: Any, prefix: str = "") -> List[Violation]:
    if is_valid_address(value):
        return []
    return [Violation(field=_field(prefix, "address"), rule="length", message=ADDRESS_MESSAGE)]


def account_violations(
    name: Any, email: Any, password: Any, address: Optional[Any] = None, prefix: str = ""
) -> List[Violation]:
    return (
        check_name(name, prefix)
        + check_email(email, prefix)
        + check_password(password, prefix)
        + check_address(address, prefix)
    )


def store_violations(name: Any, email: Any, address: Optional[Any] = None, prefix: str = "") -> List[Violation]:
    return check_name(name, prefix) + check_email(email, prefix) + check_address(address, prefix)


def raise_for_violations(violations: List[Violation]) -> None:
    if violations:
        raise ValidationFailed(violations=violations)
