import re
import hashlib
from datetime import datetime, timezone

from .exceptions import InvalidPhone

# E.164: "+" followed by 8-15 digits, no leading zero in the country code
E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_phone(phone: str) -> str:
    """Strip formatting characters and validate the result as E.164.

    Raises InvalidPhone for anything that is not `+<countrycode><number>`.
    """
    if not phone or not isinstance(phone, str):
        raise InvalidPhone("Phone number is required")
    phone_clean = re.sub(r"[\s\-().]", "", phone.strip())
    if not E164_PATTERN.match(phone_clean):
        raise InvalidPhone(
            "Invalid phone number format. Use E.164 format (e.g., +14155550123)",
            details={"phone": mask_phone(phone_clean)},
        )
    return phone_clean


def hash_phone_number(phone: str) -> str:
    """Hash phone number for logs (one-way hash)"""
    return hashlib.sha256(phone.encode()).hexdigest()


def mask_phone(phone: str, visible_digits: int = 4) -> str:
    if not phone:
        return ""
    if len(phone) <= visible_digits:
        return phone
    return "*" * (len(phone) - visible_digits) + phone[-visible_digits:]
