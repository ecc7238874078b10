import re
from urllib.parse import quote

from rentcall.utils.exceptions import ValidationError

WA_ME_URL = "https://wa.me"
# RFC 2396 unreserved marks
URI_COMPONENT_SAFE = "-_.!~*'()"

_NON_DIGITS = re.compile(r"[^\d+]")
# E.164 allows up to 15 digits; shorter than 8 is never a dialable mobile
_VALID_LENGTH = range(8, 16)


def normalize_phone(phone_number: str) -> str:
    """Digits-only form expected by the API and wa.me (no separators, no '+')."""
    cleaned = _NON_DIGITS.sub("", phone_number or "")
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    if "+" in cleaned or not cleaned.isdigit() or len(cleaned) not in _VALID_LENGTH:
        raise ValidationError(f"Invalid phone number '{phone_number}'")
    return cleaned


def build_deep_link(phone_number: str, text: str) -> str:
    """Click-to-chat link that opens WhatsApp with ``text`` pre-filled."""
    digits = normalize_phone(phone_number)
    return f"{WA_ME_URL}/{digits}?text={quote(text, safe=URI_COMPONENT_SAFE)}"
