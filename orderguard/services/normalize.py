"""Identifier and fingerprint normalization.

Every normalizer here is idempotent: normalize(normalize(x)) == normalize(x).
"""
import ipaddress
import re

from orderguard.models.signals import IdentifierType

_BD_MOBILE_INTL = re.compile(r"^(?:880)?(1[3-9]\d{8})$")
_BD_MOBILE_LOCAL = re.compile(r"^01[3-9]\d{8}$")
_BD_MOBILE_FORMAT = re.compile(r"^(?:01|\+?8801)[3-9]\d{8}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-()]+")
_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def normalize_phone(phone: str) -> str:
    """Reduce a phone number to digits, folding Bangladeshi mobile forms to 01XXXXXXXXX."""
    digits = re.sub(r"\D", "", phone or "")
    if _BD_MOBILE_LOCAL.match(digits):
        return digits
    match = _BD_MOBILE_INTL.match(digits)
    if match:
        return "0" + match.group(1)
    return digits


def is_valid_bd_mobile(phone: str) -> bool:
    """Whether a phone, ignoring spaces, dashes and parentheses, is a Bangladeshi mobile number.

    Accepted forms are 01XXXXXXXXX, 8801XXXXXXXXX and +8801XXXXXXXXX with an
    operator digit of 3-9.
    """
    return bool(_BD_MOBILE_FORMAT.match(_PHONE_SEPARATORS.sub("", phone or "")))


def normalize_ip(ip: str) -> str:
    """Canonical compressed IP string, or "" when the value is not an IP address."""
    try:
        return str(ipaddress.ip_address((ip or "").strip()))
    except ValueError:
        return ""


def normalize_device(device_id: str) -> str:
    return (device_id or "").strip()


def normalize_identifier(identifier_type: IdentifierType, value: str) -> str:
    if identifier_type == IdentifierType.PHONE:
        return normalize_phone(value)
    if identifier_type == IdentifierType.IP:
        return normalize_ip(value)
    return normalize_device(value)


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = _PUNCTUATION.sub("", (text or "").lower())
    return _WHITESPACE.sub(" ", text).strip()


def normalize_name(name: str) -> str:
    return normalize_text(name)


def normalize_address(address_1: str, city: str = "", postcode: str = "") -> str:
    """Comparable address key from street, city and postcode.

    Separators are dropped, so a single "123 Main St, Dhaka, 1200" line and the
    same address split across fields produce the same key.
    """
    return normalize_text(" ".join(p for p in (address_1, city, postcode) if p))


def ip_matches(ip: str, pattern: str) -> bool:
    """Exact match, or membership when the pattern is a CIDR range."""
    ip = normalize_ip(ip)
    if not ip:
        return False
    pattern = (pattern or "").strip()
    if "/" not in pattern:
        return ip == normalize_ip(pattern)
    try:
        return ipaddress.ip_address(ip) in ipaddress.ip_network(pattern, strict=False)
    except ValueError:
        return False
