"""Phone number and WhatsApp JID helpers."""

import re

_NON_DIGITS = re.compile(r"\D")

JID_SUFFIX = "@s.whatsapp.net"
GROUP_JID_SUFFIX = "@g.us"


def digits_only(value: str) -> str:
    """Strip everything but digits (e.g. "+55 (11) 99999-9999" -> "5511999999999")."""
    return _NON_DIGITS.sub("", value)


def to_jid(phone: str) -> str:
    """Build a WhatsApp JID from a phone number. JIDs pass through unchanged."""
    if "@" in phone:
        return phone
    return f"{digits_only(phone)}{JID_SUFFIX}"


def extract_phone_from_jid(remote_jid: str) -> str:
    """Extract phone number from WhatsApp JID format.

    Args:
        remote_jid: WhatsApp JID (e.g., "5511999999999@s.whatsapp.net")

    Returns:
        Phone number without suffix (e.g., "5511999999999")
    """
    return remote_jid.split("@")[0]


def is_group_jid(remote_jid: str) -> bool:
    return GROUP_JID_SUFFIX in remote_jid


def to_contact_phone(remote_jid: str) -> str:
    """Canonical contact phone ("+<digits>") from a JID."""
    return f"+{digits_only(extract_phone_from_jid(remote_jid))}"


def format_br_phone(phone: str) -> str:
    """Display form of a Brazilian number, e.g. "+55 (11) 99999-9999".

    Numbers that are not 12 or 13 digits starting with 55 come back as
    "+<digits>".
    """
    digits = digits_only(phone)
    if digits.startswith("55") and len(digits) == 13:
        return f"+55 ({digits[2:4]}) {digits[4:9]}-{digits[9:]}"
    if digits.startswith("55") and len(digits) == 12:
        return f"+55 ({digits[2:4]}) {digits[4:8]}-{digits[8:]}"
    return f"+{digits}"
