"""
smackdown/sms.py - Phone number matching and TwiML replies

Inbound SMS arrives as "+1 (555) 010-0123", "5550100123", "+15550100123"...
Numbers are compared on their trailing national digits.
"""

import re
from xml.sax.saxutils import escape

NATIONAL_DIGITS = 10

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def phone_digits(phone: str | None) -> str:
    """Strip everything but digits."""
    return re.sub(r"\D", "", phone or "")


def phone_key(phone: str | None) -> str:
    """Comparable form of a phone number: its last ten digits."""
    return phone_digits(phone)[-NATIONAL_DIGITS:]


def twiml_response(message: str) -> str:
    """TwiML document that replies to the sender with one message."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<Response>\n"
        f"  <Message>{escape(message, _XML_ENTITIES)}</Message>\n"
        "</Response>"
    )
