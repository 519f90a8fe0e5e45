"""Delivery PIN generation and verification."""

import hmac
import secrets

PIN_LENGTH = 4
PIN_MIN = 1000
PIN_MAX = 9999


def generate_pin() -> str:
    """Generate a four digit delivery PIN uniformly in [1000, 9999]."""
    value = PIN_MIN + secrets.randbelow(PIN_MAX - PIN_MIN + 1)
    return f"{value:0{PIN_LENGTH}d}"


def pin_matches(stored_pin: str, supplied_pin: str) -> bool:
    """
    Compare a supplied PIN with the stored one.

    An empty stored PIN never matches, so an order without a courier cannot
    be confirmed as delivered.
    """
    if not stored_pin or supplied_pin is None:
        return False
    return hmac.compare_digest(stored_pin.encode(), supplied_pin.encode())
