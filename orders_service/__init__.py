"""
Food delivery order lifecycle service.

Owns the order state machine, payment confirmation, courier assignment with
delivery PIN verification, and the events each accepted change publishes.
"""

__version__ = "1.0.0"
