"""
Messaging package initialization.

Provides the Redis connection wrapper and the event emitter used to publish
order events to downstream consumers.
"""
