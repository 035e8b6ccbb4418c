"""
MQTT Publishers
==============

Bounded Context: Message Production

Publishers for crossing and realtime view messages.

Public API
----------
    BasePublisher: Abstract publisher (for custom publishers)
    CrossingEventPublisher: Checkpoint crossing publisher
    RealtimeViewPublisher: Spectator view publisher (retained)
"""

from .base import BasePublisher
from .crossing import CrossingEventPublisher
from .view import RealtimeViewPublisher

__all__ = [
    'BasePublisher',
    'CrossingEventPublisher',
    'RealtimeViewPublisher',
]
