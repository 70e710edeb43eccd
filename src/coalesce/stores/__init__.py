"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: stores/__init__.py.
"""

from .base import ChangeNotificationCapable, CoalescingStore
from .inmemory import InMemoryCoalescingStore
from .redis import RedisCoalescingStore

__all__ = [
    "CoalescingStore",
    "ChangeNotificationCapable",
    "InMemoryCoalescingStore",
    "RedisCoalescingStore",
]
