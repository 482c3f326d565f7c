"""
Change notification — tagged property-change events and a subscription channel.

Subscribers receive PropertyChangeEvent objects synchronously on the thread
that performed the change, after the change is complete and persisted. An
exception raised by a handler propagates to the caller of the mutating
operation.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Callable, TypeAlias
from uuid import UUID, uuid4


@unique
class CaProperty(Enum):
    """Named properties reported through change events."""

    UNLOCKED = "unlocked"
    DESCRIPTION = "description"
    SIGNATURE = "signature"
    EXPIRY = "expiry"
    INCREMENTAL_SERIAL = "incrementalSerial"
    ENABLE_LOG = "enableLog"
    REQUESTS = "Requests"
    ISSUED = "Issued"
    REVOKED = "Revoked"
    CRLS = "CRLs"
    TEMPLATES = "Templates"
    CERTIFICATE_AUTHORITIES = "certificateAuthorities"


@dataclass(frozen=True, slots=True)
class PropertyChangeEvent:
    """
    One change of one property on `source`.

    For UNLOCKED the values are the *locked* flag: lock() reports
    old=False, new=True and unlock() the inverse. Collection properties
    carry a tuple snapshot of the collection as `new_value`.
    """

    source: Any = field(repr=False)
    property: CaProperty
    old_value: Any
    new_value: Any


EventHandler: TypeAlias = Callable[[PropertyChangeEvent], None]


@dataclass(frozen=True, slots=True)
class SubscriptionHandle:
    """Opaque token returned by subscribe(); pass it back to unsubscribe()."""

    id: UUID = field(default_factory=uuid4)


class EventChannel:
    """Registry of handlers with synchronous, in-order dispatch."""

    def __init__(self) -> None:
        self._handlers: dict[SubscriptionHandle, EventHandler] = {}
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> SubscriptionHandle:
        handle = SubscriptionHandle()
        with self._lock:
            self._handlers[handle] = handler
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """Remove a handler. Returns False when the handle was not registered."""
        with self._lock:
            return self._handlers.pop(handle, None) is not None

    def publish(self, event: PropertyChangeEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.values())
        for handler in handlers:
            handler(event)

    def publish_all(self, events: list[PropertyChangeEvent]) -> None:
        for event in events:
            self.publish(event)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)


def property_changed(
    events: list[PropertyChangeEvent],
    source: Any,
    prop: CaProperty,
    old_value: Any,
    new_value: Any,
) -> None:
    """Queue an event unless both values are present and equal."""
    if old_value is not None and new_value is not None and old_value == new_value:
        return
    events.append(PropertyChangeEvent(source, prop, old_value, new_value))
