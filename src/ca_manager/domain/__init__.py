"""Domain layer: result / error taxonomy, events, enumerations, value objects and ports."""

from ca_manager.domain.errors import (
    CaException,
    DatastoreLockedError,
    InvalidArgumentError,
    InvalidPasswordError,
    NotFoundError,
    StoreIOError,
    UnknownKeyTypeError,
)
from ca_manager.domain.events import CaProperty, EventChannel, PropertyChangeEvent, SubscriptionHandle
from ca_manager.domain.failure import CaError, FailureDescription
from ca_manager.domain.result import Failure, Result, Success

__all__ = [
    "CaError",
    "CaException",
    "CaProperty",
    "DatastoreLockedError",
    "EventChannel",
    "Failure",
    "FailureDescription",
    "InvalidArgumentError",
    "InvalidPasswordError",
    "NotFoundError",
    "PropertyChangeEvent",
    "Result",
    "StoreIOError",
    "SubscriptionHandle",
    "Success",
    "UnknownKeyTypeError",
]
