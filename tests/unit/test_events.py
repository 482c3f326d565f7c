"""
Unit tests for the change-notification channel.

Tests cover:
  - subscribe / unsubscribe bookkeeping
  - synchronous, in-order dispatch
  - handler exceptions propagating to the publisher
  - property_changed suppression of no-op changes
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ca_manager.domain.events import (
    CaProperty,
    EventChannel,
    PropertyChangeEvent,
    SubscriptionHandle,
    property_changed,
)

SOURCE = object()


def _event(prop: CaProperty = CaProperty.DESCRIPTION, old=None, new="x") -> PropertyChangeEvent:
    return PropertyChangeEvent(SOURCE, prop, old, new)


class TestEventChannel:
    def test_subscribe_returns_distinct_handles(self):
        channel = EventChannel()
        first = channel.subscribe(lambda e: None)
        second = channel.subscribe(lambda e: None)
        assert first != second
        assert len(channel) == 2

    def test_unsubscribe_unknown_handle_returns_false(self):
        channel = EventChannel()
        assert channel.unsubscribe(SubscriptionHandle()) is False

    def test_unsubscribe_twice(self):
        channel = EventChannel()
        handle = channel.subscribe(lambda e: None)
        assert channel.unsubscribe(handle) is True
        assert channel.unsubscribe(handle) is False
        assert len(channel) == 0

    def test_publish_reaches_every_handler_in_subscription_order(self):
        channel = EventChannel()
        seen: list[str] = []
        channel.subscribe(lambda e: seen.append(f"a:{e.new_value}"))
        channel.subscribe(lambda e: seen.append(f"b:{e.new_value}"))

        channel.publish_all([_event(new="1"), _event(new="2")])

        assert seen == ["a:1", "b:1", "a:2", "b:2"]

    def test_handler_receives_the_event_object(self):
        channel = EventChannel()
        handler = MagicMock()
        channel.subscribe(handler)
        event = _event(old="before", new="after")

        channel.publish(event)

        handler.assert_called_once_with(event)

    def test_unsubscribed_handler_no_longer_called(self):
        channel = EventChannel()
        seen: list[PropertyChangeEvent] = []
        handle = channel.subscribe(seen.append)
        channel.unsubscribe(handle)
        channel.publish(_event())
        assert seen == []

    def test_handler_exception_propagates(self):
        """
        GIVEN a handler that raises
        WHEN an event is published
        THEN the publisher sees the exception.
        """
        channel = EventChannel()

        def failing(event: PropertyChangeEvent) -> None:
            raise RuntimeError("listener failed")

        channel.subscribe(failing)
        with pytest.raises(RuntimeError, match="listener failed"):
            channel.publish(_event())


class TestPropertyChanged:
    def test_equal_values_are_suppressed(self):
        events: list[PropertyChangeEvent] = []
        property_changed(events, SOURCE, CaProperty.EXPIRY, 365, 365)
        assert events == []

    def test_different_values_are_queued(self):
        events: list[PropertyChangeEvent] = []
        property_changed(events, SOURCE, CaProperty.EXPIRY, 365, 30)
        assert len(events) == 1
        assert events[0].property is CaProperty.EXPIRY
        assert (events[0].old_value, events[0].new_value) == (365, 30)

    @pytest.mark.parametrize(("old", "new"), [(None, None), (None, "x"), ("x", None)])
    def test_missing_values_are_always_queued(self, old, new):
        events: list[PropertyChangeEvent] = []
        property_changed(events, SOURCE, CaProperty.DESCRIPTION, old, new)
        assert len(events) == 1

    def test_event_repr_omits_source(self):
        assert "source" not in repr(_event())
