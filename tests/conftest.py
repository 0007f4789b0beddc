"""Shared fixtures: a fixed clock, a work-item factory and the reference config."""

from datetime import datetime, timedelta, timezone

import pytest

from priority_engine.models import PriorityConfig, PriorityWeights, Stage, WorkItem

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _make_item(
    item_id="T-1",
    *,
    hours_ago=0.0,
    urgency=3,
    complexity=3,
    value=0.0,
    stage=Stage.RECEIVED,
    issue="Pantalla rota tras caída",
):
    return WorkItem(
        id=item_id,
        device_descriptor="iPhone 14 Pro",
        issue_description=issue,
        created_at=NOW - timedelta(hours=hours_ago),
        urgency_level=urgency,
        technical_complexity=complexity,
        historical_customer_value=value,
        current_stage=stage,
    )


@pytest.fixture
def make_item():
    """Factory for work items created ``hours_ago`` before NOW."""
    return _make_item


@pytest.fixture
def reference_config():
    """Weights 0.4/0.3/0.2/0.1, 72h wait cap, 1,000,000 value reference, no rules."""
    return PriorityConfig(
        weights=PriorityWeights(
            urgency=0.4,
            wait_time=0.3,
            historical_value=0.2,
            technical_complexity=0.1,
        ),
        wait_time_cap_hours=72,
        value_reference=1_000_000,
    )


class FakePubSub:
    """Stands in for redis PubSub: can fail on subscribe or mid-listen, then yields ``messages``."""

    def __init__(self, messages=(), subscribe_error=None, listen_error=None):
        self.messages = list(messages)
        self.subscribe_error = subscribe_error
        self.listen_error = listen_error
        self.channels = []
        self.closed = False

    def subscribe(self, channel):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.channels.append(channel)

    def listen(self):
        for channel in self.channels:
            yield {"type": "subscribe", "channel": channel, "data": 1}
        if self.listen_error is not None:
            raise self.listen_error
        for data in self.messages:
            yield {"type": "message", "channel": self.channels[-1], "data": data}

    def close(self):
        self.closed = True


class FakePubSubClient:
    """Hands out one FakePubSub per (re)connect, in order."""

    def __init__(self, *pubsubs):
        self.pending = list(pubsubs)
        self.connections = []

    def pubsub(self):
        pubsub = self.pending.pop(0)
        self.connections.append(pubsub)
        return pubsub
