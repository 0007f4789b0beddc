"""Configuration for the priority engine (Redis store, fetch timeouts, scoring defaults)."""

import os
import uuid

REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_CONN_TIMEOUT: float = float(os.environ.get("REDIS_CONN_TIMEOUT", "2"))

# Upper bound for fetching the item snapshot or the stored PriorityConfig.
FETCH_TIMEOUT_SECONDS: float = float(os.environ.get("FETCH_TIMEOUT_SECONDS", "5"))

# --- Redis keys and channels (shared with the ticket store) ---
WORK_ITEMS_KEY: str = os.environ.get("WORK_ITEMS_KEY", "work_items")
CONFIG_KEY: str = os.environ.get("PRIORITY_CONFIG_KEY", "priority:config")
CHANGES_CHANNEL: str = os.environ.get("CHANGES_CHANNEL", "work_items:changes")
ORDERING_CHANNEL: str = os.environ.get("ORDERING_CHANNEL", "priority_queue:published")
ACTIVITY_CHANNEL: str = os.environ.get("ACTIVITY_CHANNEL", "priority_activity")

# --- Scoring defaults (used when a config document omits them) ---
DEFAULT_WAIT_TIME_CAP_HOURS: float = float(os.environ.get("DEFAULT_WAIT_TIME_CAP_HOURS", "72"))
# Customer value at which the historical-value factor saturates.
DEFAULT_VALUE_REFERENCE: float = float(os.environ.get("DEFAULT_VALUE_REFERENCE", "1000"))

MAX_ACTIVITY_EVENTS: int = int(os.environ.get("MAX_ACTIVITY_EVENTS", "200"))

# Identifies this engine process on the shared change channel.
INSTANCE_ID: str = os.environ.get("ENGINE_INSTANCE_ID") or uuid.uuid4().hex

# Pub/sub listeners reconnect after a dropped connection, backing off up to the max.
LISTENER_RETRY_SECONDS: float = float(os.environ.get("LISTENER_RETRY_SECONDS", "1"))
LISTENER_RETRY_MAX_SECONDS: float = float(os.environ.get("LISTENER_RETRY_MAX_SECONDS", "30"))
