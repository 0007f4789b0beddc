"""
Redis pub/sub listeners that survive connection drops.

Both the change listener (ticket store -> trigger) and the activity subscriber
(worker -> API) run `listen` in a daemon thread. A lost connection is logged and
the subscription is re-established with a doubling backoff.
"""

import logging
import threading
from typing import Callable, Optional

import redis

from priority_engine.config import (
    LISTENER_RETRY_MAX_SECONDS,
    LISTENER_RETRY_SECONDS,
    REDIS_CONN_TIMEOUT,
    REDIS_URL,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]


def _client():
    # No socket timeout: listen() blocks until the next message.
    return redis.from_url(REDIS_URL, decode_responses=True, socket_connect_timeout=REDIS_CONN_TIMEOUT)


def listen(
    channel: str,
    on_message: MessageHandler,
    stop: threading.Event,
    *,
    client_factory: Callable[[], "redis.Redis"] = _client,
    retry: float = LISTENER_RETRY_SECONDS,
    retry_max: float = LISTENER_RETRY_MAX_SECONDS,
) -> None:
    """
    Pass each message payload on ``channel`` to ``on_message`` until ``stop`` is set.

    The backoff resets once a subscription succeeds.
    """
    delay = retry
    while not stop.is_set():
        pubsub = None
        try:
            pubsub = client_factory().pubsub()
            pubsub.subscribe(channel)
            logger.info("Subscribed to channel %s", channel)
            delay = retry
            for message in pubsub.listen():
                if message["type"] == "message":
                    on_message(message["data"])
                if stop.is_set():
                    return
            logger.warning("Subscription to %s ended; resubscribing in %.1fs.", channel, delay)
        except (redis.RedisError, OSError) as e:
            logger.warning("Subscription to %s lost (%s); resubscribing in %.1fs.", channel, e, delay)
        finally:
            if pubsub is not None:
                try:
                    pubsub.close()
                except (redis.RedisError, OSError) as e:
                    logger.debug("Closing subscription to %s failed: %s", channel, e)
        if stop.wait(delay):
            return
        delay = min(delay * 2, retry_max)


def start_listener(
    channel: str,
    on_message: MessageHandler,
    *,
    name: str,
    stop: Optional[threading.Event] = None,
) -> threading.Event:
    """Run `listen` in a daemon thread. Set the returned event to stop it."""
    stop = stop or threading.Event()
    t = threading.Thread(target=listen, args=(channel, on_message, stop), name=name, daemon=True)
    t.start()
    return stop
